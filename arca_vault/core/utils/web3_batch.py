from __future__ import annotations

import asyncio
from typing import Any

from loguru import logger
from web3 import AsyncWeb3
from web3.contract.async_contract import AsyncContractFunction
from web3.types import BlockIdentifier


async def _execute_batch(
    web3: AsyncWeb3,
    block_identifier: BlockIdentifier,
    functions: tuple[AsyncContractFunction, ...],
) -> tuple[Any, ...]:
    async with web3.batch_requests() as batch:
        for fn in functions:
            batch.add(fn.call(block_identifier=block_identifier))
        return tuple(await batch.async_execute())


async def read_at_block(
    web3: AsyncWeb3,
    block_identifier: BlockIdentifier,
    *functions: AsyncContractFunction,
    fallback_to_gather: bool = True,
) -> tuple[Any, ...]:
    """
    Call several view functions at one block, as a single JSON-RPC batch.

    Usage:
        balances, supply = await read_at_block(
            web3,
            block,
            vault.functions.getBalances(),
            vault.functions.totalSupply(),
        )

    Pass bound functions, not ``.call()`` results: the block is applied here so
    every value in the tuple describes the same chain state. Providers that
    reject batching are read concurrently with ``asyncio.gather`` instead.
    """
    if not functions:
        return ()

    try:
        return await _execute_batch(web3, block_identifier, functions)
    except Exception as batch_exc:
        if not fallback_to_gather:
            raise
        logger.debug(
            f"Batch of {len(functions)} reads failed ({batch_exc}); falling back to gather"
        )
        try:
            results = await asyncio.gather(
                *(fn.call(block_identifier=block_identifier) for fn in functions)
            )
        except Exception as gather_exc:
            raise gather_exc from batch_exc
        return tuple(results)
