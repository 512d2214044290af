from __future__ import annotations

from abc import ABC
from typing import Any

from eth_utils import to_checksum_address
from loguru import logger

from arca_vault.core.utils.retry import retry_async
from arca_vault.core.utils.web3_batch import read_at_block


class BaseAdapter(ABC):
    """Shared plumbing for on-chain readers.

    Subclasses pin a block with ``pin_block`` and pass it to every ``read`` of
    one logical snapshot. Both are retried on transient RPC failures.
    """

    adapter_type: str | None = None

    def __init__(self, name: str, config: dict[str, Any] | None = None):
        self.name = name
        self.config = config or {}
        self.max_retries = int(self.config.get("max_retries", 3))
        self.logger = logger.bind(adapter=self.__class__.__name__)

    async def pin_block(self, web3, block_identifier: int | None = None) -> int:
        if block_identifier is not None:
            return int(block_identifier)
        block = await retry_async(
            web3.eth.get_block_number,
            max_retries=self.max_retries,
            label=f"{self.name} block number",
        )
        return int(block)

    async def read(self, web3, label: str, block: int, *functions) -> tuple[Any, ...]:
        return await retry_async(
            lambda: read_at_block(web3, block, *functions),
            max_retries=self.max_retries,
            label=f"{self.name} {label}",
        )

    @staticmethod
    def contract(web3, address: str, abi: list[dict[str, Any]]):
        return web3.eth.contract(address=to_checksum_address(address), abi=abi)

    async def close(self) -> None:
        pass
