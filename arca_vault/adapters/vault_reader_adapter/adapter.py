from __future__ import annotations

from typing import Any

from eth_utils import to_checksum_address

from arca_vault.core.adapters.BaseAdapter import BaseAdapter
from arca_vault.core.adapters.decorators import require_user, status_tuple
from arca_vault.core.config import VaultConfig
from arca_vault.core.constants import PRICE_CACHE_TTL_S
from arca_vault.core.constants.vault_abi import (
    CL_POOL_READ_ABI,
    ERC20_READ_ABI,
    LB_PAIR_READ_ABI,
    ORACLE_HELPER_READ_ABI,
    STRATEGY_READ_ABI,
    VAULT_READ_ABI,
)
from arca_vault.core.utils.cache import Cache
from arca_vault.core.utils.web3 import web3_from_chain_id
from arca_vault.engine.pipeline import RawUserState, RawVaultState
from arca_vault.engine.prices import OracleParameters
from arca_vault.engine.types import WithdrawalRound


class VaultReaderAdapter(BaseAdapter):
    """
    Read-only access to a dual-token vault, its strategy, pool and oracle helper.

    Every method pins one block and issues all of its reads at that block, so
    the returned values describe a single consistent state. Reads are JSON-RPC
    batched and retried on transient RPC failures. Nothing here computes; the
    results feed ``arca_vault.engine``.
    """

    adapter_type = "ARCA_VAULT"

    def __init__(
        self,
        vault: VaultConfig,
        config: dict[str, Any] | None = None,
        user_address: str | None = None,
    ) -> None:
        super().__init__(vault.name, config)
        self.vault = vault
        self.user_address: str | None = (
            to_checksum_address(user_address) if user_address else None
        )
        self.price_cache_ttl_s = float(
            self.config.get("price_cache_ttl_s", PRICE_CACHE_TTL_S)
        )
        self._oracle_cache: Cache[dict[str, Any]] | None = None

    @status_tuple
    async def get_vault_state(
        self, *, block_identifier: int | None = None
    ) -> RawVaultState:
        async with web3_from_chain_id(self.vault.chain_id) as web3:
            block = await self.pin_block(web3, block_identifier)
            vault = self.contract(web3, self.vault.vault, VAULT_READ_ABI)
            (
                token_x,
                token_y,
                (balance_x, balance_y),
                total_supply,
                share_decimals,
                pps_x,
                pps_y,
            ) = await self.read(
                web3,
                "vault state",
                block,
                vault.functions.getTokenX(),
                vault.functions.getTokenY(),
                vault.functions.getBalances(),
                vault.functions.totalSupply(),
                vault.functions.decimals(),
                vault.functions.getPricePerFullShare(0),
                vault.functions.getPricePerFullShare(1),
            )

            erc_x = self.contract(web3, token_x, ERC20_READ_ABI)
            erc_y = self.contract(web3, token_y, ERC20_READ_ABI)
            symbol_x, decimals_x, symbol_y, decimals_y = await self.read(
                web3,
                "token metadata",
                block,
                erc_x.functions.symbol(),
                erc_x.functions.decimals(),
                erc_y.functions.symbol(),
                erc_y.functions.decimals(),
            )

        self.logger.debug(f"Read vault state at block {block}")
        return RawVaultState(
            symbol_x=str(symbol_x),
            symbol_y=str(symbol_y),
            decimals_x=int(decimals_x),
            decimals_y=int(decimals_y),
            balance_x=int(balance_x),
            balance_y=int(balance_y),
            total_supply=int(total_supply),
            share_decimals=int(share_decimals),
            price_per_share_x=int(pps_x),
            price_per_share_y=int(pps_y),
            block_number=block,
        )

    @require_user
    @status_tuple
    async def get_user_state(
        self, *, block_identifier: int | None = None
    ) -> dict[str, Any]:
        user = self.user_address
        async with web3_from_chain_id(self.vault.chain_id) as web3:
            block = await self.pin_block(web3, block_identifier)
            vault = self.contract(web3, self.vault.vault, VAULT_READ_ABI)
            shares_x, shares_y, share_balance = await self.read(
                web3,
                "user shares",
                block,
                vault.functions.getShares(user, 0),
                vault.functions.getShares(user, 1),
                vault.functions.balanceOf(user),
            )
        return {
            "block_number": block,
            "position": RawUserState(shares_x=int(shares_x), shares_y=int(shares_y)),
            "share_balance": int(share_balance),
        }

    @require_user
    @status_tuple
    async def get_queue_state(
        self, *, block_identifier: int | None = None
    ) -> dict[str, Any]:
        """Rounds ``0..current_round`` as seen by the configured user.

        ``rounds`` only carry the user's own queued shares, so they satisfy
        ``verify_round`` but not ``verify_round(..., complete=True)``.
        """
        user = self.user_address
        async with web3_from_chain_id(self.vault.chain_id) as web3:
            block = await self.pin_block(web3, block_identifier)
            vault = self.contract(web3, self.vault.vault, VAULT_READ_ABI)
            current_round, share_balance = await self.read(
                web3,
                "current round",
                block,
                vault.functions.getCurrentRound(),
                vault.functions.balanceOf(user),
            )
            current_round = int(current_round)

            functions = []
            for i in range(current_round + 1):
                functions += [
                    vault.functions.getTotalQueuedWithdrawal(i),
                    vault.functions.getQueuedWithdrawal(i, user),
                    vault.functions.getRedeemableAmounts(i, user),
                ]
            results = await self.read(web3, "withdrawal rounds", block, *functions)

        rounds: list[WithdrawalRound] = []
        redeemable: dict[int, tuple[int, int]] = {}
        for i in range(current_round + 1):
            total_queued, user_queued, (amount_x, amount_y) = results[3 * i : 3 * i + 3]
            rounds.append(
                WithdrawalRound(
                    index=i,
                    total_queued_shares=int(total_queued),
                    per_user_queued_shares=(
                        {user: int(user_queued)} if int(user_queued) else {}
                    ),
                )
            )
            redeemable[i] = (int(amount_x), int(amount_y))

        return {
            "block_number": block,
            "current_round": current_round,
            "share_balance": int(share_balance),
            "rounds": rounds,
            "redeemable": redeemable,
        }

    @status_tuple
    async def get_pool_state(
        self, *, block_identifier: int | None = None
    ) -> dict[str, Any]:
        """Active tick/bin and spacing, plus the strategy's current range."""
        if not self.vault.pool:
            raise ValueError(f"no pool configured for vault {self.vault.name}")
        async with web3_from_chain_id(self.vault.chain_id) as web3:
            block = await self.pin_block(web3, block_identifier)
            if self.vault.kind == "cl":
                pool = self.contract(web3, self.vault.pool, CL_POOL_READ_ABI)
                functions = [pool.functions.slot0(), pool.functions.tickSpacing()]
            else:
                pair = self.contract(web3, self.vault.pool, LB_PAIR_READ_ABI)
                functions = [pair.functions.getActiveId(), pair.functions.getBinStep()]
            if self.vault.strategy:
                strategy = self.contract(web3, self.vault.strategy, STRATEGY_READ_ABI)
                functions += [
                    strategy.functions.getRange(),
                    strategy.functions.getIdleBalances(),
                ]
            results = await self.read(web3, "pool state", block, *functions)

        state: dict[str, Any] = {"block_number": block, "kind": self.vault.kind}
        if self.vault.kind == "cl":
            slot0, spacing = results[0], results[1]
            state.update(
                sqrt_price_x96=int(slot0[0]), active=int(slot0[1]), spacing=int(spacing)
            )
        else:
            state.update(active=int(results[0]), bin_step=int(results[1]))
        if self.vault.strategy:
            (low, upper), (idle_x, idle_y) = results[2], results[3]
            state.update(range=(int(low), int(upper)), idle_x=int(idle_x), idle_y=int(idle_y))
        return state

    @status_tuple
    async def get_oracle_state(
        self, *, block_identifier: int | None = None
    ) -> dict[str, Any]:
        """Spot price and oracle parameters.

        Latest-block reads are reused for ``price_cache_ttl_s`` seconds; reads
        at an explicit block always go to the chain.
        """
        if not self.vault.oracle_helper:
            raise ValueError(f"no oracle helper configured for vault {self.vault.name}")
        if block_identifier is None and self._oracle_cache is not None:
            cached = self._oracle_cache.get()
            if cached is not None:
                return cached

        async with web3_from_chain_id(self.vault.chain_id) as web3:
            block = await self.pin_block(web3, block_identifier)
            helper = self.contract(web3, self.vault.oracle_helper, ORACLE_HELPER_READ_ABI)
            price, params = await self.read(
                web3,
                "oracle state",
                block,
                helper.functions.getPrice(),
                helper.functions.getOracleParameters(),
            )

        state = {
            "block_number": block,
            "price_x128": int(price),
            "parameters": OracleParameters.from_tuple(tuple(params)),
        }
        if block_identifier is None:
            self._oracle_cache = Cache.wrap(state, self.price_cache_ttl_s)
        return state

    async def close(self) -> None:
        self._oracle_cache = None
