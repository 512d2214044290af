"""snapshot -> normalize -> compute -> format.

The on-chain reader produces ``RawVaultState``/``RawUserState`` dicts of plain
integers; everything after that is pure. Callers (CLI commands, schedulers)
invoke ``run_pipeline`` explicitly whenever they need fresh numbers.
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from typing import Any, NotRequired, TypedDict

from arca_vault.core.config import EngineSettings
from arca_vault.core.utils.units import to_decimal
from arca_vault.engine.metrics import compute_snapshot_metrics
from arca_vault.engine.types import (
    PriceQuote,
    RewardTotals,
    TokenAmount,
    UserPosition,
    VaultMetrics,
    VaultSnapshot,
)

# getPricePerFullShare is always 1e18-scaled
PRICE_PER_SHARE_DECIMALS = 18


class RawVaultState(TypedDict):
    symbol_x: str
    symbol_y: str
    decimals_x: int
    decimals_y: int
    balance_x: int
    balance_y: int
    total_supply: int
    share_decimals: int
    price_per_share_x: int
    price_per_share_y: int
    block_number: NotRequired[int | None]


class RawUserState(TypedDict):
    shares_x: int
    shares_y: int
    total_deposited_usd: NotRequired[str]


def normalize_snapshot(raw: RawVaultState) -> VaultSnapshot:
    return VaultSnapshot(
        balance_x=TokenAmount(int(raw["balance_x"]), int(raw["decimals_x"]), raw["symbol_x"]),
        balance_y=TokenAmount(int(raw["balance_y"]), int(raw["decimals_y"]), raw["symbol_y"]),
        total_shares=int(raw["total_supply"]),
        price_per_share_x=to_decimal(int(raw["price_per_share_x"]), PRICE_PER_SHARE_DECIMALS),
        price_per_share_y=to_decimal(int(raw["price_per_share_y"]), PRICE_PER_SHARE_DECIMALS),
        share_decimals=int(raw["share_decimals"]),
        block_number=raw.get("block_number"),
    )


def normalize_position(raw: RawUserState, share_decimals: int) -> UserPosition:
    return UserPosition(
        shares_x=to_decimal(int(raw["shares_x"]), share_decimals),
        shares_y=to_decimal(int(raw["shares_y"]), share_decimals),
        total_deposited_usd=Decimal(raw.get("total_deposited_usd", "0")),
    )


def compute(
    snapshot: VaultSnapshot,
    position: UserPosition | None,
    prices: Mapping[str, PriceQuote],
    *,
    now_ms: int,
    rewards: RewardTotals | None = None,
    settings: EngineSettings | None = None,
) -> VaultMetrics:
    settings = settings or EngineSettings()
    return compute_snapshot_metrics(
        snapshot,
        position,
        prices,
        now_ms=now_ms,
        rewards=rewards,
        stale_after_ms=settings.stale_after_ms,
    )


def _usd(value: Decimal | None) -> float | None:
    return None if value is None else round(float(value), 2)


def _pct(value: Decimal | None) -> float | None:
    return None if value is None else round(float(value), 4)


def format_metrics(metrics: VaultMetrics, snapshot: VaultSnapshot) -> dict[str, Any]:
    return {
        "block_number": snapshot.block_number,
        "balance_x": str(snapshot.balance_x),
        "balance_y": str(snapshot.balance_y),
        "total_shares": snapshot.total_shares,
        "price_per_share_x": str(metrics.price_per_share_x),
        "price_per_share_y": str(metrics.price_per_share_y),
        "price_data_available": metrics.price_data_available,
        "is_stale": metrics.is_stale,
        "tvl_usd": _usd(metrics.tvl_usd),
        "vault_balance_x_usd": _usd(metrics.vault_balance_x_usd),
        "vault_balance_y_usd": _usd(metrics.vault_balance_y_usd),
        "user_value_usd": _usd(metrics.user_value_usd),
        "user_value_x_usd": _usd(metrics.user_value_x_usd),
        "user_value_y_usd": _usd(metrics.user_value_y_usd),
        "earnings_usd": _usd(metrics.earnings_usd),
        "roi_percent": _pct(metrics.roi_percent),
        "rewards_usd": _usd(metrics.rewards_usd),
        "real_apr": _pct(metrics.real_apr),
        "daily_apr": _pct(metrics.daily_apr),
    }


def run_pipeline(
    raw: RawVaultState,
    prices: Mapping[str, PriceQuote],
    *,
    now_ms: int,
    raw_user: RawUserState | None = None,
    rewards: RewardTotals | None = None,
    settings: EngineSettings | None = None,
) -> dict[str, Any]:
    snapshot = normalize_snapshot(raw)
    position = (
        normalize_position(raw_user, snapshot.share_decimals)
        if raw_user is not None
        else None
    )
    metrics = compute(
        snapshot, position, prices, now_ms=now_ms, rewards=rewards, settings=settings
    )
    return format_metrics(metrics, snapshot)
