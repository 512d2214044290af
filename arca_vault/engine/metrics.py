from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal

from loguru import logger

from arca_vault.core.constants import DAYS_PER_YEAR, PRICE_STALE_AFTER_MS
from arca_vault.core.errors import DivisionByZero, InconsistentState
from arca_vault.core.utils.units import to_decimal
from arca_vault.engine.types import (
    PriceQuote,
    RewardTotals,
    TokenAmount,
    UserPosition,
    VaultMetrics,
    VaultSnapshot,
)


def price_per_share(
    balance_raw: int, total_shares: int, share_decimals: int, token_decimals: int
) -> Decimal:
    """Whole tokens backing one whole share; 0 before the first deposit."""
    if total_shares == 0:
        return Decimal(0)
    if total_shares < 0 or balance_raw < 0:
        raise InconsistentState(
            "negative balance or share supply",
            balance_raw=balance_raw,
            total_shares=total_shares,
        )
    per_share_raw = balance_raw * 10**share_decimals // total_shares
    return to_decimal(per_share_raw, token_decimals)


def estimate_tokens_from_shares(
    shares: int,
    total_shares: int,
    balance_x: TokenAmount,
    balance_y: TokenAmount,
) -> tuple[TokenAmount, TokenAmount]:
    """Floor pro-rata share of both vault balances, as previewed before a withdrawal."""
    if total_shares == 0:
        raise DivisionByZero("vault has no shares outstanding", shares=shares)
    if shares < 0 or shares > total_shares:
        raise InconsistentState(
            f"share amount {shares} outside [0, {total_shares}]",
            shares=shares,
            total_shares=total_shares,
        )
    return (
        balance_x.with_raw(balance_x.raw * shares // total_shares),
        balance_y.with_raw(balance_y.raw * shares // total_shares),
    )


def user_earnings(value_usd: Decimal, deposited_usd: Decimal) -> Decimal:
    return value_usd - deposited_usd


def user_roi(earnings_usd: Decimal, deposited_usd: Decimal) -> Decimal:
    if deposited_usd == 0:
        return Decimal(0)
    return earnings_usd / deposited_usd * 100


def reward_apr(rewards_usd: Decimal, tvl_usd: Decimal, time_window_days: int) -> Decimal:
    """Annualised percentage from rewards earned over ``time_window_days``."""
    if tvl_usd <= 0:
        return Decimal(0)
    days = max(1, time_window_days)
    return rewards_usd * DAYS_PER_YEAR / days / tvl_usd * 100


def _quote_for(prices: Mapping[str, PriceQuote], symbol: str) -> PriceQuote | None:
    quote = prices.get(symbol)
    if quote is None:
        quote = prices.get(symbol.upper())
    return quote


def compute_snapshot_metrics(
    snapshot: VaultSnapshot,
    position: UserPosition | None,
    prices: Mapping[str, PriceQuote],
    *,
    now_ms: int,
    rewards: RewardTotals | None = None,
    stale_after_ms: int = PRICE_STALE_AFTER_MS,
) -> VaultMetrics:
    """TVL, user value, P&L and reward APR for one snapshot.

    A missing price leaves every USD figure as ``None``; no fallback price is
    substituted. Stale quotes are still used and flagged via ``is_stale``.
    """
    quote_x = _quote_for(prices, snapshot.balance_x.symbol)
    quote_y = _quote_for(prices, snapshot.balance_y.symbol)

    base = {
        "price_per_share_x": snapshot.price_per_share_x,
        "price_per_share_y": snapshot.price_per_share_y,
    }
    if quote_x is None or quote_y is None:
        missing = [
            s.symbol
            for s, q in ((snapshot.balance_x, quote_x), (snapshot.balance_y, quote_y))
            if q is None
        ]
        logger.debug(f"No USD price for {', '.join(missing)}; skipping USD metrics")
        return VaultMetrics(price_data_available=False, is_stale=False, **base)

    stale = [
        q.symbol for q in (quote_x, quote_y) if q.is_stale(now_ms, stale_after_ms)
    ]
    if stale:
        logger.warning(f"Using stale USD prices for {', '.join(stale)}")

    px, py = quote_x.usd, quote_y.usd
    balance_x_usd = snapshot.balance_x.to_usd(px)
    balance_y_usd = snapshot.balance_y.to_usd(py)
    tvl_usd = balance_x_usd + balance_y_usd

    user_fields: dict[str, Decimal | None] = {}
    if position is not None:
        user_x_usd = position.shares_x * snapshot.price_per_share_x * px
        user_y_usd = position.shares_y * snapshot.price_per_share_y * py
        user_value = user_x_usd + user_y_usd
        earnings = user_earnings(user_value, position.total_deposited_usd)
        user_fields = {
            "user_value_usd": user_value,
            "user_value_x_usd": user_x_usd,
            "user_value_y_usd": user_y_usd,
            "earnings_usd": earnings,
            "roi_percent": user_roi(earnings, position.total_deposited_usd),
        }

    reward_fields: dict[str, Decimal | None] = {}
    if rewards is not None:
        rewards_usd = rewards.compounded_x.to_usd(px) + rewards.compounded_y.to_usd(py)
        apr = reward_apr(rewards_usd, tvl_usd, rewards.time_window_days)
        reward_fields = {
            "rewards_usd": rewards_usd,
            "real_apr": apr,
            "daily_apr": apr / DAYS_PER_YEAR,
        }

    return VaultMetrics(
        price_data_available=True,
        is_stale=bool(stale),
        tvl_usd=tvl_usd,
        vault_balance_x_usd=balance_x_usd,
        vault_balance_y_usd=balance_y_usd,
        **base,
        **user_fields,
        **reward_fields,
    )
