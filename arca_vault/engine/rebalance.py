"""Rebalance proposals: ranges, target ratios, deposit plans and weight curves.

Tick-based (concentrated liquidity) pools snap ranges to the pool's tick
spacing. Bin-based pools use unsnapped bin ids and a uniform weight curve.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from eth_abi import encode
from loguru import logger

from arca_vault.core.constants import (
    DEFAULT_BIN_RANGE_COUNT,
    DEFAULT_RESERVE_PERCENT,
    DEFAULT_TICK_RANGE_WIDTH_PERCENT,
    DISTRIBUTION_TOTAL_BPS,
)
from arca_vault.core.errors import PriceUnavailable, RangeInvalid
from arca_vault.core.utils.tick_math import (
    MAX_TICK,
    MIN_TICK,
    compute_optimal_amounts,
    is_tick_aligned,
    round_tick_down,
    round_tick_up,
    slippage_min,
    sqrt_price_x96_from_tick,
    tick_delta_for_percent,
)
from arca_vault.engine.types import (
    DepositPlan,
    RangeProposal,
    RatioSuggestion,
    TokenAmount,
)


@dataclass(frozen=True)
class PriceContext:
    """Where the pool price sits relative to the range being deposited into."""

    current_tick: int
    tick_lower: int
    tick_upper: int
    sqrt_price_x96: int | None = None

    def __post_init__(self) -> None:
        if self.tick_lower >= self.tick_upper:
            raise RangeInvalid(
                f"tick_lower ({self.tick_lower}) must be below tick_upper ({self.tick_upper})",
                lower=self.tick_lower,
                upper=self.tick_upper,
            )


def _check_spacing(spacing: int) -> None:
    if spacing <= 0:
        raise RangeInvalid(f"tick spacing must be positive, got {spacing}", spacing=spacing)


# ── ranges ──


def default_tick_range(
    active_tick: int,
    tick_spacing: int,
    width_percent: float = DEFAULT_TICK_RANGE_WIDTH_PERCENT,
) -> tuple[int, int]:
    """About ``width_percent`` of price either side of the active tick, widened
    outward to the nearest usable ticks."""
    _check_spacing(tick_spacing)
    delta = tick_delta_for_percent(width_percent)
    lower = round_tick_down(active_tick - delta, tick_spacing)
    upper = round_tick_up(active_tick + delta, tick_spacing)
    if lower >= upper:
        upper = lower + tick_spacing
    lower = max(lower, round_tick_up(MIN_TICK, tick_spacing))
    upper = min(upper, round_tick_down(MAX_TICK, tick_spacing))
    return lower, upper


def default_bin_range(
    active_id: int, bin_count: int = DEFAULT_BIN_RANGE_COUNT
) -> tuple[int, int]:
    """``(bin_count - 1) // 2`` bins either side of the active bin."""
    if bin_count < 3:
        raise RangeInvalid(f"bin_count must be at least 3, got {bin_count}", bin_count=bin_count)
    half = (bin_count - 1) // 2
    return max(0, active_id - half), active_id + half


def default_range(
    active_point: int,
    tick_spacing: int | None = None,
    width: float | None = None,
) -> tuple[int, int]:
    """Tick range when ``tick_spacing`` is given, bin range otherwise.

    ``width`` is a percentage for tick ranges and a bin count for bin ranges.
    """
    if tick_spacing is None:
        return default_bin_range(
            active_point, DEFAULT_BIN_RANGE_COUNT if width is None else int(width)
        )
    return default_tick_range(
        active_point,
        tick_spacing,
        DEFAULT_TICK_RANGE_WIDTH_PERCENT if width is None else width,
    )


def is_aligned(tick: int, spacing: int) -> bool:
    _check_spacing(spacing)
    return is_tick_aligned(tick, spacing)


def snap_range(lower: int, upper: int, spacing: int) -> tuple[int, int]:
    """Widen ``[lower, upper]`` outward to multiples of ``spacing``."""
    _check_spacing(spacing)
    snapped = (round_tick_down(lower, spacing), round_tick_up(upper, spacing))
    if snapped != (lower, upper):
        logger.warning(
            f"Ticks [{lower}, {upper}] are not aligned to spacing {spacing}; using {list(snapped)}"
        )
    if snapped[0] >= snapped[1]:
        raise RangeInvalid(
            f"lower ({lower}) must be below upper ({upper})", lower=lower, upper=upper
        )
    return snapped


# ── ratios & deposits ──


def optimal_ratio(
    balance_x: TokenAmount,
    balance_y: TokenAmount,
    price_x: Decimal | None,
    price_y: Decimal | None,
) -> RatioSuggestion:
    """Deposit ratio (whole percent, by USD value) matching what the vault holds."""
    if price_x is None or price_y is None:
        raise PriceUnavailable(
            "USD prices are required to weigh the vault balances",
            symbols=[balance_x.symbol, balance_y.symbol],
        )
    value_x = balance_x.to_usd(price_x)
    value_y = balance_y.to_usd(price_y)
    total = value_x + value_y
    if total <= 0:
        return RatioSuggestion(
            ratio_x=50,
            ratio_y=50,
            message="Vault is empty; the first deposit sets the ratio (50/50 suggested)",
        )
    ratio_x = int(value_x * 100 // total)
    ratio_y = 100 - ratio_x
    return RatioSuggestion(
        ratio_x=ratio_x,
        ratio_y=ratio_y,
        message=(
            f"Vault holds {ratio_x}% {balance_x.symbol or 'X'} / {ratio_y}% "
            f"{balance_y.symbol or 'Y'} by value; depositing in this ratio keeps idle balances low"
        ),
    )


def deposit_plan(
    idle_x: TokenAmount,
    idle_y: TokenAmount,
    reserve_percent: int = DEFAULT_RESERVE_PERCENT,
    price_context: PriceContext | None = None,
    *,
    expected_shares: int | None = None,
    slippage_bps: int = 0,
) -> DepositPlan:
    """Amounts to put into the range, holding back ``reserve_percent`` of each side.

    Without a ``price_context`` (bin pools) everything outside the reserve is
    deposited. With one, a range entirely above the price takes only X, one
    entirely below takes only Y, and a range around the price takes the
    largest pair in the pool's required ratio.
    """
    if not 0 <= reserve_percent <= 100:
        raise RangeInvalid(
            f"reserve_percent must be in [0, 100], got {reserve_percent}",
            reserve_percent=reserve_percent,
        )
    if not 0 <= slippage_bps <= 10_000:
        raise RangeInvalid(
            f"slippage_bps must be in [0, 10000], got {slippage_bps}",
            slippage_bps=slippage_bps,
        )

    usable_x = idle_x.raw - idle_x.raw * reserve_percent // 100
    usable_y = idle_y.raw - idle_y.raw * reserve_percent // 100

    if price_context is None:
        amount_x, amount_y = usable_x, usable_y
    elif price_context.current_tick < price_context.tick_lower:
        amount_x, amount_y = usable_x, 0
    elif price_context.current_tick >= price_context.tick_upper:
        amount_x, amount_y = 0, usable_y
    else:
        sqrt_price = price_context.sqrt_price_x96 or sqrt_price_x96_from_tick(
            price_context.current_tick
        )
        amount_x, amount_y = compute_optimal_amounts(
            sqrt_price,
            price_context.tick_lower,
            price_context.tick_upper,
            usable_x,
            usable_y,
        )

    min_shares = 0 if expected_shares is None else slippage_min(expected_shares, slippage_bps)
    plan = DepositPlan(
        amount_x=idle_x.with_raw(amount_x),
        amount_y=idle_y.with_raw(amount_y),
        min_shares=min_shares,
        reserve_x=idle_x.with_raw(idle_x.raw - amount_x),
        reserve_y=idle_y.with_raw(idle_y.raw - amount_y),
    )
    logger.debug(
        f"Deposit plan: x={plan.amount_x} (reserve {plan.reserve_x}), "
        f"y={plan.amount_y} (reserve {plan.reserve_y}), min_shares={min_shares}"
    )
    return plan


# ── distributions ──


def uniform_distribution(
    lower: int, upper: int, *, total: int = DISTRIBUTION_TOTAL_BPS
) -> tuple[tuple[int, int], ...]:
    """Equal ``(weight_x, weight_y)`` per step of ``[lower, upper]``.

    Each side sums to exactly ``total``; the rounding remainder goes on the
    last step.
    """
    if lower >= upper:
        raise RangeInvalid(
            f"lower ({lower}) must be below upper ({upper})", lower=lower, upper=upper
        )
    if total <= 0:
        raise RangeInvalid(f"distribution total must be positive, got {total}", total=total)
    steps = upper - lower + 1
    weight = total // steps
    weights = [weight] * steps
    weights[-1] += total - weight * steps
    return tuple((w, w) for w in weights)


def build_range_proposal(
    lower: int,
    upper: int,
    desired_active_point: int,
    slippage: int,
    *,
    total: int = DISTRIBUTION_TOTAL_BPS,
) -> RangeProposal:
    if not lower <= desired_active_point <= upper:
        logger.warning(
            f"Desired active point {desired_active_point} is outside [{lower}, {upper}]; "
            "liquidity will be one-sided"
        )
    proposal = RangeProposal(
        lower=lower,
        upper=upper,
        desired_active_point=desired_active_point,
        slippage=slippage,
        distribution=uniform_distribution(lower, upper, total=total),
        total=total,
    )
    logger.debug(
        f"Range proposal [{lower}, {upper}] active={desired_active_point} "
        f"slippage={slippage} steps={proposal.steps}"
    )
    return proposal


def encode_distribution(proposal: RangeProposal) -> bytes:
    """ABI-encode the weights as ``(uint256[] distributionX, uint256[] distributionY)``."""
    return encode(
        ["uint256[]", "uint256[]"],
        [proposal.distribution_x, proposal.distribution_y],
    )


def render_range(
    lower: int, upper: int, active: int, kind: str = "tick", *, width: int = 40
) -> str:
    """One-line picture of where ``active`` sits inside ``[lower, upper]``."""
    if lower >= upper:
        raise RangeInvalid(
            f"lower ({lower}) must be below upper ({upper})", lower=lower, upper=upper
        )
    bar = ["-"] * width
    if active < lower:
        status, prefix, suffix = "below range", "*", " "
    elif active > upper:
        status, prefix, suffix = "above range", " ", "*"
    else:
        status, prefix, suffix = "in range", " ", " "
        pos = (active - lower) * (width - 1) // (upper - lower)
        bar[pos] = "*"
    return (
        f"{kind} {lower} {prefix}[{''.join(bar)}]{suffix} {upper}"
        f"  active {kind} {active} ({status})"
    )
