"""Pure concentrated-liquidity tick math. No I/O.

``sqrt_price_x96_from_tick`` is the exact bit-math used on chain; the liquidity
helpers work on integers only so deposit plans match what the pool will accept.
"""

from __future__ import annotations

import math

from arca_vault.core.constants import BPS_DENOMINATOR, Q96
from arca_vault.core.errors import RangeInvalid

MIN_TICK = -887272
MAX_TICK = 887272
Q32 = 1 << 32


def sqrt_price_x96_from_tick(tick: int) -> int:
    if tick < MIN_TICK or tick > MAX_TICK:
        raise RangeInvalid(
            f"tick {tick} out of range [{MIN_TICK}, {MAX_TICK}]", tick=tick
        )

    abs_tick = tick if tick >= 0 else -tick
    ratio = 0x100000000000000000000000000000000

    if abs_tick & 0x1:
        ratio = (ratio * 0xFFFCB933BD6FAD37AA2D162D1A594001) >> 128
    if abs_tick & 0x2:
        ratio = (ratio * 0xFFF97272373D413259A46990580E213A) >> 128
    if abs_tick & 0x4:
        ratio = (ratio * 0xFFF2E50F5F656932EF12357CF3C7FDCC) >> 128
    if abs_tick & 0x8:
        ratio = (ratio * 0xFFE5CACA7E10E4E61C3624EAA0941CD0) >> 128
    if abs_tick & 0x10:
        ratio = (ratio * 0xFFCB9843D60F6159C9DB58835C926644) >> 128
    if abs_tick & 0x20:
        ratio = (ratio * 0xFF973B41FA98C081472E6896DFB254C0) >> 128
    if abs_tick & 0x40:
        ratio = (ratio * 0xFF2EA16466C96A3843EC78B326B52861) >> 128
    if abs_tick & 0x80:
        ratio = (ratio * 0xFE5DEE046A99A2A811C461F1969C3053) >> 128
    if abs_tick & 0x100:
        ratio = (ratio * 0xFCBE86C7900A88AEDCFFC83B479AA3A4) >> 128
    if abs_tick & 0x200:
        ratio = (ratio * 0xF987A7253AC413176F2B074CF7815E54) >> 128
    if abs_tick & 0x400:
        ratio = (ratio * 0xF3392B0822B70005940C7A398E4B70F3) >> 128
    if abs_tick & 0x800:
        ratio = (ratio * 0xE7159475A2C29B7443B29C7FA6E889D9) >> 128
    if abs_tick & 0x1000:
        ratio = (ratio * 0xD097F3BDFD2022B8845AD8F792AA5825) >> 128
    if abs_tick & 0x2000:
        ratio = (ratio * 0xA9F746462D870FDF8A65DC1F90E061E5) >> 128
    if abs_tick & 0x4000:
        ratio = (ratio * 0x70D869A156D2A1B890BB3DF62BAF32F7) >> 128
    if abs_tick & 0x8000:
        ratio = (ratio * 0x31BE135F97D08FD981231505542FCFA6) >> 128
    if abs_tick & 0x10000:
        ratio = (ratio * 0x9AA508B5B7A84E1C677DE54F3E99BC9) >> 128
    if abs_tick & 0x20000:
        ratio = (ratio * 0x5D6AF8DEDB81196699C329225EE604) >> 128
    if abs_tick & 0x40000:
        ratio = (ratio * 0x2216E584F5FA1EA926041BEDFE98) >> 128
    if abs_tick & 0x80000:
        ratio = (ratio * 0x48A170391F7DC42444E8FA2) >> 128

    if tick > 0:
        ratio = (1 << 256) // ratio

    # Q128.128 -> Q64.96, rounding up
    sqrt_price_x96 = ratio >> 32
    if ratio & (Q32 - 1):
        sqrt_price_x96 += 1
    return int(sqrt_price_x96)


def tick_delta_for_percent(width_percent: float) -> int:
    """Number of ticks spanning a ``width_percent`` price move (floored)."""
    if width_percent <= 0:
        raise RangeInvalid(
            f"range width must be positive, got {width_percent}",
            width_percent=width_percent,
        )
    return math.floor(math.log(1 + width_percent / 100) / math.log(1.0001))


def round_tick_down(tick: int, spacing: int) -> int:
    """Round toward negative infinity to a multiple of ``spacing``."""
    # Python's // floors toward -inf
    return (tick // spacing) * spacing


def round_tick_up(tick: int, spacing: int) -> int:
    """Round toward positive infinity to a multiple of ``spacing``."""
    remainder = tick % spacing
    if remainder == 0:
        return tick
    return tick + (spacing - remainder)


def is_tick_aligned(tick: int, spacing: int) -> bool:
    return spacing > 0 and tick % spacing == 0


def _liquidity_for_amount_x(sqrt_a: int, sqrt_b: int, amount_x: int) -> int:
    """L = amount_x * sqrtA * sqrtB / ((sqrtB - sqrtA) * Q96)"""
    if sqrt_b <= sqrt_a:
        return 0
    return (amount_x * sqrt_a * sqrt_b) // ((sqrt_b - sqrt_a) * Q96)


def _liquidity_for_amount_y(sqrt_a: int, sqrt_b: int, amount_y: int) -> int:
    """L = amount_y * Q96 / (sqrtB - sqrtA)"""
    if sqrt_b <= sqrt_a:
        return 0
    return (amount_y * Q96) // (sqrt_b - sqrt_a)


def _amount_x_for_liquidity(sqrt_a: int, sqrt_b: int, liquidity: int) -> int:
    if sqrt_b <= sqrt_a or sqrt_a == 0:
        return 0
    return (liquidity * Q96 * (sqrt_b - sqrt_a)) // (sqrt_a * sqrt_b)


def _amount_y_for_liquidity(sqrt_a: int, sqrt_b: int, liquidity: int) -> int:
    if sqrt_b <= sqrt_a:
        return 0
    return (liquidity * (sqrt_b - sqrt_a)) // Q96


def liquidity_for_amounts(
    sqrt_price_x96: int,
    tick_lower: int,
    tick_upper: int,
    amount_x: int,
    amount_y: int,
) -> int:
    """Liquidity obtainable from the given amounts at the current price.

    - price at or below the range: only X counts
    - price at or above the range: only Y counts
    - inside the range: the smaller of the two constraints
    """
    sqrt_a = sqrt_price_x96_from_tick(tick_lower)
    sqrt_b = sqrt_price_x96_from_tick(tick_upper)

    if sqrt_price_x96 <= sqrt_a:
        return _liquidity_for_amount_x(sqrt_a, sqrt_b, amount_x)
    if sqrt_price_x96 >= sqrt_b:
        return _liquidity_for_amount_y(sqrt_a, sqrt_b, amount_y)
    liq_x = _liquidity_for_amount_x(sqrt_price_x96, sqrt_b, amount_x)
    liq_y = _liquidity_for_amount_y(sqrt_a, sqrt_price_x96, amount_y)
    return min(liq_x, liq_y)


def amounts_for_liquidity(
    sqrt_price_x96: int,
    tick_lower: int,
    tick_upper: int,
    liquidity: int,
) -> tuple[int, int]:
    sqrt_a = sqrt_price_x96_from_tick(tick_lower)
    sqrt_b = sqrt_price_x96_from_tick(tick_upper)

    if sqrt_price_x96 <= sqrt_a:
        return (_amount_x_for_liquidity(sqrt_a, sqrt_b, liquidity), 0)
    if sqrt_price_x96 >= sqrt_b:
        return (0, _amount_y_for_liquidity(sqrt_a, sqrt_b, liquidity))
    return (
        _amount_x_for_liquidity(sqrt_price_x96, sqrt_b, liquidity),
        _amount_y_for_liquidity(sqrt_a, sqrt_price_x96, liquidity),
    )


def compute_optimal_amounts(
    sqrt_price_x96: int,
    tick_lower: int,
    tick_upper: int,
    amount_x_available: int,
    amount_y_available: int,
) -> tuple[int, int]:
    """Largest (amount_x, amount_y) in the position's ratio that fits the balances."""
    liq = liquidity_for_amounts(
        sqrt_price_x96, tick_lower, tick_upper, amount_x_available, amount_y_available
    )
    if liq == 0:
        return (0, 0)
    amount_x, amount_y = amounts_for_liquidity(
        sqrt_price_x96, tick_lower, tick_upper, liq
    )
    # Integer rounding can overshoot by a unit; never plan more than is held
    return (min(amount_x, amount_x_available), min(amount_y, amount_y_available))


def slippage_min(amount: int, slippage_bps: int) -> int:
    return (amount * (BPS_DENOMINATOR - slippage_bps)) // BPS_DENOMINATOR
