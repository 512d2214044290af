"""Decoding of the two on-chain price encodings and cross prices.

Oracle helpers report a 128.128 fixed-point price: ``p / 2**128`` raw Y per
raw X. Concentrated-liquidity pools report ``sqrtPriceX96`` and a tick. Both
decode to a human price (whole Y per whole X). Integer results stay integers;
``Decimal`` is only used where a human price is the output.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal, localcontext

from arca_vault.core.constants import DEVIATION_SCALE, Q128, Q192, TICK_BASE
from arca_vault.core.errors import DivisionByZero, PriceUnavailable
from arca_vault.core.utils.units import check_decimals, format_units_fixed, to_decimal

# Enough digits for 2**160 squared plus 24 decimals of scaling
_PRECISION = 100


def _ceil_div(a: int, b: int) -> int:
    return -(-a // b)


# ── 128.128 oracle prices ──


def oracle_amount_y_for_one_x(price_x128: int, decimals_x: int) -> int:
    """Raw Y received for one whole X.

    Scales by ``10**decimals_x`` before shifting so fractional Y is not
    truncated away first.
    """
    check_decimals(decimals_x)
    if price_x128 < 0:
        raise PriceUnavailable(f"negative oracle price: {price_x128}", price=price_x128)
    return (price_x128 * 10**decimals_x) >> 128


def format_oracle_price(price_x128: int, decimals_x: int, decimals_y: int) -> str:
    amount_y = oracle_amount_y_for_one_x(price_x128, decimals_x)
    return format_units_fixed(amount_y, decimals_y)


def oracle_price_to_decimal(price_x128: int, decimals_x: int, decimals_y: int) -> Decimal:
    amount_y = oracle_amount_y_for_one_x(price_x128, decimals_x)
    return to_decimal(amount_y, decimals_y)


def encode_oracle_price(price: Decimal | str | int, decimals_x: int, decimals_y: int) -> int:
    """128.128 encoding of a human price, rounded up.

    Decoding the result with ``oracle_amount_y_for_one_x`` gives back
    ``price * 10**decimals_y`` whenever that is a whole number.
    """
    check_decimals(decimals_x)
    check_decimals(decimals_y)
    value = Decimal(price)
    if not value.is_finite() or value <= 0:
        raise PriceUnavailable(f"price must be positive, got {price}", price=str(price))
    numerator, denominator = value.as_integer_ratio()
    return _ceil_div(
        numerator * 10**decimals_y * Q128, denominator * 10**decimals_x
    )


def invert_price(amount_y_for_one_x: int, decimals_x: int, decimals_y: int) -> int:
    """Raw X received for one whole Y, given raw Y for one whole X."""
    check_decimals(decimals_x)
    check_decimals(decimals_y)
    if amount_y_for_one_x <= 0:
        raise PriceUnavailable(
            "cannot invert a zero price", amount_y_for_one_x=amount_y_for_one_x
        )
    return (10**decimals_x * 10**decimals_y) // amount_y_for_one_x


# ── sqrtPriceX96 / ticks ──


def raw_price_from_sqrt_price_x96(sqrt_price_x96: int) -> Decimal:
    if sqrt_price_x96 <= 0:
        raise PriceUnavailable(
            "pool price is not initialized", sqrt_price_x96=sqrt_price_x96
        )
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return Decimal(sqrt_price_x96 * sqrt_price_x96) / Decimal(Q192)


def sqrt_price_x96_to_amount_y(sqrt_price_x96: int, decimals_x: int) -> int:
    """Raw Y for one whole X at the pool price, in the oracle's integer units."""
    check_decimals(decimals_x)
    if sqrt_price_x96 <= 0:
        raise PriceUnavailable(
            "pool price is not initialized", sqrt_price_x96=sqrt_price_x96
        )
    return (sqrt_price_x96 * sqrt_price_x96 * 10**decimals_x) >> 192


def sqrt_price_x96_to_price(sqrt_price_x96: int, decimals_x: int, decimals_y: int) -> Decimal:
    check_decimals(decimals_x)
    check_decimals(decimals_y)
    raw = raw_price_from_sqrt_price_x96(sqrt_price_x96)
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return raw.scaleb(decimals_x - decimals_y)


def _raw_tick_price(tick: int) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return Decimal(TICK_BASE) ** tick


def tick_to_price(tick: int, decimals_x: int, decimals_y: int) -> Decimal:
    check_decimals(decimals_x)
    check_decimals(decimals_y)
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return _raw_tick_price(tick).scaleb(decimals_x - decimals_y)


def price_to_tick(price: Decimal | str | int, decimals_x: int, decimals_y: int) -> int:
    """Greatest tick whose price does not exceed ``price``."""
    check_decimals(decimals_x)
    check_decimals(decimals_y)
    value = Decimal(price)
    if not value.is_finite() or value <= 0:
        raise PriceUnavailable(f"price must be positive, got {price}", price=str(price))
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        raw = value.scaleb(decimals_y - decimals_x)
        tick = math.floor(raw.ln() / Decimal(TICK_BASE).ln())
        # ln() is correctly rounded but the quotient can land a hair off an integer
        while _raw_tick_price(tick) > raw:
            tick -= 1
        while _raw_tick_price(tick + 1) <= raw:
            tick += 1
    return tick


# ── cross prices ──


def cross_price(price_x_native: int, price_y_native: int, decimals_y: int) -> int:
    """Raw Y per whole X from two prices quoted in a common native token."""
    check_decimals(decimals_y)
    if price_y_native == 0:
        raise DivisionByZero(
            "tokenY has no native price", price_y_native=price_y_native
        )
    return price_x_native * 10**decimals_y // price_y_native


# ── oracle sanity checks ──


@dataclass(frozen=True)
class OracleParameters:
    min_price: int
    max_price: int
    heartbeat_x: int
    heartbeat_y: int
    deviation_threshold: int
    twap_check_enabled: bool
    twap_interval: int

    @classmethod
    def from_tuple(cls, raw: tuple) -> OracleParameters:
        return cls(
            min_price=int(raw[0]),
            max_price=int(raw[1]),
            heartbeat_x=int(raw[2]),
            heartbeat_y=int(raw[3]),
            deviation_threshold=int(raw[4]),
            twap_check_enabled=bool(raw[5]),
            twap_interval=int(raw[6]),
        )


def check_price_bounds(amount_y_for_one_x: int, params: OracleParameters) -> bool:
    return params.min_price <= amount_y_for_one_x <= params.max_price


def price_deviation(spot: int, twap: int) -> int:
    """``|spot - twap| / twap`` scaled so that 10**18 is 100%."""
    if twap <= 0:
        raise PriceUnavailable("TWAP price is zero", twap=twap)
    return abs(spot - twap) * DEVIATION_SCALE // twap


def is_within_deviation(spot: int, twap: int, threshold: int) -> bool:
    return price_deviation(spot, twap) <= threshold


def format_deviation_threshold(threshold: int) -> str:
    # 1e18 is 100%, so one percent is 1e16
    return f"{format_units_fixed(threshold, 16, places=2)}%"
