"""Fixed-point conversion between human decimal strings and raw token integers.

Raw amounts are arbitrary-precision ``int``; only the human side goes through
``Decimal``. Input with more fractional digits than the token supports is
rejected rather than truncated, so ``to_raw`` never silently loses value.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from arca_vault.core.constants import MAX_TOKEN_DECIMALS
from arca_vault.core.errors import ParseError

MAX_UINT256_DIGITS = len(str(2**256 - 1))


def check_decimals(decimals: int) -> int:
    if isinstance(decimals, bool) or not isinstance(decimals, int):
        raise ParseError(f"decimals must be an int, got {decimals!r}", decimals=decimals)
    if decimals < 0 or decimals > MAX_TOKEN_DECIMALS:
        raise ParseError(
            f"decimals must be in [0, {MAX_TOKEN_DECIMALS}], got {decimals}",
            decimals=decimals,
        )
    return decimals


def _to_decimal(value: str | int | Decimal) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ParseError(f"Invalid token amount: {value!r}", value=value)
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        # repr(0.1) round-trips but 0.1 itself is not 1/10; make callers choose
        raise ParseError(
            f"Pass amounts as strings, not floats: {value!r}", value=value
        )
    text = str(value).strip().replace("_", "")
    if not text:
        raise ParseError("Empty token amount", value=value)
    try:
        return Decimal(text)
    except InvalidOperation as exc:
        raise ParseError(f"Invalid token amount: {value!r}", value=value) from exc


def to_raw(amount: str | int | Decimal, decimals: int) -> int:
    check_decimals(decimals)
    amt = _to_decimal(amount)
    if not amt.is_finite():
        raise ParseError(f"Invalid token amount: {amount!r}", value=str(amount))
    if amt < 0:
        raise ParseError("Amount must be non-negative", value=str(amount))

    # Work on the exact digit tuple; Decimal arithmetic would round to context precision
    _, digit_tuple, exponent = amt.as_tuple()
    digits = list(digit_tuple)
    while digits and digits[-1] == 0:
        digits.pop()
        exponent += 1
    if not digits:
        return 0
    # Last digit is non-zero, so any negative shift leaves a fractional remainder
    shift = exponent + decimals
    if shift < 0:
        raise ParseError(
            f"{amount} has more than {decimals} fractional digits",
            value=str(amount),
            decimals=decimals,
        )
    if len(digits) + shift > MAX_UINT256_DIGITS:
        raise ParseError(f"Amount out of range: {amount!r}", value=str(amount))
    return int("".join(map(str, digits))) * 10**shift


def to_wei_eth(amount_eth: str | int | Decimal) -> int:
    return to_raw(amount_eth, 18)


def _split_raw(raw: int, decimals: int) -> tuple[str, str]:
    check_decimals(decimals)
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ParseError(f"raw amount must be an int, got {raw!r}", raw=raw)
    if raw < 0:
        raise ParseError("raw amount must be non-negative", raw=raw)
    if decimals == 0:
        return str(raw), ""
    whole, frac = divmod(raw, 10**decimals)
    return str(whole), str(frac).rjust(decimals, "0")


def format_units(raw: int, decimals: int) -> str:
    """Shortest exact decimal form of ``raw / 10**decimals``.

    Keeps one fractional digit for fractional tokens (``"1.0"``) so balances
    render consistently.
    """
    whole, frac = _split_raw(raw, decimals)
    if decimals == 0:
        return whole
    frac = frac.rstrip("0") or "0"
    return f"{whole}.{frac}"


def format_units_fixed(raw: int, decimals: int, places: int | None = None) -> str:
    whole, frac = _split_raw(raw, decimals)
    if places is None:
        places = decimals
    if places < 0:
        raise ParseError("places must be non-negative", places=places)
    if places == 0:
        return whole
    # Truncates beyond ``places``; pads with zeros when ``places > decimals``
    return f"{whole}.{frac[:places].ljust(places, '0')}"


def to_decimal(raw: int, decimals: int) -> Decimal:
    return Decimal(format_units(raw, decimals))


def format_token_amount(raw: int, decimals: int, symbol: str) -> str:
    return f"{format_units(raw, decimals)} {symbol}"


def format_share_amount(raw: int, decimals: int) -> str:
    return f"{format_units(raw, decimals)} shares"


def format_percent(part: int, whole: int, places: int = 2) -> str:
    if whole <= 0:
        return f"{Decimal(0):.{places}f}%"
    pct = Decimal(part) * 100 / Decimal(whole)
    return f"{pct:.{places}f}%"
