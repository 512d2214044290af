"""User amount input: parse, validate, suggest.

Accepted forms (case and surrounding whitespace ignored):

    "1.5"          token units, converted with the token's decimals
    "50%"          floor(available * 50 / 100)
    "max"          everything available
    "1500000wei"   a raw integer, "raw" works as the unit marker too
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from arca_vault.core.constants import STABLECOIN_SYMBOLS
from arca_vault.core.errors import (
    ExceedsAvailable,
    InconsistentState,
    InvalidFormat,
    NonPositiveAmount,
    ParseError,
)
from arca_vault.core.utils.units import MAX_UINT256_DIGITS, check_decimals, to_raw

_RAW_RE = re.compile(r"^(?P<value>[+-]?\d+)\s*(?:wei|raw)$")
_PERCENT_RE = re.compile(r"^(?P<value>[+-]?[\d.]+)\s*%$")


@dataclass(frozen=True)
class SuggestedAmount:
    label: str
    raw: int


def validate_amount(
    amount: int,
    available: int,
    *,
    label: str = "amount",
    allow_zero: bool = False,
) -> int:
    if available < 0:
        raise InconsistentState(
            f"available {label} cannot be negative: {available}", available=available
        )
    if amount < 0 or (amount == 0 and not allow_zero):
        raise NonPositiveAmount(amount, label=label)
    if amount > available:
        raise ExceedsAvailable(amount, available, label=label)
    return amount


def _parse_percent(value: str, available: int, original: str) -> int:
    try:
        pct = Decimal(value)
    except InvalidOperation as exc:
        raise InvalidFormat(f"Invalid percentage: {original!r}", value=original) from exc
    if not pct.is_finite():
        raise InvalidFormat(f"Invalid percentage: {original!r}", value=original)
    if pct < 0:
        raise NonPositiveAmount(-1, label="percentage")
    numerator, denominator = pct.as_integer_ratio()
    return (available * numerator) // (denominator * 100)


def _parse_decimal(value: str, decimals: int, original: str) -> int:
    try:
        parsed = Decimal(value.replace("_", ""))
    except InvalidOperation as exc:
        raise InvalidFormat(f"Invalid amount: {original!r}", value=original) from exc
    if parsed.is_finite() and parsed < 0:
        try:
            amount = -to_raw(parsed.copy_negate(), decimals)
        except ParseError:
            amount = -1
        raise NonPositiveAmount(amount)
    try:
        return to_raw(value, decimals)
    except ParseError as exc:
        raise InvalidFormat(str(exc), **{**exc.details, "value": original}) from exc


def parse_amount(
    text: str,
    decimals: int,
    available: int,
    *,
    allow_zero: bool = False,
) -> int:
    """Parse user input into a raw amount bounded by ``available``.

    Raises InvalidFormat for unparseable text, NonPositiveAmount for zero or
    negative results (zero allowed with ``allow_zero``), and ExceedsAvailable
    when the result is larger than ``available``. Percentages always refer to
    ``available`` and round down.
    """
    check_decimals(decimals)
    if not isinstance(text, str):
        raise InvalidFormat(f"Amount must be text, got {text!r}", value=repr(text))
    normalized = text.strip().lower()
    if not normalized:
        raise InvalidFormat("Empty amount", value=text)

    if normalized == "max":
        amount = available
    elif m := _PERCENT_RE.match(normalized):
        amount = _parse_percent(m.group("value"), available, text)
    elif m := _RAW_RE.match(normalized):
        if len(m.group("value").lstrip("+-")) > MAX_UINT256_DIGITS:
            raise InvalidFormat(f"Raw amount out of range: {text!r}", value=text)
        amount = int(m.group("value"))
    else:
        amount = _parse_decimal(normalized, decimals, text)

    return validate_amount(amount, available, allow_zero=allow_zero)


def is_stablecoin(symbol: str) -> bool:
    return symbol.strip().upper() in STABLECOIN_SYMBOLS


def amount_suggestions(
    symbol: str,
    decimals: int,
    *,
    is_stablecoin: bool,
    is_first_deposit: bool,
) -> list[SuggestedAmount]:
    """Quick-pick deposit amounts shown next to the input."""
    check_decimals(decimals)
    amounts = ["1", "0.1", "0.01"]
    if is_first_deposit:
        amounts = ["100", "10", "1"] if is_stablecoin else ["1", "0.1", "0.02"]

    suggestions = []
    for amount in amounts:
        # Floor: a 0-decimal token gets 0 for sub-unit suggestions
        raw = int(Decimal(amount).scaleb(decimals))
        label = f"${amount}" if is_stablecoin and is_first_deposit else f"{amount} {symbol}"
        suggestions.append(SuggestedAmount(label=label, raw=raw))
    return suggestions
