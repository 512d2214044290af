from arca_vault.core.adapters.BaseAdapter import BaseAdapter
from arca_vault.core.errors import (
    DivisionByZero,
    ExceedsAvailable,
    ExceedsQueued,
    InconsistentState,
    InvalidFormat,
    NonPositiveAmount,
    ParseError,
    PriceUnavailable,
    RangeInvalid,
    RoundClosed,
    VaultEngineError,
)

__all__ = [
    "BaseAdapter",
    "VaultEngineError",
    "ParseError",
    "InvalidFormat",
    "ExceedsAvailable",
    "ExceedsQueued",
    "NonPositiveAmount",
    "DivisionByZero",
    "PriceUnavailable",
    "InconsistentState",
    "RoundClosed",
    "RangeInvalid",
]
