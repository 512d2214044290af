from __future__ import annotations

from typing import Any


class VaultEngineError(ValueError):
    """Base class for every typed failure the engine raises.

    ``details`` carries the bound that was violated so callers can render an
    actionable message without parsing the text.
    """

    code = "vault_engine_error"

    def __init__(self, message: str, **details: Any):
        self.details: dict[str, Any] = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": str(self), "details": self.details}


class ParseError(VaultEngineError):
    code = "parse_error"


class InvalidFormat(ParseError):
    code = "invalid_format"


class ExceedsAvailable(VaultEngineError):
    code = "exceeds_available"

    def __init__(self, amount: int, available: int, *, label: str = "amount"):
        self.amount = int(amount)
        self.available = int(available)
        super().__init__(
            f"{label} {self.amount} exceeds available {self.available}",
            label=label,
            amount=self.amount,
            available=self.available,
        )


class ExceedsQueued(VaultEngineError):
    code = "exceeds_queued"

    def __init__(self, amount: int, queued: int, *, round_index: int | None = None):
        self.amount = int(amount)
        self.queued = int(queued)
        self.round_index = round_index
        super().__init__(
            f"cannot cancel {self.amount} shares, only {self.queued} queued",
            amount=self.amount,
            queued=self.queued,
            round=round_index,
        )


class NonPositiveAmount(VaultEngineError):
    code = "non_positive_amount"

    def __init__(self, amount: int, *, label: str = "amount"):
        self.amount = int(amount)
        super().__init__(
            f"{label} must be positive, got {self.amount}",
            label=label,
            amount=self.amount,
        )


class DivisionByZero(VaultEngineError):
    code = "division_by_zero"


class PriceUnavailable(DivisionByZero):
    code = "price_unavailable"


class InconsistentState(VaultEngineError):
    code = "inconsistent_state"


class RoundClosed(InconsistentState):
    code = "round_closed"

    def __init__(self, round_index: int, current_round: int):
        self.round_index = int(round_index)
        self.current_round = int(current_round)
        super().__init__(
            f"round {self.round_index} is closed (current round is {self.current_round})",
            round=self.round_index,
            current_round=self.current_round,
        )


class RangeInvalid(VaultEngineError):
    code = "range_invalid"
