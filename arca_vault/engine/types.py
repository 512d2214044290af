from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum

from eth_utils import to_checksum_address

from arca_vault.core.constants import DISTRIBUTION_TOTAL_BPS, PRICE_STALE_AFTER_MS
from arca_vault.core.errors import InconsistentState, RangeInvalid
from arca_vault.core.utils.units import check_decimals, format_units, to_decimal, to_raw


@dataclass(frozen=True)
class TokenAmount:
    """A raw on-chain integer tagged with the token's decimals."""

    raw: int
    decimals: int
    symbol: str = ""

    def __post_init__(self) -> None:
        check_decimals(self.decimals)
        if isinstance(self.raw, bool) or not isinstance(self.raw, int):
            raise InconsistentState(
                f"raw amount must be an int, got {self.raw!r}", raw=self.raw
            )
        if self.raw < 0:
            raise InconsistentState(
                f"raw amount cannot be negative: {self.raw}", raw=self.raw
            )

    @classmethod
    def zero(cls, decimals: int, symbol: str = "") -> TokenAmount:
        return cls(raw=0, decimals=decimals, symbol=symbol)

    @classmethod
    def parse(cls, text: str, decimals: int, symbol: str = "") -> TokenAmount:
        return cls(raw=to_raw(text, decimals), decimals=decimals, symbol=symbol)

    @property
    def display(self) -> Decimal:
        return to_decimal(self.raw, self.decimals)

    def format(self) -> str:
        return format_units(self.raw, self.decimals)

    def to_usd(self, price: Decimal) -> Decimal:
        return self.display * price

    def with_raw(self, raw: int) -> TokenAmount:
        return replace(self, raw=raw)

    def __str__(self) -> str:
        return f"{self.format()} {self.symbol}".rstrip()


@dataclass(frozen=True)
class VaultSnapshot:
    """One consistent read of vault state, all values from the same block."""

    balance_x: TokenAmount
    balance_y: TokenAmount
    total_shares: int
    price_per_share_x: Decimal
    price_per_share_y: Decimal
    share_decimals: int = 18
    block_number: int | None = None

    def __post_init__(self) -> None:
        if self.total_shares < 0:
            raise InconsistentState(
                f"total shares cannot be negative: {self.total_shares}",
                total_shares=self.total_shares,
            )


@dataclass(frozen=True)
class UserPosition:
    shares_x: Decimal
    shares_y: Decimal
    total_deposited_usd: Decimal = Decimal(0)


@dataclass(frozen=True)
class PriceQuote:
    symbol: str
    usd: Decimal
    last_updated_ms: int
    source: str = "unknown"

    def age_ms(self, now_ms: int) -> int:
        return max(0, now_ms - self.last_updated_ms)

    def is_stale(self, now_ms: int, threshold_ms: int = PRICE_STALE_AFTER_MS) -> bool:
        return self.age_ms(now_ms) > threshold_ms


class RoundState(str, Enum):
    OPEN = "open"
    # Processing happens on chain between two reads and is never observed here
    PROCESSING = "processing"
    CLOSED = "closed"


@dataclass(frozen=True)
class WithdrawalRound:
    index: int
    total_queued_shares: int
    per_user_queued_shares: Mapping[str, int] = field(default_factory=dict)
    released_x: int = 0
    released_y: int = 0

    def __post_init__(self) -> None:
        if self.index < 0:
            raise InconsistentState(
                f"round index cannot be negative: {self.index}", round=self.index
            )
        if self.total_queued_shares < 0 or self.released_x < 0 or self.released_y < 0:
            raise InconsistentState(
                f"round {self.index} has negative totals", round=self.index
            )
        normalized: dict[str, int] = {}
        for user, shares in self.per_user_queued_shares.items():
            if shares < 0:
                raise InconsistentState(
                    f"negative queued shares for {user} in round {self.index}",
                    round=self.index,
                    user=user,
                )
            key = to_checksum_address(user)
            normalized[key] = normalized.get(key, 0) + int(shares)
        object.__setattr__(self, "per_user_queued_shares", normalized)

    def queued_for(self, user: str) -> int:
        return self.per_user_queued_shares.get(to_checksum_address(user), 0)


@dataclass(frozen=True)
class RedemptionEntry:
    round: int
    amount_x: TokenAmount
    amount_y: TokenAmount

    @property
    def is_empty(self) -> bool:
        return self.amount_x.raw == 0 and self.amount_y.raw == 0


@dataclass(frozen=True)
class RangeProposal:
    lower: int
    upper: int
    desired_active_point: int
    slippage: int
    distribution: tuple[tuple[int, int], ...]
    total: int = DISTRIBUTION_TOTAL_BPS

    def __post_init__(self) -> None:
        if self.lower >= self.upper:
            raise RangeInvalid(
                f"lower ({self.lower}) must be below upper ({self.upper})",
                lower=self.lower,
                upper=self.upper,
            )
        steps = self.upper - self.lower + 1
        if len(self.distribution) != steps:
            raise RangeInvalid(
                f"distribution has {len(self.distribution)} entries, range has {steps} steps",
                entries=len(self.distribution),
                steps=steps,
            )
        sum_x = sum(x for x, _ in self.distribution)
        sum_y = sum(y for _, y in self.distribution)
        if sum_x != self.total or sum_y != self.total:
            raise RangeInvalid(
                f"distribution sums to ({sum_x}, {sum_y}), expected {self.total} per side",
                sum_x=sum_x,
                sum_y=sum_y,
                total=self.total,
            )
        if self.slippage < 0:
            raise RangeInvalid("slippage cannot be negative", slippage=self.slippage)

    @property
    def distribution_x(self) -> list[int]:
        return [x for x, _ in self.distribution]

    @property
    def distribution_y(self) -> list[int]:
        return [y for _, y in self.distribution]

    @property
    def steps(self) -> int:
        return len(self.distribution)


@dataclass(frozen=True)
class DepositPlan:
    amount_x: TokenAmount
    amount_y: TokenAmount
    min_shares: int
    reserve_x: TokenAmount
    reserve_y: TokenAmount


@dataclass(frozen=True)
class RatioSuggestion:
    ratio_x: int
    ratio_y: int
    message: str


@dataclass(frozen=True)
class RewardTotals:
    compounded_x: TokenAmount
    compounded_y: TokenAmount
    time_window_days: int


@dataclass(frozen=True)
class VaultMetrics:
    price_per_share_x: Decimal
    price_per_share_y: Decimal
    price_data_available: bool
    is_stale: bool
    tvl_usd: Decimal | None = None
    vault_balance_x_usd: Decimal | None = None
    vault_balance_y_usd: Decimal | None = None
    user_value_usd: Decimal | None = None
    user_value_x_usd: Decimal | None = None
    user_value_y_usd: Decimal | None = None
    earnings_usd: Decimal | None = None
    roi_percent: Decimal | None = None
    rewards_usd: Decimal | None = None
    real_apr: Decimal | None = None
    daily_apr: Decimal | None = None
