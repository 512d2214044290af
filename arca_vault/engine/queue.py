"""Round-indexed withdrawal queue bookkeeping.

Queued shares stay in the user's share balance until the round is redeemed,
so the shares still free to queue are the balance minus every round's queued
shares. Round ``r`` is open while ``r == current_round`` and closed once the
operator has processed it; the processing step itself happens on chain and is
never observed here.
Functions return new ``WithdrawalRound`` values and never mutate their inputs.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace

from eth_utils import to_checksum_address

from arca_vault.core.errors import (
    ExceedsQueued,
    InconsistentState,
    NonPositiveAmount,
    RoundClosed,
)
from arca_vault.engine.amounts import validate_amount
from arca_vault.engine.types import RedemptionEntry, RoundState, TokenAmount, WithdrawalRound


@dataclass(frozen=True)
class QueueStatusRow:
    round: int
    state: RoundState
    total_queued_shares: int
    user_queued_shares: int
    redeemable: RedemptionEntry


def round_state(index: int, current_round: int) -> RoundState:
    if index < 0 or index > current_round:
        raise InconsistentState(
            f"round {index} does not exist (current round is {current_round})",
            round=index,
            current_round=current_round,
        )
    return RoundState.OPEN if index == current_round else RoundState.CLOSED


def default_redeem_round(current_round: int) -> int:
    """The most recent round that can have been processed."""
    return max(current_round - 1, 0)


def _check_contiguous(rounds: Sequence[WithdrawalRound]) -> None:
    for expected, rnd in enumerate(rounds):
        if rnd.index != expected:
            raise InconsistentState(
                f"rounds must be 0..n in order; position {expected} holds round {rnd.index}",
                expected=expected,
                got=rnd.index,
            )


def available_shares(
    total_shares: int, rounds: Sequence[WithdrawalRound], user: str
) -> int:
    """Shares the user can still queue: balance minus everything already queued.

    ``rounds`` must be exactly rounds ``0..current_round``.
    """
    _check_contiguous(rounds)
    queued = sum(rnd.queued_for(user) for rnd in rounds)
    available = total_shares - queued
    if available < 0:
        raise InconsistentState(
            f"queued shares ({queued}) exceed share balance ({total_shares})",
            total_shares=total_shares,
            queued=queued,
            user=to_checksum_address(user),
        )
    return available


def verify_round(rnd: WithdrawalRound, *, complete: bool = False) -> None:
    """Per-user queued shares never exceed the round total, and match it when
    ``per_user_queued_shares`` covers every user in the round."""
    per_user = sum(rnd.per_user_queued_shares.values())
    if per_user > rnd.total_queued_shares or (
        complete and per_user != rnd.total_queued_shares
    ):
        raise InconsistentState(
            f"round {rnd.index}: per-user sum {per_user} vs total {rnd.total_queued_shares}",
            round=rnd.index,
            per_user=per_user,
            total=rnd.total_queued_shares,
        )


def redeemable(
    rnd: WithdrawalRound,
    user: str,
    *,
    current_round: int,
    token_x: TokenAmount,
    token_y: TokenAmount,
) -> RedemptionEntry:
    """Preview of what ``user`` can redeem from ``rnd``.

    ``token_x``/``token_y`` only supply decimals and symbols. Amounts are zero
    while the round is open; afterwards they are the user's floor pro-rata
    share of what the vault released for the round.
    """
    zero = RedemptionEntry(rnd.index, token_x.with_raw(0), token_y.with_raw(0))
    if round_state(rnd.index, current_round) is RoundState.OPEN:
        return zero
    user_queued = rnd.queued_for(user)
    if user_queued == 0 or rnd.total_queued_shares == 0:
        return zero
    verify_round(rnd)
    return RedemptionEntry(
        rnd.index,
        token_x.with_raw(rnd.released_x * user_queued // rnd.total_queued_shares),
        token_y.with_raw(rnd.released_y * user_queued // rnd.total_queued_shares),
    )


def _with_user_shares(rnd: WithdrawalRound, user: str, delta: int) -> WithdrawalRound:
    per_user = dict(rnd.per_user_queued_shares)
    key = to_checksum_address(user)
    per_user[key] = per_user.get(key, 0) + delta
    if per_user[key] == 0:
        del per_user[key]
    return replace(
        rnd,
        total_queued_shares=rnd.total_queued_shares + delta,
        per_user_queued_shares=per_user,
    )


def queue_withdrawal(
    rnd: WithdrawalRound,
    user: str,
    shares: int,
    *,
    available: int,
    current_round: int,
) -> WithdrawalRound:
    if round_state(rnd.index, current_round) is not RoundState.OPEN:
        raise RoundClosed(rnd.index, current_round)
    validate_amount(shares, available, label="shares")
    return _with_user_shares(rnd, user, shares)


def cancel_queued(
    rnd: WithdrawalRound,
    user: str,
    shares: int,
    *,
    current_round: int,
) -> WithdrawalRound:
    """Take back exactly ``shares`` from the user's queue in the open round."""
    if shares <= 0:
        raise NonPositiveAmount(shares, label="shares")
    if round_state(rnd.index, current_round) is not RoundState.OPEN:
        raise RoundClosed(rnd.index, current_round)
    queued = rnd.queued_for(user)
    if shares > queued:
        raise ExceedsQueued(shares, queued, round_index=rnd.index)
    return _with_user_shares(rnd, user, -shares)


def queue_status(
    rounds: Sequence[WithdrawalRound],
    user: str,
    current_round: int,
    token_x: TokenAmount,
    token_y: TokenAmount,
    *,
    redeemable_amounts: Mapping[int, tuple[int, int]] | None = None,
) -> list[QueueStatusRow]:
    """Rounds that hold any queued shares, oldest first.

    ``redeemable_amounts`` holds amounts read from the vault per round; where
    present they replace the pro-rata preview for closed rounds.
    """
    redeemable_amounts = redeemable_amounts or {}
    _check_contiguous(rounds)
    rows = []
    for rnd in rounds:
        if rnd.total_queued_shares == 0:
            continue
        state = round_state(rnd.index, current_round)
        if state is RoundState.CLOSED and rnd.index in redeemable_amounts:
            onchain_x, onchain_y = redeemable_amounts[rnd.index]
            entry = RedemptionEntry(
                rnd.index, token_x.with_raw(onchain_x), token_y.with_raw(onchain_y)
            )
        else:
            entry = redeemable(
                rnd,
                user,
                current_round=current_round,
                token_x=token_x,
                token_y=token_y,
            )
        rows.append(
            QueueStatusRow(
                round=rnd.index,
                state=state,
                total_queued_shares=rnd.total_queued_shares,
                user_queued_shares=rnd.queued_for(user),
                redeemable=entry,
            )
        )
    return rows
