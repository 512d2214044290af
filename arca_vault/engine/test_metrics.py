from decimal import Decimal

import pytest

from arca_vault.core.errors import DivisionByZero, InconsistentState
from arca_vault.engine.metrics import (
    compute_snapshot_metrics,
    estimate_tokens_from_shares,
    price_per_share,
    reward_apr,
    user_earnings,
    user_roi,
)
from arca_vault.engine.types import (
    PriceQuote,
    RewardTotals,
    TokenAmount,
    UserPosition,
    VaultSnapshot,
)

NOW_MS = 1_700_000_000_000


@pytest.fixture
def snapshot():
    return VaultSnapshot(
        balance_x=TokenAmount(1_000 * 10**18, 18, "wS"),
        balance_y=TokenAmount(500 * 10**6, 6, "USDC"),
        total_shares=2_000 * 10**18,
        price_per_share_x=Decimal("1.1"),
        price_per_share_y=Decimal("1.05"),
        block_number=123,
    )


@pytest.fixture
def prices():
    return {
        "wS": PriceQuote("wS", Decimal("0.5"), NOW_MS - 1_000, "coingecko"),
        "USDC": PriceQuote("USDC", Decimal("1"), NOW_MS - 1_000, "coingecko"),
    }


def test_tvl_and_user_value(snapshot, prices):
    position = UserPosition(Decimal("100"), Decimal("50"), Decimal("100"))
    metrics = compute_snapshot_metrics(snapshot, position, prices, now_ms=NOW_MS)

    assert metrics.price_data_available is True
    assert metrics.is_stale is False
    assert metrics.vault_balance_x_usd == Decimal("500")
    assert metrics.vault_balance_y_usd == Decimal("500")
    assert metrics.tvl_usd == Decimal("1000")
    # 100 * 1.1 * 0.5 + 50 * 1.05 * 1
    assert metrics.user_value_x_usd == Decimal("55")
    assert metrics.user_value_y_usd == Decimal("52.5")
    assert metrics.user_value_usd == Decimal("107.5")
    assert metrics.earnings_usd == Decimal("7.5")
    assert metrics.roi_percent == Decimal("7.5")


def test_missing_price_leaves_usd_fields_empty(snapshot, prices):
    del prices["USDC"]
    position = UserPosition(Decimal("1"), Decimal("1"))
    metrics = compute_snapshot_metrics(snapshot, position, prices, now_ms=NOW_MS)

    assert metrics.price_data_available is False
    assert metrics.tvl_usd is None
    assert metrics.user_value_usd is None
    assert metrics.roi_percent is None
    assert metrics.price_per_share_x == Decimal("1.1")
    assert metrics.price_per_share_y == Decimal("1.05")


def test_stale_prices_are_used_and_flagged(snapshot, prices):
    prices["wS"] = PriceQuote("wS", Decimal("0.5"), NOW_MS - 60_001)
    metrics = compute_snapshot_metrics(snapshot, None, prices, now_ms=NOW_MS)
    assert metrics.is_stale is True
    assert metrics.tvl_usd == Decimal("1000")


def test_price_exactly_at_threshold_is_fresh(snapshot, prices):
    prices["wS"] = PriceQuote("wS", Decimal("0.5"), NOW_MS - 60_000)
    metrics = compute_snapshot_metrics(snapshot, None, prices, now_ms=NOW_MS)
    assert metrics.is_stale is False


def test_without_position_user_fields_are_empty(snapshot, prices):
    metrics = compute_snapshot_metrics(snapshot, None, prices, now_ms=NOW_MS)
    assert metrics.tvl_usd == Decimal("1000")
    assert metrics.user_value_usd is None


def test_zero_deposits_give_zero_roi(snapshot, prices):
    position = UserPosition(Decimal("10"), Decimal("0"), Decimal("0"))
    metrics = compute_snapshot_metrics(snapshot, position, prices, now_ms=NOW_MS)
    assert metrics.roi_percent == 0


def test_reward_apr(snapshot, prices):
    rewards = RewardTotals(
        compounded_x=TokenAmount(20 * 10**18, 18, "wS"),
        compounded_y=TokenAmount(0, 6, "USDC"),
        time_window_days=30,
    )
    metrics = compute_snapshot_metrics(
        snapshot, None, prices, now_ms=NOW_MS, rewards=rewards
    )
    assert metrics.rewards_usd == Decimal("10")
    # 10 * 365 / 30 / 1000 * 100
    assert metrics.real_apr == Decimal(10) * 365 / 30 / 1000 * 100
    assert metrics.daily_apr == metrics.real_apr / 365


def test_reward_apr_helpers():
    assert reward_apr(Decimal("10"), Decimal("0"), 30) == 0
    # Windows shorter than a day count as one day
    assert reward_apr(Decimal("1"), Decimal("365"), 0) == Decimal(100)


def test_price_per_share():
    assert price_per_share(1_000 * 10**6, 500 * 10**18, 18, 6) == Decimal("2")
    assert price_per_share(5, 0, 18, 6) == 0
    with pytest.raises(InconsistentState):
        price_per_share(-1, 1, 18, 6)


def test_estimate_tokens_from_shares(snapshot):
    amount_x, amount_y = estimate_tokens_from_shares(
        200 * 10**18, snapshot.total_shares, snapshot.balance_x, snapshot.balance_y
    )
    assert amount_x.raw == 100 * 10**18
    assert amount_y.raw == 50 * 10**6
    assert amount_y.symbol == "USDC"


def test_estimate_tokens_floors():
    amount_x, _ = estimate_tokens_from_shares(
        1, 3, TokenAmount(10, 0, "X"), TokenAmount(0, 0, "Y")
    )
    assert amount_x.raw == 3


def test_estimate_tokens_without_supply():
    with pytest.raises(DivisionByZero):
        estimate_tokens_from_shares(1, 0, TokenAmount(1, 0), TokenAmount(1, 0))


def test_earnings_and_roi():
    assert user_earnings(Decimal("110"), Decimal("100")) == Decimal("10")
    assert user_roi(Decimal("10"), Decimal("100")) == Decimal("10")
    assert user_roi(Decimal("10"), Decimal("0")) == 0
