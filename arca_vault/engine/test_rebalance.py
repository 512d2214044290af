from decimal import Decimal

import pytest
from eth_abi import decode

from arca_vault.core.errors import PriceUnavailable, RangeInvalid
from arca_vault.engine.rebalance import (
    PriceContext,
    build_range_proposal,
    default_bin_range,
    default_range,
    default_tick_range,
    deposit_plan,
    encode_distribution,
    is_aligned,
    optimal_ratio,
    render_range,
    snap_range,
    uniform_distribution,
)
from arca_vault.engine.types import RangeProposal, TokenAmount


class TestRanges:
    def test_default_tick_range_snaps_outward(self):
        assert default_tick_range(1000, 60) == (480, 1500)

    def test_default_tick_range_negative_tick(self):
        assert default_tick_range(-1000, 10) == (-1490, -510)

    def test_default_tick_range_is_aligned(self):
        lower, upper = default_tick_range(12_345, 200)
        assert is_aligned(lower, 200) and is_aligned(upper, 200)
        assert lower < 12_345 < upper

    def test_tiny_width_still_spans_one_spacing(self):
        lower, upper = default_tick_range(600, 60, width_percent=0.001)
        assert upper - lower >= 60

    def test_bad_spacing(self):
        with pytest.raises(RangeInvalid):
            default_tick_range(0, 0)

    def test_default_bin_range(self):
        assert default_bin_range(8_388_608) == (8_388_583, 8_388_633)

    @pytest.mark.parametrize("bin_count", [1, 2])
    def test_bin_range_too_small(self, bin_count):
        with pytest.raises(RangeInvalid):
            default_bin_range(100, bin_count)

    @pytest.mark.parametrize("bin_count", [3, 4, 51, 52])
    def test_bin_range_always_spans_active(self, bin_count):
        lower, upper = default_bin_range(100, bin_count)
        assert lower < 100 < upper

    def test_default_range_dispatch(self):
        assert default_range(1000, 60) == (480, 1500)
        assert default_range(100) == (75, 125)
        assert default_range(100, None, 11) == (95, 105)

    def test_snap_range(self):
        assert snap_range(-65, 61, 60) == (-120, 120)
        assert snap_range(-60, 60, 60) == (-60, 60)

    def test_is_aligned(self):
        assert is_aligned(-120, 60)
        assert not is_aligned(61, 60)


class TestOptimalRatio:
    def test_usd_weighted(self):
        suggestion = optimal_ratio(
            TokenAmount(300 * 10**18, 18, "wS"),
            TokenAmount(100 * 10**6, 6, "USDC"),
            Decimal("1"),
            Decimal("1"),
        )
        assert (suggestion.ratio_x, suggestion.ratio_y) == (75, 25)
        assert "75% wS" in suggestion.message

    def test_floor_x_remainder_to_y(self):
        suggestion = optimal_ratio(
            TokenAmount(1, 0, "X"), TokenAmount(2, 0, "Y"), Decimal(1), Decimal(1)
        )
        assert (suggestion.ratio_x, suggestion.ratio_y) == (33, 67)

    def test_empty_vault(self):
        suggestion = optimal_ratio(
            TokenAmount(0, 18), TokenAmount(0, 6), Decimal(1), Decimal(1)
        )
        assert (suggestion.ratio_x, suggestion.ratio_y) == (50, 50)
        assert "empty" in suggestion.message

    def test_requires_prices(self):
        with pytest.raises(PriceUnavailable):
            optimal_ratio(TokenAmount(1, 0), TokenAmount(1, 0), None, Decimal(1))


class TestDepositPlan:
    def test_bin_pool_keeps_reserve(self):
        plan = deposit_plan(TokenAmount(1_000, 6, "USDC"), TokenAmount(2_000, 18, "wS"))
        assert plan.amount_x.raw == 900
        assert plan.amount_y.raw == 1_800
        assert plan.reserve_x.raw == 100
        assert plan.reserve_y.raw == 200
        assert plan.min_shares == 0

    def test_reserve_floors(self):
        plan = deposit_plan(TokenAmount(15, 0), TokenAmount(0, 0))
        assert plan.reserve_x.raw == 1
        assert plan.amount_x.raw == 14

    def test_range_above_price_takes_only_x(self):
        ctx = PriceContext(current_tick=-1_000, tick_lower=0, tick_upper=600)
        plan = deposit_plan(TokenAmount(10**18, 18), TokenAmount(10**18, 18), 10, ctx)
        assert plan.amount_x.raw == 9 * 10**17
        assert plan.amount_y.raw == 0
        assert plan.reserve_y.raw == 10**18

    def test_range_below_price_takes_only_y(self):
        ctx = PriceContext(current_tick=700, tick_lower=0, tick_upper=600)
        plan = deposit_plan(TokenAmount(10**18, 18), TokenAmount(10**18, 18), 10, ctx)
        assert plan.amount_x.raw == 0
        assert plan.amount_y.raw == 9 * 10**17

    def test_straddling_range_uses_pool_ratio(self):
        ctx = PriceContext(current_tick=0, tick_lower=-600, tick_upper=600)
        plan = deposit_plan(TokenAmount(10**18, 18), TokenAmount(10**17, 18), 10, ctx)
        assert 0 < plan.amount_y.raw <= 9 * 10**16
        assert 0 < plan.amount_x.raw < 9 * 10**17
        assert plan.reserve_x.raw + plan.amount_x.raw == 10**18
        assert plan.reserve_y.raw >= 10**16

    def test_min_shares_from_slippage(self):
        plan = deposit_plan(
            TokenAmount(100, 0), TokenAmount(100, 0), expected_shares=10_000, slippage_bps=50
        )
        assert plan.min_shares == 9_950

    def test_reserve_percent_bounds(self):
        with pytest.raises(RangeInvalid):
            deposit_plan(TokenAmount(1, 0), TokenAmount(1, 0), reserve_percent=101)

    def test_bad_price_context(self):
        with pytest.raises(RangeInvalid):
            PriceContext(current_tick=0, tick_lower=60, tick_upper=60)


class TestDistribution:
    def test_even_split(self):
        assert [w for w, _ in uniform_distribution(100, 103)] == [2500] * 4

    def test_remainder_on_last_step(self):
        dist = uniform_distribution(100, 102)
        assert [w for w, _ in dist] == [3333, 3333, 3334]
        assert [w for _, w in dist] == [3333, 3333, 3334]

    @pytest.mark.parametrize("upper", [101, 106, 150, 125 + 51, 10_100])
    def test_sums_to_total(self, upper):
        dist = uniform_distribution(100, upper)
        assert sum(x for x, _ in dist) == 10_000
        assert sum(y for _, y in dist) == 10_000
        assert len(dist) == upper - 100 + 1

    def test_custom_total(self):
        dist = uniform_distribution(0, 2, total=10**18)
        assert sum(x for x, _ in dist) == 10**18

    def test_invalid_range(self):
        with pytest.raises(RangeInvalid):
            uniform_distribution(5, 5)

    def test_proposal(self):
        proposal = build_range_proposal(100, 102, 101, 10)
        assert proposal.distribution_x == [3333, 3333, 3334]
        assert proposal.steps == 3

    def test_proposal_validation(self):
        with pytest.raises(RangeInvalid):
            RangeProposal(100, 101, 100, 10, ((5000, 5000), (5000, 4999)))
        with pytest.raises(RangeInvalid):
            RangeProposal(100, 102, 100, 10, ((5000, 5000), (5000, 5000)))

    def test_encode_distribution(self):
        proposal = build_range_proposal(100, 103, 101, 10)
        xs, ys = decode(["uint256[]", "uint256[]"], encode_distribution(proposal))
        assert list(xs) == [2500] * 4
        assert list(ys) == [2500] * 4


def test_render_range():
    line = render_range(100, 110, 105, "bin", width=11)
    assert "[-----*-----]" in line
    assert "in range" in line
    assert "below range" in render_range(100, 110, 90)
    assert "above range" in render_range(100, 110, 120)
