"""
Tests for the commission and split calculator.
"""

import pytest

from deal_flow.core import (
    AdditionalSplit,
    Deal,
    DealMember,
    HOUSE_CUT_RATE,
    InvalidRate,
    breakdown_for,
    calc_after_house,
    calc_broker_split,
    calc_commission,
    calc_deductions,
    calc_house_cut,
    calc_member_take_home,
    calc_take_home,
    member_breakdown,
    member_breakdowns,
    resolve_member_split,
)


@pytest.fixture
def referral_deal():
    """$1M sale at 3% / 50% with a 25% referral and two even members."""
    return Deal(
        id="DEAL-1",
        broker_id="BRK-A",
        deal_name="Main Street",
        price=1_000_000,
        commission_rate=0.03,
        broker_split=0.50,
        additional_splits=[AdditionalSplit("Referral", 0.25)],
        deal_members=[DealMember("BRK-A"), DealMember("BRK-B")],
    )


class TestWaterfall:
    """Test the commission waterfall."""

    def test_worked_example(self):
        assert calc_commission(1_000_000, 0.03) == pytest.approx(30_000)
        assert calc_broker_split(1_000_000, 0.03, 0.5) == pytest.approx(15_000)
        assert calc_house_cut(1_000_000, 0.03, 0.5) == pytest.approx(4_500)
        assert calc_after_house(1_000_000, 0.03, 0.5) == pytest.approx(10_500)
        assert calc_take_home(1_000_000, 0.03, 0.5) == pytest.approx(10_500)

    def test_house_cut_is_fixed(self):
        assert HOUSE_CUT_RATE == 0.30

    def test_missing_price_is_zero(self):
        assert calc_commission(None, 0.03) == 0
        assert calc_take_home(None, 0.03, 0.5, [AdditionalSplit("Referral", 0.25)]) == 0

    def test_referral_deduction(self):
        splits = [AdditionalSplit("Referral", 0.25)]
        assert calc_deductions(10_500, splits) == pytest.approx(2_625)
        assert calc_take_home(1_000_000, 0.03, 0.5, splits) == pytest.approx(7_875)

    def test_splits_do_not_compound(self):
        splits = [AdditionalSplit("Referral", 0.25), AdditionalSplit("Team Fee", 0.10)]
        assert calc_deductions(10_000, splits) == pytest.approx(3_500)

    def test_each_step_never_exceeds_previous(self):
        price = 2_750_000
        rate, split = 0.025, 0.6
        commission = calc_commission(price, rate)
        broker = calc_broker_split(price, rate, split)
        after = calc_after_house(price, rate, split)
        take_home = calc_take_home(price, rate, split, [AdditionalSplit("Referral", 0.2)])
        assert commission >= broker >= after >= take_home >= 0


class TestInvalidRates:
    """Rates outside [0, 1] fail fast."""

    @pytest.mark.parametrize("rate", [-0.01, 1.5, 3, float("nan")])
    def test_commission_rate(self, rate):
        with pytest.raises(InvalidRate):
            calc_commission(1_000_000, rate)

    def test_broker_split(self):
        with pytest.raises(InvalidRate) as exc:
            calc_broker_split(1_000_000, 0.03, 50)
        assert exc.value.field == "broker_split"

    def test_additional_split_percent(self):
        with pytest.raises(InvalidRate):
            calc_take_home(1_000_000, 0.03, 0.5, [AdditionalSplit("Referral", 25)])

    def test_member_split(self):
        with pytest.raises(InvalidRate):
            calc_member_take_home(1_000_000, 0.03, 0.5, member_split=1.2)

    def test_boundaries_allowed(self):
        assert calc_commission(100, 0) == 0
        assert calc_commission(100, 1) == pytest.approx(100)


class TestMemberSplit:
    """Test roster-based split resolution."""

    def test_empty_roster(self):
        assert resolve_member_split([], "BRK-A") == 1.0
        assert resolve_member_split(None, "BRK-A") == 1.0

    def test_unlisted_broker(self):
        assert resolve_member_split([DealMember("BRK-B")], "BRK-A") == 1.0

    def test_even_split(self):
        members = [DealMember("BRK-A"), DealMember("BRK-B"), DealMember("BRK-C")]
        assert resolve_member_split(members, "BRK-A") == pytest.approx(1 / 3)

    def test_override(self):
        members = [DealMember("BRK-A", 0.7), DealMember("BRK-B", 0.3)]
        assert resolve_member_split(members, "BRK-B") == pytest.approx(0.3)

    def test_even_share_counts_members_with_overrides(self):
        members = [DealMember("BRK-A", 0.6), DealMember("BRK-B")]
        assert resolve_member_split(members, "BRK-B") == pytest.approx(0.5)

    def test_none_member_split_takes_full_share(self):
        assert calc_member_take_home(1_000_000, 0.03, 0.5) == pytest.approx(10_500)

    def test_two_even_members_no_splits(self):
        members = [DealMember("BRK-A"), DealMember("BRK-B")]
        split = resolve_member_split(members, "BRK-A")
        assert calc_member_take_home(1_000_000, 0.03, 0.5, [], split) == pytest.approx(5_250)


class TestBreakdowns:
    """Test deal-level breakdowns."""

    def test_breakdown_for(self, referral_deal):
        b = breakdown_for(referral_deal)
        assert b.commission == pytest.approx(30_000)
        assert b.broker_split_amount == pytest.approx(15_000)
        assert b.house_cut == pytest.approx(4_500)
        assert b.after_house == pytest.approx(10_500)
        assert b.deductions[0].label == "Referral"
        assert b.deductions[0].amount == pytest.approx(2_625)
        assert b.total_deductions == pytest.approx(2_625)
        assert b.take_home == pytest.approx(7_875)

    def test_breakdown_to_dict_rounds(self, referral_deal):
        data = breakdown_for(referral_deal).to_dict()
        assert data["take_home"] == 7875.0
        assert data["deductions"] == [{"label": "Referral", "percent": 0.25, "amount": 2625.0}]

    def test_member_breakdown(self, referral_deal):
        mine = member_breakdown(referral_deal, "BRK-A")
        assert mine.member_split == pytest.approx(0.5)
        assert mine.member_share == pytest.approx(5_250)
        assert mine.deductions == pytest.approx(1_312.5)
        assert mine.take_home == pytest.approx(3_937.5)

    def test_member_breakdowns_cover_roster(self, referral_deal):
        shares = member_breakdowns(referral_deal)
        assert [m.broker_id for m in shares] == ["BRK-A", "BRK-B"]
        assert sum(m.take_home for m in shares) == pytest.approx(breakdown_for(referral_deal).take_home)
