"""
Commission and split calculator.

Pure functions over a deal's commercial terms:

    commission      = price x commission_rate
    broker split    = commission x broker_split
    house cut       = broker split x 30%
    after house     = broker split x 70%
    take-home       = after house - sum(after house x split.percent)

Each additional split is taken from the same base; they do not compound.
A missing price counts as zero. Rates outside [0, 1] raise InvalidRate.
"""

from dataclasses import dataclass, field
from typing import Optional

from .deal import AdditionalSplit, Deal, DealMember
from .validation import check_rate


# Brokerage retention from every broker split, fixed for all deals
HOUSE_CUT_RATE = 0.30


def _check_splits(splits: list[AdditionalSplit]) -> None:
    for i, split in enumerate(splits):
        check_rate(f"additional_splits[{i}].percent", split.percent)


def calc_commission(price: Optional[float], rate: float) -> float:
    """Total commission = price x rate (0 when price is missing)."""
    check_rate("commission_rate", rate)
    if not price:
        return 0.0
    return price * rate


def calc_broker_split(price: Optional[float], rate: float, split: float) -> float:
    """Broker's side = commission x broker split."""
    check_rate("broker_split", split)
    return calc_commission(price, rate) * split


def calc_house_cut(price: Optional[float], rate: float, split: float) -> float:
    """The brokerage's 30% of the broker split."""
    return calc_broker_split(price, rate, split) * HOUSE_CUT_RATE


def calc_after_house(price: Optional[float], rate: float, split: float) -> float:
    """Broker split after the house takes its 30%."""
    return calc_broker_split(price, rate, split) * (1 - HOUSE_CUT_RATE)


def calc_deductions(base: float, splits: list[AdditionalSplit]) -> float:
    """Sum of base x percent for every additional split."""
    _check_splits(splits)
    return sum(base * s.percent for s in splits)


def calc_take_home(
    price: Optional[float],
    rate: float,
    split: float,
    additional_splits: Optional[list[AdditionalSplit]] = None,
) -> float:
    """Deal-wide take-home = after house - additional split deductions."""
    after_house = calc_after_house(price, rate, split)
    return after_house - calc_deductions(after_house, additional_splits or [])


def calc_member_take_home(
    price: Optional[float],
    rate: float,
    broker_split: float,
    additional_splits: Optional[list[AdditionalSplit]] = None,
    member_split: Optional[float] = None,
) -> float:
    """
    A single broker's take-home from a deal.

    member_split is that broker's share of the broker side. None means
    the full after-house amount (solo and pre-roster deals).
    """
    after_house = calc_after_house(price, rate, broker_split)
    if member_split is None:
        member_share = after_house
    else:
        member_share = after_house * check_rate("member_split", member_split)
    return member_share - calc_deductions(member_share, additional_splits or [])


def resolve_member_split(members: Optional[list[DealMember]], broker_id: str) -> float:
    """
    Get a broker's share of the broker side from the roster.

    An empty roster or an unlisted broker gets the full share (1). A listed
    broker with no override gets 1 / len(members), counting every member
    whether or not they carry an override. Otherwise the override applies.
    """
    if not members:
        return 1.0

    member = next((m for m in members if m.broker_id == broker_id), None)
    if member is None:
        return 1.0

    if member.split_percent is None:
        return 1.0 / len(members)

    return check_rate("split_percent", member.split_percent)


@dataclass
class SplitLine:
    """One itemised additional-split deduction."""

    label: str
    percent: float
    amount: float

    def to_dict(self) -> dict:
        return {"label": self.label, "percent": self.percent, "amount": round(self.amount, 2)}


@dataclass
class CommissionBreakdown:
    """Deal-wide commission figures, as shown on the deal detail."""

    price: float
    commission_rate: float
    broker_split: float
    commission: float
    broker_split_amount: float
    house_cut: float
    after_house: float
    deductions: list[SplitLine] = field(default_factory=list)
    total_deductions: float = 0.0
    take_home: float = 0.0

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        return {
            "price": self.price,
            "commission_rate": self.commission_rate,
            "broker_split": self.broker_split,
            "commission": round(self.commission, 2),
            "broker_split_amount": round(self.broker_split_amount, 2),
            "house_cut": round(self.house_cut, 2),
            "after_house": round(self.after_house, 2),
            "deductions": [d.to_dict() for d in self.deductions],
            "total_deductions": round(self.total_deductions, 2),
            "take_home": round(self.take_home, 2),
        }


@dataclass
class MemberTakeHome:
    """One broker's share of a deal."""

    broker_id: str
    member_split: float
    member_share: float
    deductions: float
    take_home: float
    broker_name: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "broker_id": self.broker_id,
            "broker_name": self.broker_name,
            "member_split": round(self.member_split, 6),
            "member_share": round(self.member_share, 2),
            "deductions": round(self.deductions, 2),
            "take_home": round(self.take_home, 2),
        }


def breakdown_for(deal: Deal) -> CommissionBreakdown:
    """Compute the full deal-wide commission breakdown."""
    price = deal.price or 0.0
    commission = calc_commission(price, deal.commission_rate)
    broker_split_amount = calc_broker_split(price, deal.commission_rate, deal.broker_split)
    after_house = calc_after_house(price, deal.commission_rate, deal.broker_split)

    _check_splits(deal.additional_splits)
    lines = [
        SplitLine(label=s.label, percent=s.percent, amount=after_house * s.percent)
        for s in deal.additional_splits
    ]
    total_deductions = calc_deductions(after_house, deal.additional_splits)

    return CommissionBreakdown(
        price=price,
        commission_rate=deal.commission_rate,
        broker_split=deal.broker_split,
        commission=commission,
        broker_split_amount=broker_split_amount,
        house_cut=broker_split_amount * HOUSE_CUT_RATE,
        after_house=after_house,
        deductions=lines,
        total_deductions=total_deductions,
        take_home=after_house - total_deductions,
    )


def member_breakdown(deal: Deal, broker_id: str) -> MemberTakeHome:
    """Compute one broker's take-home, resolving their split from the roster."""
    split = resolve_member_split(deal.deal_members, broker_id)
    after_house = calc_after_house(deal.price, deal.commission_rate, deal.broker_split)
    share = after_house * split
    deductions = calc_deductions(share, deal.additional_splits)
    member = deal.member(broker_id)

    return MemberTakeHome(
        broker_id=broker_id,
        broker_name=member.broker_name if member else None,
        member_split=split,
        member_share=share,
        deductions=deductions,
        take_home=share - deductions,
    )


def member_breakdowns(deal: Deal) -> list[MemberTakeHome]:
    """Take-home for every broker on the roster, in roster order."""
    return [member_breakdown(deal, m.broker_id) for m in deal.deal_members]
