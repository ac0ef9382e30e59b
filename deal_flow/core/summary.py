"""
Pipeline dashboard figures and deal list tabs.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .commission import calc_commission, calc_member_take_home, resolve_member_split
from .dates import DateLike, Urgency, countdown_text
from .deal import Deal, DealStatus, OPEN_STATUSES
from .timeline import CriticalDate, next_critical_date, sort_by_next_critical_date


class DealTab(Enum):
    """Deal list tabs."""

    ACTIVE = "active"
    CLOSED = "closed"
    CANCELLED = "cancelled"


TAB_STATUSES: dict[DealTab, tuple[DealStatus, ...]] = {
    DealTab.ACTIVE: OPEN_STATUSES,
    DealTab.CLOSED: (DealStatus.CLOSED,),
    DealTab.CANCELLED: (DealStatus.CANCELLED,),
}


def filter_by_tab(deals: list[Deal], tab: DealTab, today: DateLike) -> list[Deal]:
    """
    Deals on a tab, in display order.

    Active deals are ordered by next critical date; closed and cancelled
    deals newest first.
    """
    selected = [d for d in deals if d.status in TAB_STATUSES[tab]]
    if tab == DealTab.ACTIVE:
        return sort_by_next_critical_date(selected, today)
    return sorted(selected, key=lambda d: d.updated_at, reverse=True)


def tab_counts(deals: list[Deal]) -> dict[str, int]:
    return {
        tab.value: len([d for d in deals if d.status in statuses])
        for tab, statuses in TAB_STATUSES.items()
    }


@dataclass
class UrgentDate:
    """The most pressing upcoming milestone across open deals."""

    deal_id: str
    deal_name: str
    critical_date: CriticalDate

    def to_dict(self) -> dict:
        return {
            "deal_id": self.deal_id,
            "deal_name": self.deal_name,
            "label": self.critical_date.label,
            "date": self.critical_date.date.isoformat(),
            "days_away": self.critical_date.days_away,
            "urgency": self.critical_date.urgency.value,
            "countdown": countdown_text(self.critical_date.days_away),
        }


@dataclass
class PipelineSummary:
    """Dashboard totals for one broker's open deals."""

    active_deals: int
    pipeline_value: float
    total_commission: float
    total_take_home: float
    urgent: Optional[UrgentDate] = None

    def to_dict(self) -> dict:
        return {
            "active_deals": self.active_deals,
            "pipeline_value": round(self.pipeline_value, 2),
            "total_commission": round(self.total_commission, 2),
            "total_take_home": round(self.total_take_home, 2),
            "urgent": self.urgent.to_dict() if self.urgent else None,
        }


def pipeline_summary(deals: list[Deal], broker_id: str, today: DateLike) -> PipelineSummary:
    """
    Summarize open deals from one broker's point of view.

    Take-home uses that broker's resolved share on each deal. The urgent
    date is only reported when it is red or yellow.
    """
    open_deals = [d for d in deals if d.is_open]

    total_take_home = 0.0
    for deal in open_deals:
        split = resolve_member_split(deal.deal_members, broker_id)
        total_take_home += calc_member_take_home(
            deal.price,
            deal.commission_rate,
            deal.broker_split,
            deal.additional_splits,
            split,
        )

    urgent = None
    for deal in open_deals:
        nxt = next_critical_date(deal, today)
        if nxt is None or nxt.is_past:
            continue
        if urgent is None or nxt.days_away < urgent.critical_date.days_away:
            urgent = UrgentDate(deal_id=deal.id, deal_name=deal.deal_name, critical_date=nxt)

    if urgent and urgent.critical_date.urgency not in (Urgency.RED, Urgency.YELLOW):
        urgent = None

    return PipelineSummary(
        active_deals=len(open_deals),
        pipeline_value=sum(d.price or 0 for d in open_deals),
        total_commission=sum(calc_commission(d.price, d.commission_rate) for d in open_deals),
        total_take_home=total_take_home,
        urgent=urgent,
    )
