"""
Critical-date deriver.

Turns a deal's schedule into an ordered timeline of labeled milestones
with countdowns. The schedule is resolved once into a flat milestone
list, from either the dated deal_dates rows or, for older deals, the
legacy day-count fields.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Optional

import structlog

from .deal import Deal
from .dates import DateLike, Urgency, add_days, countdown_text, days_between, to_date, urgency_for

logger = structlog.get_logger(__name__)


ESCROW_OPEN_LABEL = "Escrow Open"
FEASIBILITY_ENDS_LABEL = "Feasibility Ends"
DD_EXTENSION_LABEL = "DD Extension"
INSIDE_CLOSE_LABEL = "Inside Close"
OUTSIDE_CLOSE_LABEL = "Outside Close"


class ScheduleKind(Enum):
    """Where a deal's milestones come from."""

    DYNAMIC = "dynamic"  # deal_dates rows
    LEGACY = "legacy"  # Computed from fixed day offsets
    EMPTY = "empty"  # Nothing to derive


class MalformedTimeline(Exception):
    """A dated milestone that has no usable date."""

    def __init__(self, label: str, value: object = None, reason: str = "missing date"):
        self.label = label
        self.value = value
        self.reason = reason
        super().__init__(f"Milestone '{label}': {reason}")

    def to_dict(self) -> dict:
        return {"label": self.label, "value": self.value, "reason": self.reason}


@dataclass
class Milestone:
    """A labeled date on a normalized schedule."""

    label: str
    date: date


@dataclass
class Schedule:
    """A deal's schedule resolved to a single shape."""

    kind: ScheduleKind
    milestones: list[Milestone] = field(default_factory=list)
    skipped: list[MalformedTimeline] = field(default_factory=list)


@dataclass
class CriticalDate:
    """A milestone with its countdown relative to today."""

    label: str
    date: date
    is_past: bool
    days_away: int  # Negative = overdue
    urgency: Urgency

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        return {
            "label": self.label,
            "date": self.date.isoformat(),
            "is_past": self.is_past,
            "days_away": self.days_away,
            "urgency": self.urgency.value,
            "countdown": countdown_text(self.days_away),
        }


@dataclass
class TimelineResult:
    """Derived timeline plus any entries that had to be skipped."""

    dates: list[CriticalDate]
    skipped: list[MalformedTimeline]
    schedule_kind: ScheduleKind

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    def to_dict(self) -> dict:
        return {
            "dates": [d.to_dict() for d in self.dates],
            "skipped": [s.to_dict() for s in self.skipped],
            "schedule_kind": self.schedule_kind.value,
        }


def _dynamic_schedule(deal: Deal) -> Schedule:
    schedule = Schedule(kind=ScheduleKind.DYNAMIC)
    resolved = []

    for row in deal.deal_dates:
        try:
            day = to_date(row.date)
        except (TypeError, ValueError):
            schedule.skipped.append(MalformedTimeline(row.label, row.date, "unparseable date"))
            continue
        if day is None:
            schedule.skipped.append(MalformedTimeline(row.label, row.date))
            continue
        resolved.append((row.sort_order, day, row.label))

    # sort_order first; the date breaks any tie
    resolved.sort(key=lambda r: (r[0], r[1]))
    schedule.milestones = [Milestone(label=label, date=day) for _, day, label in resolved]
    return schedule


def _legacy_schedule(deal: Deal) -> Schedule:
    milestones: list[Milestone] = []

    if deal.escrow_open_date and deal.feasibility_days is not None:
        feasibility_end = add_days(deal.escrow_open_date, deal.feasibility_days)
        milestones.append(Milestone(FEASIBILITY_ENDS_LABEL, feasibility_end))

        if deal.dd_extension_date:
            milestones.append(Milestone(DD_EXTENSION_LABEL, deal.dd_extension_date))

        if deal.inside_close_days is not None:
            inside_close = add_days(feasibility_end, deal.inside_close_days)
            milestones.append(Milestone(INSIDE_CLOSE_LABEL, inside_close))

            if deal.outside_close_days is not None:
                outside_close = add_days(inside_close, deal.outside_close_days)
                milestones.append(Milestone(OUTSIDE_CLOSE_LABEL, outside_close))

    elif deal.dd_extension_date:
        milestones.append(Milestone(DD_EXTENSION_LABEL, deal.dd_extension_date))

    kind = ScheduleKind.LEGACY if milestones else ScheduleKind.EMPTY
    return Schedule(kind=kind, milestones=milestones)


def resolve_schedule(deal: Deal) -> Schedule:
    """
    Resolve a deal's milestones into one normalized list.

    Dated deal_dates rows always win when present; legacy day counts
    are only read for deals that have none. The escrow-open date is not
    part of the schedule (the deriver adds it).
    """
    if deal.has_dynamic_dates:
        return _dynamic_schedule(deal)
    return _legacy_schedule(deal)


def make_critical_date(label: str, day: DateLike, today: DateLike) -> CriticalDate:
    """Build a CriticalDate with its countdown and urgency."""
    day = to_date(day)
    days_away = days_between(today, day)
    return CriticalDate(
        label=label,
        date=day,
        is_past=days_away < 0,
        days_away=days_away,
        urgency=urgency_for(days_away),
    )


def derive_timeline_detailed(deal: Deal, today: DateLike) -> TimelineResult:
    """
    Derive the ordered timeline along with skipped entries.

    Args:
        deal: The deal to derive milestones for
        today: The caller's current date

    Returns:
        TimelineResult; dates is empty when nothing can be forecast
    """
    today = to_date(today)
    schedule = resolve_schedule(deal)
    dates: list[CriticalDate] = []

    if deal.escrow_open_date:
        dates.append(make_critical_date(ESCROW_OPEN_LABEL, deal.escrow_open_date, today))

    for milestone in schedule.milestones:
        dates.append(make_critical_date(milestone.label, milestone.date, today))

    for skipped in schedule.skipped:
        logger.warning(
            "timeline.entry_skipped",
            deal_id=deal.id,
            label=skipped.label,
            reason=skipped.reason,
        )

    return TimelineResult(dates=dates, skipped=schedule.skipped, schedule_kind=schedule.kind)


def derive_timeline(deal: Deal, today: DateLike) -> list[CriticalDate]:
    """Derive the ordered list of critical dates for a deal."""
    return derive_timeline_detailed(deal, today).dates


def next_critical_date(deal: Deal, today: DateLike) -> Optional[CriticalDate]:
    """
    Get the next milestone to watch.

    The soonest upcoming date, or the most recently passed one when all
    are past. None when the deal has no dates at all.
    """
    dates = derive_timeline(deal, today)

    upcoming = [d for d in dates if not d.is_past]
    if upcoming:
        return min(upcoming, key=lambda d: d.days_away)

    past = [d for d in dates if d.is_past]
    if past:
        return max(past, key=lambda d: d.days_away)

    return None


def sort_by_next_critical_date(deals: list[Deal], today: DateLike) -> list[Deal]:
    """Order deals most urgent first; deals with no forecast go last."""

    def key(deal: Deal) -> tuple[int, int]:
        nxt = next_critical_date(deal, today)
        if nxt is None:
            return (1, 0)
        return (0, nxt.days_away)

    return sorted(deals, key=key)
