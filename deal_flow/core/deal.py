"""
Deal data model.

Defines the deal record tracked through escrow, its dated milestones,
its broker roster and the broker directory entry.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional

import structlog

from .dates import to_date

logger = structlog.get_logger(__name__)


class DealStatus(Enum):
    """Lifecycle status of a deal."""

    ACTIVE = "active"  # Pre-escrow, terms being negotiated
    DUE_DILIGENCE = "due_diligence"  # Escrow open, feasibility period running
    CLOSING = "closing"  # Contingencies removed, heading to close
    CLOSED = "closed"  # Terminal
    CANCELLED = "cancelled"  # Terminal


class DealType(Enum):
    """Kind of transaction."""

    SALE = "sale"
    LEASE = "lease"


OPEN_STATUSES = (DealStatus.ACTIVE, DealStatus.DUE_DILIGENCE, DealStatus.CLOSING)
TERMINAL_STATUSES = (DealStatus.CLOSED, DealStatus.CANCELLED)

STATUS_LABELS: dict[DealStatus, str] = {
    DealStatus.ACTIVE: "Active",
    DealStatus.DUE_DILIGENCE: "Due Diligence",
    DealStatus.CLOSING: "Closing",
    DealStatus.CLOSED: "Closed",
    DealStatus.CANCELLED: "Cancelled",
}


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def _lenient_date(value, context: str) -> Optional[date]:
    """Parse a stored date, logging and returning None when unreadable."""
    try:
        return to_date(value)
    except (TypeError, ValueError):
        logger.warning("deal.unreadable_date", field=context, value=value)
        return None


def _timestamp(value) -> datetime:
    if isinstance(value, datetime):
        return value
    if value:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return datetime.now()


@dataclass
class AdditionalSplit:
    """Off-the-top deduction (referral fee, co-broker payout) after the house cut."""

    label: str
    percent: float  # Decimal fraction: 0.25 = 25%

    def to_dict(self) -> dict:
        return {"label": self.label, "percent": self.percent}

    @classmethod
    def from_dict(cls, data: dict) -> "AdditionalSplit":
        return cls(label=data.get("label", ""), percent=float(data.get("percent", 0)))


@dataclass
class DealDate:
    """
    A labeled milestone belonging to one deal.

    The date is always resolved before storage; offset_days and
    offset_from only record how it was derived.
    """

    label: str
    date: Optional[date]
    sort_order: int = 0
    id: str = ""
    deal_id: str = ""
    offset_days: Optional[int] = None
    offset_from: Optional[str] = None  # Another deal_date id or "escrow_open"

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "deal_id": self.deal_id,
            "label": self.label,
            "date": _iso(self.date),
            "offset_days": self.offset_days,
            "offset_from": self.offset_from,
            "sort_order": self.sort_order,
        }

    @classmethod
    def from_dict(cls, data: dict, index: int = 0) -> "DealDate":
        """Create from dictionary; an unreadable date is kept as None."""
        sort_order = data.get("sort_order")
        return cls(
            id=data.get("id", ""),
            deal_id=data.get("deal_id", ""),
            label=data.get("label", ""),
            date=_lenient_date(data.get("date"), f"deal_dates.{data.get('label', index)}"),
            offset_days=data.get("offset_days") or None,
            offset_from=data.get("offset_from") or None,
            sort_order=sort_order if sort_order is not None else index,
        )


@dataclass
class DealMember:
    """Broker assigned to a deal, with an optional share override."""

    broker_id: str
    split_percent: Optional[float] = None  # None = even split across all members
    id: str = ""
    deal_id: str = ""

    # Decoration joined from the broker directory
    broker_name: Optional[str] = None
    broker_email: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "deal_id": self.deal_id,
            "broker_id": self.broker_id,
            "split_percent": self.split_percent,
            "broker_name": self.broker_name,
            "broker_email": self.broker_email,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DealMember":
        split = data.get("split_percent")
        return cls(
            id=data.get("id", ""),
            deal_id=data.get("deal_id", ""),
            broker_id=data["broker_id"],
            split_percent=float(split) if split is not None else None,
            broker_name=data.get("broker_name"),
            broker_email=data.get("broker_email"),
        )


@dataclass
class MilestoneDecision:
    """Human decision recorded against an extension-decision milestone."""

    label: str
    date: date
    outcome: str  # ExtensionDecision value
    decided_at: datetime = field(default_factory=datetime.now)

    def matches(self, label: str, day: date) -> bool:
        return self.label.strip().lower() == label.strip().lower() and self.date == day

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "date": self.date.isoformat(),
            "outcome": self.outcome,
            "decided_at": self.decided_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MilestoneDecision":
        return cls(
            label=data["label"],
            date=to_date(data["date"]),
            outcome=data["outcome"],
            decided_at=_timestamp(data.get("decided_at")),
        )


@dataclass
class Deal:
    """
    A real-estate deal tracked from pre-escrow to close.

    Milestones come from deal_dates when present; the legacy day-count
    fields are only consulted when deal_dates is empty.
    """

    # Identity
    id: str
    broker_id: str  # Owning (creating) broker
    deal_name: str = ""
    property_address: Optional[str] = None

    # Classification
    deal_type: DealType = DealType.SALE
    status: DealStatus = DealStatus.ACTIVE

    # Commercial terms
    price: Optional[float] = None
    commission_rate: float = 0.03  # 0.03 = 3%
    broker_split: float = 0.50  # 0.50 = 50%
    additional_splits: list[AdditionalSplit] = field(default_factory=list)

    # Scheduling
    effective_date: Optional[date] = None
    escrow_open_date: Optional[date] = None
    deal_dates: list[DealDate] = field(default_factory=list)

    # Legacy fixed schedule
    feasibility_days: Optional[int] = None
    dd_extension_date: Optional[date] = None
    inside_close_days: Optional[int] = None
    outside_close_days: Optional[int] = None

    # Participants
    deal_members: list[DealMember] = field(default_factory=list)

    # Decisions taken on extension-decision milestones
    milestone_decisions: list[MilestoneDecision] = field(default_factory=list)

    # Terminal fields
    actual_close_date: Optional[date] = None
    cancel_reason: Optional[str] = None
    notes: Optional[str] = None

    # External references
    listing_id: Optional[str] = None  # CMS listing item
    parcel_number: Optional[str] = None  # APN

    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def is_open(self) -> bool:
        """Check if the deal is still in flight."""
        return self.status in OPEN_STATUSES

    @property
    def has_dynamic_dates(self) -> bool:
        return len(self.deal_dates) > 0

    @property
    def has_legacy_schedule(self) -> bool:
        return any(
            v is not None
            for v in (
                self.feasibility_days,
                self.dd_extension_date,
                self.inside_close_days,
                self.outside_close_days,
            )
        )

    def member(self, broker_id: str) -> Optional[DealMember]:
        """Find a broker's roster row."""
        return next((m for m in self.deal_members if m.broker_id == broker_id), None)

    def has_member(self, broker_id: str) -> bool:
        return self.member(broker_id) is not None

    def decision_for(self, label: str, day: date) -> Optional[MilestoneDecision]:
        """Find a recorded decision for a milestone."""
        return next((d for d in self.milestone_decisions if d.matches(label, day)), None)

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "broker_id": self.broker_id,
            "deal_name": self.deal_name,
            "property_address": self.property_address,
            "deal_type": self.deal_type.value,
            "status": self.status.value,
            "price": self.price,
            "commission_rate": self.commission_rate,
            "broker_split": self.broker_split,
            "additional_splits": [s.to_dict() for s in self.additional_splits],
            "effective_date": _iso(self.effective_date),
            "escrow_open_date": _iso(self.escrow_open_date),
            "deal_dates": [d.to_dict() for d in self.deal_dates],
            "feasibility_days": self.feasibility_days,
            "dd_extension_date": _iso(self.dd_extension_date),
            "inside_close_days": self.inside_close_days,
            "outside_close_days": self.outside_close_days,
            "deal_members": [m.to_dict() for m in self.deal_members],
            "milestone_decisions": [d.to_dict() for d in self.milestone_decisions],
            "actual_close_date": _iso(self.actual_close_date),
            "cancel_reason": self.cancel_reason,
            "notes": self.notes,
            "listing_id": self.listing_id,
            "parcel_number": self.parcel_number,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Deal":
        """Create deal from dictionary representation."""
        price = data.get("price")
        return cls(
            id=data["id"],
            broker_id=data["broker_id"],
            deal_name=data.get("deal_name", ""),
            property_address=data.get("property_address") or None,
            deal_type=DealType(data.get("deal_type", "sale")),
            status=DealStatus(data.get("status", "active")),
            price=float(price) if price not in (None, "") else None,
            commission_rate=float(data.get("commission_rate", 0.03)),
            broker_split=float(data.get("broker_split", 0.50)),
            additional_splits=[
                AdditionalSplit.from_dict(s) for s in data.get("additional_splits") or []
            ],
            effective_date=_lenient_date(data.get("effective_date"), "effective_date"),
            escrow_open_date=_lenient_date(data.get("escrow_open_date"), "escrow_open_date"),
            deal_dates=[
                DealDate.from_dict(d, i) for i, d in enumerate(data.get("deal_dates") or [])
            ],
            feasibility_days=data.get("feasibility_days"),
            dd_extension_date=_lenient_date(data.get("dd_extension_date"), "dd_extension_date"),
            inside_close_days=data.get("inside_close_days"),
            outside_close_days=data.get("outside_close_days"),
            deal_members=[DealMember.from_dict(m) for m in data.get("deal_members") or []],
            milestone_decisions=[
                MilestoneDecision.from_dict(d) for d in data.get("milestone_decisions") or []
            ],
            actual_close_date=_lenient_date(data.get("actual_close_date"), "actual_close_date"),
            cancel_reason=data.get("cancel_reason") or None,
            notes=data.get("notes") or None,
            listing_id=data.get("listing_id") or None,
            parcel_number=data.get("parcel_number") or None,
            created_at=_timestamp(data.get("created_at")),
            updated_at=_timestamp(data.get("updated_at")),
        )


@dataclass
class Broker:
    """Broker directory entry with default commission terms."""

    id: str
    name: str
    email: str
    role: str = "broker"
    phone: Optional[str] = None
    default_commission_rate: Optional[float] = None
    default_broker_split: Optional[float] = None
    default_additional_splits: list[AdditionalSplit] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "phone": self.phone,
            "default_commission_rate": self.default_commission_rate,
            "default_broker_split": self.default_broker_split,
            "default_additional_splits": [s.to_dict() for s in self.default_additional_splits],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Broker":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            email=data.get("email", ""),
            role=data.get("role", "broker"),
            phone=data.get("phone"),
            default_commission_rate=data.get("default_commission_rate"),
            default_broker_split=data.get("default_broker_split"),
            default_additional_splits=[
                AdditionalSplit.from_dict(s) for s in data.get("default_additional_splits") or []
            ],
        )


def ensure_owner_member(deal: Deal) -> Deal:
    """
    Make sure the owning broker is on the roster.

    A deal with no members gets the owner as its only member; otherwise
    the owner is inserted first with an even split.
    """
    if not deal.has_member(deal.broker_id):
        deal.deal_members.insert(0, DealMember(broker_id=deal.broker_id, deal_id=deal.id))
    return deal
