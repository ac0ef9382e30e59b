"""
Deal store and broker directory with in-memory and JSON file persistence.

These stand in for the remote relational store: a deal is read with its
dated milestones and member roster joined, and both child collections
are replaced wholesale on edit.
"""

import copy
import json
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Optional

import structlog

from deal_flow.config import get_settings
from deal_flow.core import (
    AdditionalSplit,
    Broker,
    Deal,
    DealDate,
    DealMember,
    DealStatus,
    DealType,
    DecisionOutcome,
    ExtensionDecision,
    check_rate,
    ensure_owner_member,
    resolve_decision,
)
from deal_flow.core.dates import DateLike

logger = structlog.get_logger(__name__)


class StorageError(Exception):
    """Raised when a read or write against the store fails."""


class DealNotFoundError(StorageError):
    """Raised when a deal id is unknown."""

    def __init__(self, deal_id: str):
        self.deal_id = deal_id
        super().__init__(f"Deal '{deal_id}' not found")


def _new_id() -> str:
    return uuid.uuid4().hex


def _write_json(path: Path, data: dict) -> None:
    """Write through a temp file so a failed write leaves the old file intact."""
    tmp = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp, "w") as f:
            json.dump(data, f, indent=2)
        tmp.replace(path)
    except OSError as e:
        tmp.unlink(missing_ok=True)
        raise StorageError(f"Could not write {path}: {e}") from e


class DealStorage:
    """
    In-memory deal storage with optional JSON file persistence.

    Every write bumps the revision stamp, which identifies the data set
    a reconciliation pass was run against.
    """

    def __init__(self, storage_path: Optional[str] = None):
        """
        Initialize storage.

        Args:
            storage_path: Optional path to JSON file for persistence.
                         If None, storage is in-memory only.
        """
        self._deals: dict[str, Deal] = {}
        self._storage_path = storage_path
        self._revision = 0
        self._load()

    @property
    def revision(self) -> int:
        """Monotonic stamp of the stored data set."""
        return self._revision

    def _load(self) -> None:
        """Load deals from JSON file if path is set."""
        if not self._storage_path:
            return

        path = Path(self._storage_path)
        if not path.exists():
            return

        try:
            with open(path, "r") as f:
                data = json.load(f)

            for deal_data in data.get("deals", []):
                deal = Deal.from_dict(deal_data)
                self._deals[deal.id] = deal
            self._revision = data.get("revision", 0)

        except (json.JSONDecodeError, KeyError, ValueError) as e:
            logger.warning("storage.load_failed", path=str(path), error=str(e))

    def _commit(self, deals: dict[str, Deal]) -> None:
        """
        Make a new deal set current.

        The file is written first; memory and the revision only change
        once the write has succeeded.

        Raises:
            StorageError: If the file cannot be written
        """
        revision = self._revision + 1
        if self._storage_path:
            _write_json(Path(self._storage_path), {
                "version": "1.0",
                "revision": revision,
                "updated_at": datetime.now().isoformat(),
                "deals": [d.to_dict() for d in deals.values()],
            })

        self._deals = deals
        self._revision = revision

    def _require(self, deal_id: str) -> Deal:
        deal = self._deals.get(deal_id)
        if deal is None:
            raise DealNotFoundError(deal_id)
        return deal

    @staticmethod
    def _stamp_children(deal: Deal) -> None:
        for i, row in enumerate(deal.deal_dates):
            row.deal_id = deal.id
            row.id = row.id or _new_id()
            if row.sort_order is None:
                row.sort_order = i
        for member in deal.deal_members:
            member.deal_id = deal.id
            member.id = member.id or _new_id()

    def create(self, deal: Deal) -> Deal:
        """
        Create a new deal.

        The owning broker is always added to the roster.

        Raises:
            StorageError: If the deal id already exists or the write fails
        """
        if not deal.id:
            deal.id = self.generate_id()
        if deal.id in self._deals:
            raise StorageError(f"Deal '{deal.id}' already exists")

        ensure_owner_member(deal)
        self._stamp_children(deal)
        deal.created_at = deal.updated_at = datetime.now()

        self._commit({**self._deals, deal.id: copy.deepcopy(deal)})
        logger.info("storage.deal_created", deal_id=deal.id, broker_id=deal.broker_id)
        return deal

    def get(self, deal_id: str) -> Optional[Deal]:
        """Get a copy of a deal by ID."""
        deal = self._deals.get(deal_id)
        return copy.deepcopy(deal) if deal is not None else None

    def get_all(self) -> list[Deal]:
        """Copies of all deals, newest first."""
        deals = sorted(self._deals.values(), key=lambda d: d.created_at, reverse=True)
        return copy.deepcopy(deals)

    def for_broker(self, broker_id: str) -> list[Deal]:
        """Deals the broker is a member of, newest first."""
        return [
            d for d in self.get_all()
            if d.has_member(broker_id) or (not d.deal_members and d.broker_id == broker_id)
        ]

    def update(self, deal: Deal) -> Deal:
        """
        Replace a stored deal.

        Raises:
            DealNotFoundError: If the deal doesn't exist
            StorageError: If the write fails; the stored deal is unchanged
        """
        existing = self._require(deal.id)
        deal.created_at = existing.created_at
        deal.updated_at = datetime.now()
        self._stamp_children(deal)
        self._commit({**self._deals, deal.id: copy.deepcopy(deal)})
        return deal

    def patch(self, deal_id: str, updates: dict) -> Deal:
        """
        Update only the given top-level fields (dictionary form).

        Raises:
            DealNotFoundError: If the deal doesn't exist
        """
        data = self._require(deal_id).to_dict()
        data.update(updates)
        data["id"] = deal_id
        return self.update(Deal.from_dict(data))

    def patch_status(self, deal_id: str, status: DealStatus, **fields) -> Deal:
        """Write a status change (plus close date / cancel reason when given)."""
        updates = {"status": status.value}
        updates.update(fields)
        deal = self.patch(deal_id, updates)
        logger.info("storage.status_patched", deal_id=deal_id, status=status.value)
        return deal

    def replace_dates(self, deal_id: str, rows: list[DealDate]) -> Deal:
        """Delete every milestone row and insert the given ones."""
        deal = copy.deepcopy(self._require(deal_id))
        deal.deal_dates = [
            DealDate(
                label=row.label,
                date=row.date,
                sort_order=row.sort_order if row.sort_order is not None else i,
                offset_days=row.offset_days,
                offset_from=row.offset_from,
            )
            for i, row in enumerate(rows)
        ]
        return self.update(deal)

    def replace_members(self, deal_id: str, members: list[DealMember]) -> Deal:
        """Delete every roster row and insert the given ones."""
        deal = copy.deepcopy(self._require(deal_id))
        for m in members:
            if m.split_percent is not None:
                check_rate("split_percent", m.split_percent)
        deal.deal_members = [
            DealMember(broker_id=m.broker_id, split_percent=m.split_percent)
            for m in members
        ]
        return self.update(deal)

    def record_decision(
        self,
        deal_id: str,
        milestone_label: str,
        milestone_date: DateLike,
        decision: ExtensionDecision,
    ) -> tuple[Deal, DecisionOutcome]:
        """
        Resolve an extension decision and persist it with any status change.

        Raises:
            DealNotFoundError: If the deal doesn't exist
            InvalidTransitionError: If the deal is not in due diligence
        """
        deal = copy.deepcopy(self._require(deal_id))
        outcome = resolve_decision(deal, milestone_label, milestone_date, decision)
        deal = self.update(deal)
        logger.info(
            "storage.decision_recorded",
            deal_id=deal_id,
            milestone=milestone_label,
            decision=decision.value,
        )
        return deal, outcome

    def delete(self, deal_id: str) -> bool:
        """
        Delete a deal along with its milestones and roster.

        Returns:
            True if deleted, False if not found
        """
        if deal_id not in self._deals:
            return False

        self._commit({k: v for k, v in self._deals.items() if k != deal_id})
        logger.info("storage.deal_deleted", deal_id=deal_id)
        return True

    def count(self) -> int:
        """Get count of deals."""
        return len(self._deals)

    def generate_id(self) -> str:
        """Generate a unique deal ID."""
        return f"DEAL-{datetime.now().strftime('%Y%m%d')}-{uuid.uuid4().hex[:6].upper()}"


@dataclass
class BrokerDefaults:
    """Commission terms pre-filled on a broker's new deals."""

    commission_rate: float
    broker_split: float
    additional_splits: list[AdditionalSplit] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "commission_rate": self.commission_rate,
            "broker_split": self.broker_split,
            "additional_splits": [s.to_dict() for s in self.additional_splits],
        }


class BrokerDirectory:
    """
    Read-mostly broker directory.

    Used to resolve the signed-in broker from an email address, to
    decorate roster rows with names and to hold default commission terms.
    """

    def __init__(self, storage_path: Optional[str] = None):
        self._brokers: dict[str, Broker] = {}
        self._storage_path = storage_path
        self._load()

    def _load(self) -> None:
        if not self._storage_path:
            return

        path = Path(self._storage_path)
        if not path.exists():
            return

        try:
            with open(path, "r") as f:
                data = json.load(f)
            for broker_data in data.get("brokers", []):
                broker = Broker.from_dict(broker_data)
                self._brokers[broker.id] = broker
        except (json.JSONDecodeError, KeyError) as e:
            logger.warning("storage.load_failed", path=str(path), error=str(e))

    def _commit(self, brokers: dict[str, Broker]) -> None:
        if self._storage_path:
            _write_json(
                Path(self._storage_path),
                {"brokers": [b.to_dict() for b in brokers.values()]},
            )
        self._brokers = brokers

    def add(self, broker: Broker) -> Broker:
        if not broker.id:
            broker.id = _new_id()
        self._commit({**self._brokers, broker.id: broker})
        return broker

    def get(self, broker_id: str) -> Optional[Broker]:
        return self._brokers.get(broker_id)

    def by_email(self, email: str) -> Optional[Broker]:
        """Case-insensitive email lookup."""
        wanted = (email or "").strip().lower()
        return next((b for b in self._brokers.values() if b.email.lower() == wanted), None)

    def all(self) -> list[Broker]:
        return sorted(self._brokers.values(), key=lambda b: b.name)

    def count(self) -> int:
        return len(self._brokers)

    def defaults_for(self, broker: Broker) -> BrokerDefaults:
        """A broker's defaults, falling back to the configured house defaults."""
        settings = get_settings()
        return BrokerDefaults(
            commission_rate=(
                broker.default_commission_rate
                if broker.default_commission_rate is not None
                else settings.DEFAULT_COMMISSION_RATE
            ),
            broker_split=(
                broker.default_broker_split
                if broker.default_broker_split is not None
                else settings.DEFAULT_BROKER_SPLIT
            ),
            additional_splits=list(broker.default_additional_splits),
        )

    def update_defaults(
        self,
        broker_id: str,
        commission_rate: Optional[float] = None,
        broker_split: Optional[float] = None,
        additional_splits: Optional[list[AdditionalSplit]] = None,
    ) -> Broker:
        """
        Change a broker's default terms; None leaves a field unchanged.

        Raises:
            StorageError: If the broker is unknown or the write fails
            InvalidRate: If a rate is outside [0, 1]
        """
        stored = self._brokers.get(broker_id)
        if stored is None:
            raise StorageError(f"Broker '{broker_id}' not found")
        broker = copy.deepcopy(stored)

        if commission_rate is not None:
            broker.default_commission_rate = check_rate("commission_rate", commission_rate)
        if broker_split is not None:
            broker.default_broker_split = check_rate("broker_split", broker_split)
        if additional_splits is not None:
            for i, s in enumerate(additional_splits):
                check_rate(f"additional_splits[{i}].percent", s.percent)
            broker.default_additional_splits = list(additional_splits)

        self._commit({**self._brokers, broker.id: broker})
        return broker

    def decorate(self, deal: Deal) -> Deal:
        """Fill in broker names and emails on a deal's roster."""
        for member in deal.deal_members:
            broker = self.get(member.broker_id)
            if broker:
                member.broker_name = broker.name
                member.broker_email = broker.email
        return deal


def create_sample_data(
    deals: DealStorage,
    brokers: BrokerDirectory,
    today: Optional[date] = None,
) -> None:
    """Create sample brokers and deals for demo purposes."""
    today = today or date.today()

    alex = brokers.add(Broker(
        id="BRK-ALEX",
        name="Alex Rivera",
        email="alex@example-brokerage.com",
        default_commission_rate=0.03,
        default_broker_split=0.50,
    ))
    jordan = brokers.add(Broker(
        id="BRK-JORDAN",
        name="Jordan Lee",
        email="jordan@example-brokerage.com",
        default_commission_rate=0.025,
        default_broker_split=0.60,
        default_additional_splits=[AdditionalSplit("Team Fee", 0.10)],
    ))

    escrow_open = today - timedelta(days=20)

    samples = [
        # Escrow opened a week ago but never moved off pre-escrow
        Deal(
            id="DEAL-SAMPLE-001",
            broker_id=alex.id,
            deal_name="Harbor Industrial Portfolio",
            property_address="1200 Harbor Way",
            deal_type=DealType.SALE,
            price=4_250_000,
            commission_rate=0.03,
            broker_split=0.50,
            escrow_open_date=today - timedelta(days=7),
            deal_dates=[
                DealDate("Feasibility Ends", today + timedelta(days=23), sort_order=0),
                DealDate("Close of Escrow", today + timedelta(days=53), sort_order=1),
            ],
        ),
        # Feasibility period ends in two days
        Deal(
            id="DEAL-SAMPLE-002",
            broker_id=alex.id,
            deal_name="Main Street Retail Center",
            property_address="88 Main Street",
            deal_type=DealType.SALE,
            price=1_000_000,
            commission_rate=0.03,
            broker_split=0.50,
            additional_splits=[AdditionalSplit("Referral", 0.25)],
            status=DealStatus.DUE_DILIGENCE,
            escrow_open_date=escrow_open,
            deal_dates=[
                DealDate("Feasibility Ends", today + timedelta(days=2), sort_order=0),
                DealDate("Inside Close", today + timedelta(days=32), sort_order=1),
            ],
            deal_members=[
                DealMember(alex.id),
                DealMember(jordan.id),
            ],
        ),
        # Legacy schedule, co-brokered with explicit shares
        Deal(
            id="DEAL-SAMPLE-003",
            broker_id=jordan.id,
            deal_name="Oak Park Office Lease",
            property_address="400 Oak Park Blvd",
            deal_type=DealType.LEASE,
            price=650_000,
            commission_rate=0.05,
            broker_split=0.60,
            status=DealStatus.CLOSING,
            escrow_open_date=today - timedelta(days=60),
            feasibility_days=45,
            inside_close_days=30,
            outside_close_days=15,
            deal_members=[
                DealMember(jordan.id, split_percent=0.70),
                DealMember(alex.id, split_percent=0.30),
            ],
        ),
    ]

    for deal in samples:
        try:
            deals.create(deal)
        except StorageError:
            pass  # Already exists
