"""
Lifecycle reconciler.

Evaluates in-flight deals against today's date and decides, per deal,
whether a milestone has been reached that should silently advance the
deal's status or that needs a human decision first.

Which milestones do what is explicit configuration (MilestoneRule), not
inferred from timeline position:

    "Escrow Open"                   active → due_diligence   (silent)
    feasibility / DD / extension    due_diligence → closing  (ask first)

A deal in closing is never advanced automatically.
"""

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Optional, TYPE_CHECKING

import structlog

from .dates import DateLike, to_date
from .deal import Deal, DealStatus
from .lifecycle import VALID_TRANSITIONS, DealAction, StatusChange, plan_transition
from .timeline import CriticalDate, derive_timeline_detailed

if TYPE_CHECKING:
    from deal_flow.api.storage import DealStorage

logger = structlog.get_logger(__name__)


# Only these statuses are advanced without a human
RECONCILED_STATUSES = (DealStatus.ACTIVE, DealStatus.DUE_DILIGENCE)


def _words(label: str) -> str:
    return " " + " ".join(re.findall(r"[a-z0-9]+", label.lower())) + " "


@dataclass(frozen=True)
class MilestoneRule:
    """
    Maps milestone labels to the status boundary they mark.

    A label matches when any keyword appears in it as whole words
    (case-insensitive).
    """

    name: str
    keywords: tuple[str, ...]
    from_status: DealStatus
    to_status: DealStatus
    decision_required: bool = False

    def matches(self, label: str) -> bool:
        words = _words(label)
        return any(_words(k) in words for k in self.keywords)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "keywords": list(self.keywords),
            "from_status": self.from_status.value,
            "to_status": self.to_status.value,
            "decision_required": self.decision_required,
        }


DEFAULT_RULES: tuple[MilestoneRule, ...] = (
    MilestoneRule(
        name="escrow_open",
        keywords=("escrow open", "open escrow", "escrow opened", "opening of escrow"),
        from_status=DealStatus.ACTIVE,
        to_status=DealStatus.DUE_DILIGENCE,
    ),
    MilestoneRule(
        name="due_diligence_end",
        keywords=("feasibility", "due diligence", "dd", "extension"),
        from_status=DealStatus.DUE_DILIGENCE,
        to_status=DealStatus.CLOSING,
        decision_required=True,
    ),
)


@dataclass
class Advancement:
    """A silent status advancement for one deal."""

    deal: Deal
    from_status: DealStatus
    new_status: DealStatus
    milestone_label: str
    milestone_date: date

    def to_dict(self) -> dict:
        return {
            "deal_id": self.deal.id,
            "deal_name": self.deal.deal_name,
            "from_status": self.from_status.value,
            "new_status": self.new_status.value,
            "milestone_label": self.milestone_label,
            "milestone_date": self.milestone_date.isoformat(),
        }


@dataclass
class PendingDecision:
    """A milestone the user must answer before the deal can move on."""

    deal: Deal
    milestone_label: str
    milestone_date: date
    rule: str

    def to_dict(self) -> dict:
        return {
            "deal_id": self.deal.id,
            "deal_name": self.deal.deal_name,
            "milestone_label": self.milestone_label,
            "milestone_date": self.milestone_date.isoformat(),
            "rule": self.rule,
        }


@dataclass
class ReconcileResult:
    """Outcome of evaluating a deal set against today."""

    advancements: list[Advancement] = field(default_factory=list)
    pending_decision: Optional[PendingDecision] = None
    waiting_decisions: int = 0  # Further decisions held back for later passes
    skipped_timeline_entries: int = 0

    def to_dict(self) -> dict:
        return {
            "advancements": [a.to_dict() for a in self.advancements],
            "pending_decision": self.pending_decision.to_dict() if self.pending_decision else None,
            "waiting_decisions": self.waiting_decisions,
            "skipped_timeline_entries": self.skipped_timeline_entries,
        }


def _reached(cd: CriticalDate) -> bool:
    return cd.days_away <= 0


def _find_decision(
    deal: Deal,
    timeline: list[CriticalDate],
    rules: list[MilestoneRule],
) -> Optional[PendingDecision]:
    for cd in timeline:
        if not _reached(cd):
            continue
        for rule in rules:
            if not rule.decision_required or not rule.matches(cd.label):
                continue
            if deal.decision_for(cd.label, cd.date) is None:
                return PendingDecision(
                    deal=deal,
                    milestone_label=cd.label,
                    milestone_date=cd.date,
                    rule=rule.name,
                )
    return None


def _find_advancement(
    deal: Deal,
    timeline: list[CriticalDate],
    rules: list[MilestoneRule],
) -> Optional[Advancement]:
    # Nearest reached boundary wins (latest date that is not in the future)
    for cd in sorted(timeline, key=lambda d: d.days_away, reverse=True):
        if not _reached(cd):
            continue
        for rule in rules:
            if rule.decision_required or not rule.matches(cd.label):
                continue
            if rule.to_status == deal.status:
                continue
            return Advancement(
                deal=deal,
                from_status=deal.status,
                new_status=rule.to_status,
                milestone_label=cd.label,
                milestone_date=cd.date,
            )
    return None


def evaluate_deal(
    deal: Deal,
    today: DateLike,
    rules: tuple[MilestoneRule, ...] = DEFAULT_RULES,
) -> tuple[Optional[Advancement], Optional[PendingDecision], int]:
    """
    Evaluate one deal; first matching rule wins.

    Returns:
        (advancement, pending decision, skipped timeline entries). At most
        one of the first two is set.
    """
    if deal.status not in RECONCILED_STATUSES:
        return None, None, 0

    result = derive_timeline_detailed(deal, today)
    status_rules = [r for r in rules if r.from_status == deal.status]
    if not status_rules:
        return None, None, result.skipped_count

    decision = _find_decision(deal, result.dates, status_rules)
    if decision is not None:
        return None, decision, result.skipped_count

    return _find_advancement(deal, result.dates, status_rules), None, result.skipped_count


def reconcile(
    deals: list[Deal],
    today: DateLike,
    rules: tuple[MilestoneRule, ...] = DEFAULT_RULES,
) -> ReconcileResult:
    """
    Run one reconciliation pass over a deal set.

    Every silent advancement is returned; only the first pending
    decision (in input order) is surfaced. The check compares current
    status against the rule, so a deal that already moved past a
    milestone is never advanced again.

    Args:
        deals: The in-flight deals, as last loaded
        today: The caller's current date
        rules: Milestone rule configuration

    Returns:
        ReconcileResult
    """
    today = to_date(today)
    result = ReconcileResult()

    for deal in deals:
        advancement, decision, skipped = evaluate_deal(deal, today, rules)
        result.skipped_timeline_entries += skipped

        if advancement is not None:
            result.advancements.append(advancement)
        elif decision is not None:
            if result.pending_decision is None:
                result.pending_decision = decision
            else:
                result.waiting_decisions += 1

    return result


def plan_advancement(advancement: Advancement) -> StatusChange:
    """
    The lifecycle transition that carries out a silent advancement.

    A rule whose boundary matches a fixed transition (escrow opening,
    start of closing) uses that action; any other open-to-open boundary
    from a custom rule is planned as a move.

    Raises:
        InvalidTransitionError: If the deal cannot reach the new status
    """
    for action, target in VALID_TRANSITIONS.get(advancement.from_status, {}).items():
        if target == advancement.new_status:
            return plan_transition(advancement.deal, action)
    return plan_transition(advancement.deal, DealAction.MOVE, target=advancement.new_status)


class ReconciliationWriteFailure(Exception):
    """Persisting a silent advancement failed for one deal."""

    def __init__(self, deal_id: str, new_status: DealStatus, message: str):
        self.deal_id = deal_id
        self.new_status = new_status
        self.message = message
        super().__init__(f"Could not advance deal '{deal_id}' to '{new_status.value}': {message}")

    def to_dict(self) -> dict:
        return {
            "deal_id": self.deal_id,
            "new_status": self.new_status.value,
            "message": self.message,
        }


@dataclass
class ReconciliationReport:
    """What one session pass did."""

    ran: bool
    pass_number: int
    revision: int
    advancements: list[Advancement] = field(default_factory=list)
    pending_decision: Optional[PendingDecision] = None
    failures: list[ReconciliationWriteFailure] = field(default_factory=list)
    skipped_timeline_entries: int = 0
    deals: list[Deal] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "ran": self.ran,
            "pass_number": self.pass_number,
            "revision": self.revision,
            "advancements": [a.to_dict() for a in self.advancements],
            "pending_decision": self.pending_decision.to_dict() if self.pending_decision else None,
            "failures": [f.to_dict() for f in self.failures],
            "skipped_timeline_entries": self.skipped_timeline_entries,
        }


class ReconciliationSession:
    """
    Runs reconciliation against a deal store, once per loaded revision.

    The store's revision stamp identifies the data set; a revision this
    session has already processed is not reconciled again. Writes that
    succeed are followed by a re-read so later passes see the new status.
    """

    def __init__(self, rules: tuple[MilestoneRule, ...] = DEFAULT_RULES):
        self.rules = rules
        self.pass_count = 0
        self.last_revision: Optional[int] = None

    def _load(self, store: "DealStorage", broker_id: Optional[str]) -> list[Deal]:
        deals = store.for_broker(broker_id) if broker_id else store.get_all()
        return [d for d in deals if d.is_open]

    def run(
        self,
        store: "DealStorage",
        today: DateLike,
        broker_id: Optional[str] = None,
    ) -> ReconciliationReport:
        """
        Reconcile the store's deals and persist silent advancements.

        Write failures are collected per deal and never abort the pass or
        get retried here; the next pass naturally tries again.
        """
        revision = store.revision
        deals = self._load(store, broker_id)

        if revision == self.last_revision:
            logger.debug("reconcile.already_processed", revision=revision)
            return ReconciliationReport(
                ran=False,
                pass_number=self.pass_count,
                revision=revision,
                deals=deals,
            )

        result = reconcile(deals, today, self.rules)
        self.pass_count += 1
        self.last_revision = revision

        report = ReconciliationReport(
            ran=True,
            pass_number=self.pass_count,
            revision=revision,
            pending_decision=result.pending_decision,
            skipped_timeline_entries=result.skipped_timeline_entries,
        )

        for advancement in result.advancements:
            try:
                change = plan_advancement(advancement)
                store.patch_status(change.deal_id, change.to_status)
            except Exception as e:
                failure = ReconciliationWriteFailure(
                    advancement.deal.id, advancement.new_status, str(e)
                )
                report.failures.append(failure)
                logger.warning(
                    "reconcile.write_failed",
                    deal_id=advancement.deal.id,
                    new_status=advancement.new_status.value,
                    error=str(e),
                )
                continue

            report.advancements.append(advancement)
            logger.info(
                "reconcile.advanced",
                deal_id=advancement.deal.id,
                from_status=advancement.from_status.value,
                new_status=advancement.new_status.value,
                action=change.action.value,
                milestone=advancement.milestone_label,
            )

        if result.skipped_timeline_entries:
            logger.warning(
                "reconcile.timeline_entries_skipped",
                count=result.skipped_timeline_entries,
            )

        report.deals = self._load(store, broker_id) if report.advancements else deals
        return report
