"""
Deal lifecycle state machine.

Manages the status of a deal through defined states:
ACTIVE → DUE_DILIGENCE → CLOSING → CLOSED
with CANCELLED reachable from any open state.

CLOSED and CANCELLED are terminal. Board moves may shift a deal between
any two open states.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional

from .dates import DateLike, to_date
from .deal import Deal, DealStatus, MilestoneDecision, OPEN_STATUSES


class DealAction(Enum):
    """Actions that can transition deal status."""

    OPEN_ESCROW = "open_escrow"  # active → due_diligence
    START_CLOSING = "start_closing"  # due_diligence → closing
    CLOSE = "close"
    CANCEL = "cancel"
    MOVE = "move"  # Manual board move between open states


class ExtensionDecision(Enum):
    """Human answer to "was a due-diligence extension filed?"."""

    FILED = "filed"  # Stay in due diligence, amend the schedule
    DECLINED = "declined"  # Proceed to closing


# Valid state transitions for the fixed-target actions
VALID_TRANSITIONS: dict[DealStatus, dict[DealAction, DealStatus]] = {
    DealStatus.ACTIVE: {
        DealAction.OPEN_ESCROW: DealStatus.DUE_DILIGENCE,
        DealAction.CANCEL: DealStatus.CANCELLED,
    },
    DealStatus.DUE_DILIGENCE: {
        DealAction.START_CLOSING: DealStatus.CLOSING,
        DealAction.CANCEL: DealStatus.CANCELLED,
    },
    DealStatus.CLOSING: {
        DealAction.CLOSE: DealStatus.CLOSED,
        DealAction.CANCEL: DealStatus.CANCELLED,
    },
    DealStatus.CLOSED: {},
    DealStatus.CANCELLED: {},
}

# The autonomous advancement sequence
NEXT_STATUS: dict[DealStatus, DealStatus] = {
    DealStatus.ACTIVE: DealStatus.DUE_DILIGENCE,
    DealStatus.DUE_DILIGENCE: DealStatus.CLOSING,
}


class InvalidTransitionError(Exception):
    """Raised when an invalid status transition is attempted."""

    def __init__(
        self,
        current_status: DealStatus,
        action: DealAction,
        target: Optional[DealStatus] = None,
    ):
        self.current_status = current_status
        self.action = action
        self.target = target
        message = f"Cannot perform '{action.value}' from status '{current_status.value}'"
        if target is not None:
            message += f" to '{target.value}'"
        super().__init__(message)


@dataclass
class StatusChange:
    """The outcome of a transition, ready to be persisted."""

    deal_id: str
    from_status: DealStatus
    to_status: DealStatus
    action: DealAction
    actual_close_date: Optional[date] = None
    cancel_reason: Optional[str] = None

    def patch(self) -> dict:
        """Fields to write back to the deal store."""
        fields = {"status": self.to_status.value}
        if self.to_status == DealStatus.CLOSED:
            fields["actual_close_date"] = self.actual_close_date.isoformat()
        if self.to_status == DealStatus.CANCELLED:
            fields["cancel_reason"] = self.cancel_reason
        return fields

    def to_dict(self) -> dict:
        return {
            "deal_id": self.deal_id,
            "from_status": self.from_status.value,
            "to_status": self.to_status.value,
            "action": self.action.value,
            **self.patch(),
        }


def can_transition(status: DealStatus, action: DealAction) -> bool:
    """Check if an action is valid from a status."""
    if action == DealAction.MOVE:
        return status in OPEN_STATUSES
    return action in VALID_TRANSITIONS.get(status, {})


def valid_actions(status: DealStatus) -> list[DealAction]:
    """Get list of valid actions from a status."""
    actions = list(VALID_TRANSITIONS.get(status, {}).keys())
    if status in OPEN_STATUSES:
        actions.append(DealAction.MOVE)
    return actions


def plan_transition(
    deal: Deal,
    action: DealAction,
    target: Optional[DealStatus] = None,
    today: DateLike = None,
    close_date: DateLike = None,
    reason: Optional[str] = None,
) -> StatusChange:
    """
    Work out a status change without touching the deal.

    Args:
        deal: The deal to transition
        action: The action to perform
        target: Destination for MOVE (must be another open status)
        today: Caller's date, used as the default close date
        close_date: Actual close date for CLOSE
        reason: Cancellation reason for CANCEL

    Raises:
        InvalidTransitionError: If the transition is not valid
    """
    current = deal.status

    if action == DealAction.MOVE:
        if (
            current not in OPEN_STATUSES
            or target not in OPEN_STATUSES
            or target == current
        ):
            raise InvalidTransitionError(current, action, target)
        new_status = target
    else:
        if not can_transition(current, action):
            raise InvalidTransitionError(current, action, target)
        new_status = VALID_TRANSITIONS[current][action]

    change = StatusChange(
        deal_id=deal.id,
        from_status=current,
        to_status=new_status,
        action=action,
    )

    if new_status == DealStatus.CLOSED:
        change.actual_close_date = to_date(close_date) or to_date(today) or date.today()
    if new_status == DealStatus.CANCELLED:
        change.cancel_reason = (reason or "").strip() or None

    return change


def apply_change(deal: Deal, change: StatusChange) -> Deal:
    """Apply a planned change to a deal in place."""
    deal.status = change.to_status
    if change.to_status == DealStatus.CLOSED:
        deal.actual_close_date = change.actual_close_date
    if change.to_status == DealStatus.CANCELLED:
        deal.cancel_reason = change.cancel_reason
    deal.updated_at = datetime.now()
    return deal


def transition(deal: Deal, action: DealAction, **kwargs) -> StatusChange:
    """
    Perform a status transition on the deal.

    Returns:
        The applied StatusChange

    Raises:
        InvalidTransitionError: If transition is not valid
    """
    change = plan_transition(deal, action, **kwargs)
    apply_change(deal, change)
    return change


def close_deal(deal: Deal, close_date: DateLike = None, today: DateLike = None) -> StatusChange:
    """Close a deal that is in closing."""
    return transition(deal, DealAction.CLOSE, close_date=close_date, today=today)


def cancel_deal(deal: Deal, reason: Optional[str] = None) -> StatusChange:
    """Cancel an open deal."""
    return transition(deal, DealAction.CANCEL, reason=reason)


@dataclass
class DecisionOutcome:
    """Result of answering an extension-decision prompt."""

    decision: MilestoneDecision
    change: Optional[StatusChange]  # None when the deal stays put
    amend_schedule: bool  # Caller should route the user to edit dates

    def to_dict(self) -> dict:
        return {
            "decision": self.decision.to_dict(),
            "change": self.change.to_dict() if self.change else None,
            "amend_schedule": self.amend_schedule,
        }


def resolve_decision(
    deal: Deal,
    milestone_label: str,
    milestone_date: DateLike,
    decision: ExtensionDecision,
) -> DecisionOutcome:
    """
    Record the answer to an extension-decision prompt.

    FILED keeps the deal in due diligence; DECLINED moves it to closing.
    The decision is stored on the deal so the milestone is not prompted again.

    Raises:
        InvalidTransitionError: If the deal is not in due diligence
    """
    if deal.status != DealStatus.DUE_DILIGENCE:
        raise InvalidTransitionError(deal.status, DealAction.START_CLOSING)

    record = MilestoneDecision(
        label=milestone_label,
        date=to_date(milestone_date),
        outcome=decision.value,
    )

    change = None
    if decision == ExtensionDecision.DECLINED:
        change = transition(deal, DealAction.START_CLOSING)

    deal.milestone_decisions.append(record)
    deal.updated_at = datetime.now()

    return DecisionOutcome(
        decision=record,
        change=change,
        amend_schedule=decision == ExtensionDecision.FILED,
    )
