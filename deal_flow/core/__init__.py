"""
Core modules for the Deal Flow Engine.

Data:
- dates: Day arithmetic, urgency buckets and display formatting
- deal: Deal, milestone, member and broker data model
- validation: Deal validation and rate checks

Engine:
- timeline: Critical-date deriver (dynamic or legacy schedule)
- commission: Commission, house cut and multi-broker split calculator
- lifecycle: Status state machine (ACTIVE → DUE_DILIGENCE → CLOSING → CLOSED)
- reconcile: Milestone-driven status reconciliation

Views:
- board: Status/column mapping and optimistic board moves
- summary: Dashboard totals and deal list tabs
"""

from .dates import (
    Urgency,
    to_date,
    add_days,
    days_between,
    urgency_for,
    countdown_text,
    format_date,
    to_input_date,
    format_currency,
    format_percent,
)
from .deal import (
    Deal,
    DealStatus,
    DealType,
    DealDate,
    DealMember,
    AdditionalSplit,
    MilestoneDecision,
    Broker,
    OPEN_STATUSES,
    TERMINAL_STATUSES,
    STATUS_LABELS,
    ensure_owner_member,
)
from .validation import (
    InvalidRate,
    ValidationError,
    ValidationResult,
    check_rate,
    validate_deal,
)
from .timeline import (
    CriticalDate,
    MalformedTimeline,
    Milestone,
    Schedule,
    ScheduleKind,
    TimelineResult,
    resolve_schedule,
    derive_timeline,
    derive_timeline_detailed,
    next_critical_date,
    sort_by_next_critical_date,
)
from .commission import (
    HOUSE_CUT_RATE,
    CommissionBreakdown,
    MemberTakeHome,
    calc_commission,
    calc_broker_split,
    calc_house_cut,
    calc_after_house,
    calc_deductions,
    calc_take_home,
    calc_member_take_home,
    resolve_member_split,
    breakdown_for,
    member_breakdown,
    member_breakdowns,
)
from .lifecycle import (
    DealAction,
    ExtensionDecision,
    InvalidTransitionError,
    StatusChange,
    DecisionOutcome,
    can_transition,
    valid_actions,
    plan_transition,
    apply_change,
    transition,
    close_deal,
    cancel_deal,
    resolve_decision,
)
from .reconcile import (
    MilestoneRule,
    DEFAULT_RULES,
    Advancement,
    PendingDecision,
    ReconcileResult,
    ReconciliationWriteFailure,
    ReconciliationReport,
    ReconciliationSession,
    evaluate_deal,
    plan_advancement,
    reconcile,
)
from .board import (
    BoardColumn,
    BOARD_COLUMNS,
    NoOpMoveError,
    MoveCommand,
    MoveResult,
    column_for_status,
    status_for_column,
    group_by_column,
    plan_move,
)
from .summary import (
    DealTab,
    PipelineSummary,
    filter_by_tab,
    tab_counts,
    pipeline_summary,
)

__all__ = [
    # Dates
    "Urgency",
    "to_date",
    "add_days",
    "days_between",
    "urgency_for",
    "countdown_text",
    "format_date",
    "to_input_date",
    "format_currency",
    "format_percent",
    # Data model
    "Deal",
    "DealStatus",
    "DealType",
    "DealDate",
    "DealMember",
    "AdditionalSplit",
    "MilestoneDecision",
    "Broker",
    "OPEN_STATUSES",
    "TERMINAL_STATUSES",
    "STATUS_LABELS",
    "ensure_owner_member",
    # Validation
    "InvalidRate",
    "ValidationError",
    "ValidationResult",
    "check_rate",
    "validate_deal",
    # Timeline
    "CriticalDate",
    "MalformedTimeline",
    "Milestone",
    "Schedule",
    "ScheduleKind",
    "TimelineResult",
    "resolve_schedule",
    "derive_timeline",
    "derive_timeline_detailed",
    "next_critical_date",
    "sort_by_next_critical_date",
    # Commission
    "HOUSE_CUT_RATE",
    "CommissionBreakdown",
    "MemberTakeHome",
    "calc_commission",
    "calc_broker_split",
    "calc_house_cut",
    "calc_after_house",
    "calc_deductions",
    "calc_take_home",
    "calc_member_take_home",
    "resolve_member_split",
    "breakdown_for",
    "member_breakdown",
    "member_breakdowns",
    # Lifecycle
    "DealAction",
    "ExtensionDecision",
    "InvalidTransitionError",
    "StatusChange",
    "DecisionOutcome",
    "can_transition",
    "valid_actions",
    "plan_transition",
    "apply_change",
    "transition",
    "close_deal",
    "cancel_deal",
    "resolve_decision",
    # Reconciliation
    "MilestoneRule",
    "DEFAULT_RULES",
    "Advancement",
    "PendingDecision",
    "ReconcileResult",
    "ReconciliationWriteFailure",
    "ReconciliationReport",
    "ReconciliationSession",
    "evaluate_deal",
    "plan_advancement",
    "reconcile",
    # Board
    "BoardColumn",
    "BOARD_COLUMNS",
    "NoOpMoveError",
    "MoveCommand",
    "MoveResult",
    "column_for_status",
    "status_for_column",
    "group_by_column",
    "plan_move",
    # Summary
    "DealTab",
    "PipelineSummary",
    "filter_by_tab",
    "tab_counts",
    "pipeline_summary",
]
