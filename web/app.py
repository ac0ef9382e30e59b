"""
Deal Flow Engine - FastAPI Web Application

Deal pipeline API: deal CRUD, derived timelines and commission,
status changes, board moves and milestone reconciliation.
"""

from datetime import date
from typing import Any, Optional

import structlog
from fastapi import FastAPI, Header, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from deal_flow import __version__
from deal_flow.api.storage import (
    BrokerDirectory,
    DealNotFoundError,
    DealStorage,
    StorageError,
    create_sample_data,
)
from deal_flow.config import get_settings
from deal_flow.core import (
    AdditionalSplit,
    BOARD_COLUMNS,
    Broker,
    BoardColumn,
    Deal,
    DealAction,
    DealDate,
    DealMember,
    DealStatus,
    DealTab,
    DealType,
    ExtensionDecision,
    InvalidRate,
    InvalidTransitionError,
    MoveCommand,
    NoOpMoveError,
    OPEN_STATUSES,
    ReconciliationSession,
    STATUS_LABELS,
    Urgency,
    apply_change,
    breakdown_for,
    column_for_status,
    derive_timeline_detailed,
    filter_by_tab,
    group_by_column,
    member_breakdown,
    member_breakdowns,
    next_critical_date,
    pipeline_summary,
    plan_transition,
    tab_counts,
    to_date,
    valid_actions,
    validate_deal,
)
from deal_flow.logging_config import configure_logging


configure_logging()
logger = structlog.get_logger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Deal Flow Engine",
    description="Deal pipeline, critical dates and commission API",
    version=__version__,
)

# Global storage instances
_storage: Optional[DealStorage] = None
_directory: Optional[BrokerDirectory] = None

# One reconciliation session per signed-in broker
_sessions: dict[str, ReconciliationSession] = {}


def get_storage() -> DealStorage:
    """Get or create the global deal storage instance."""
    global _storage
    if _storage is None:
        settings = get_settings()
        _storage = DealStorage(settings.DEAL_STORAGE_PATH)
        directory = get_directory()

        # Create sample data if storage is empty
        if settings.SEED_SAMPLE_DATA and _storage.count() == 0:
            create_sample_data(_storage, directory)

    return _storage


def get_directory() -> BrokerDirectory:
    """Get or create the global broker directory."""
    global _directory
    if _directory is None:
        _directory = BrokerDirectory(get_settings().BROKER_STORAGE_PATH)
    return _directory


def get_session(broker_id: str) -> ReconciliationSession:
    if broker_id not in _sessions:
        _sessions[broker_id] = ReconciliationSession()
    return _sessions[broker_id]


# Pydantic models for request/response
class SplitInput(BaseModel):
    label: str
    percent: float


class DealDateInput(BaseModel):
    label: str
    date: Optional[str] = None
    offset_days: Optional[int] = None
    offset_from: Optional[str] = None
    sort_order: Optional[int] = None


class MemberInput(BaseModel):
    broker_id: str
    split_percent: Optional[float] = None


class DealCreate(BaseModel):
    deal_name: str
    property_address: Optional[str] = None
    deal_type: str = "sale"
    price: Optional[float] = None
    commission_rate: Optional[float] = None  # None = broker default
    broker_split: Optional[float] = None  # None = broker default
    effective_date: Optional[str] = None
    escrow_open_date: Optional[str] = None
    notes: Optional[str] = None
    listing_id: Optional[str] = None
    parcel_number: Optional[str] = None
    additional_splits: Optional[list[SplitInput]] = None  # None = broker default
    deal_dates: list[DealDateInput] = []
    broker_members: list[MemberInput] = []


class DealPatch(BaseModel):
    deal_name: Optional[str] = None
    property_address: Optional[str] = None
    deal_type: Optional[str] = None
    price: Optional[float] = None
    commission_rate: Optional[float] = None
    broker_split: Optional[float] = None
    effective_date: Optional[str] = None
    escrow_open_date: Optional[str] = None
    status: Optional[str] = None
    actual_close_date: Optional[str] = None
    cancel_reason: Optional[str] = None
    notes: Optional[str] = None
    listing_id: Optional[str] = None
    parcel_number: Optional[str] = None
    additional_splits: Optional[list[SplitInput]] = None
    deal_dates: Optional[list[DealDateInput]] = None
    broker_members: Optional[list[MemberInput]] = None


class CloseRequest(BaseModel):
    actual_close_date: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class DecisionRequest(BaseModel):
    milestone_label: str
    milestone_date: str
    decision: str  # "filed" | "declined"


class MoveRequest(BaseModel):
    deal_id: str
    column: str


class DefaultsPatch(BaseModel):
    commission_rate: Optional[float] = None
    broker_split: Optional[float] = None
    additional_splits: Optional[list[SplitInput]] = None


# Routes

@app.get("/api/health")
async def health():
    """Health check endpoint."""
    storage = get_storage()
    return {"status": "ok", "deals": storage.count(), "revision": storage.revision}


@app.get("/api/enums")
async def get_enums():
    """Get available enum values for form dropdowns."""
    return {
        "statuses": [{"value": s.value, "label": STATUS_LABELS[s]} for s in DealStatus],
        "deal_types": [e.value for e in DealType],
        "columns": [
            {"key": c.key.value, "label": c.label, "description": c.description, "status": c.status.value}
            for c in BOARD_COLUMNS
        ],
        "urgency": [e.value for e in Urgency],
        "decisions": [e.value for e in ExtensionDecision],
        "tabs": [e.value for e in DealTab],
    }


@app.get("/api/deals")
async def list_deals(
    tab: str = "active",
    today: Optional[str] = None,
    x_user_email: Optional[str] = Header(None),
):
    """List the signed-in broker's deals with dashboard totals."""
    broker = _current_broker(x_user_email)
    day = _today(today)
    directory = get_directory()

    try:
        selected_tab = DealTab(tab)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown tab '{tab}'")

    deals = [directory.decorate(d) for d in get_storage().for_broker(broker.id)]

    return {
        "deals": [_deal_view(d, broker.id, day) for d in filter_by_tab(deals, selected_tab, day)],
        "tab_counts": tab_counts(deals),
        "summary": pipeline_summary(deals, broker.id, day).to_dict(),
        "broker_id": broker.id,
        "broker_defaults": directory.defaults_for(broker).to_dict(),
        "all_brokers": [{"id": b.id, "name": b.name, "email": b.email} for b in directory.all()],
    }


@app.get("/api/deals/{deal_id}")
async def get_deal(deal_id: str, today: Optional[str] = None, x_user_email: Optional[str] = Header(None)):
    """Get a single deal with its timeline and commission breakdown."""
    broker = _current_broker(x_user_email)
    deal = _require_deal(deal_id)
    return _deal_view(get_directory().decorate(deal), broker.id, _today(today), detailed=True)


@app.post("/api/deals")
async def create_deal(data: DealCreate, today: Optional[str] = None, x_user_email: Optional[str] = Header(None)):
    """Create a new deal owned by the signed-in broker."""
    broker = _current_broker(x_user_email)
    day = _today(today)
    defaults = get_directory().defaults_for(broker)
    storage = get_storage()

    try:
        deal = Deal(
            id=storage.generate_id(),
            broker_id=broker.id,
            deal_name=data.deal_name,
            property_address=data.property_address or None,
            deal_type=DealType(data.deal_type),
            price=data.price,
            commission_rate=(
                data.commission_rate if data.commission_rate is not None else defaults.commission_rate
            ),
            broker_split=data.broker_split if data.broker_split is not None else defaults.broker_split,
            additional_splits=(
                _splits(data.additional_splits)
                if data.additional_splits is not None
                else list(defaults.additional_splits)
            ),
            effective_date=to_date(data.effective_date),
            escrow_open_date=to_date(data.escrow_open_date),
            notes=data.notes or None,
            listing_id=data.listing_id or None,
            parcel_number=data.parcel_number or None,
            deal_dates=_dates(data.deal_dates),
            deal_members=_members(data.broker_members),
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    _require_valid(deal)
    _write(lambda: storage.create(deal))

    view = _deal_view(get_directory().decorate(deal), broker.id, day, detailed=True)
    return JSONResponse(content=view, status_code=201)


@app.patch("/api/deals/{deal_id}")
async def update_deal(
    deal_id: str,
    data: DealPatch,
    today: Optional[str] = None,
    x_user_email: Optional[str] = Header(None),
):
    """
    Update a deal.

    Only supplied fields change. deal_dates and broker_members, when
    supplied, replace the existing rows wholesale. A status change goes
    through the lifecycle rules.
    """
    broker = _current_broker(x_user_email)
    day = _today(today)
    deal = _require_deal(deal_id)
    updates = data.model_dump(exclude_unset=True)

    try:
        change = None
        new_status = updates.pop("status", None)
        if new_status is not None and new_status != deal.status.value:
            change = _plan_status_change(
                deal,
                DealStatus(new_status),
                day,
                close_date=updates.get("actual_close_date"),
                reason=updates.get("cancel_reason"),
            )

        dates = updates.pop("deal_dates", None)
        members = updates.pop("broker_members", None)

        merged = deal.to_dict()
        merged.update(updates)
        updated = Deal.from_dict(merged)

        if dates is not None:
            updated.deal_dates = _dates([DealDateInput(**d) for d in dates])
        if members is not None:
            updated.deal_members = _members([MemberInput(**m) for m in members])
        if change is not None:
            apply_change(updated, change)

    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except (ValueError, TypeError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    _require_valid(updated)
    _write(lambda: get_storage().update(updated))

    return _deal_view(get_directory().decorate(updated), broker.id, day, detailed=True)


@app.delete("/api/deals/{deal_id}")
async def delete_deal(deal_id: str):
    """Delete a deal with its milestones and roster."""
    if get_storage().delete(deal_id):
        return {"deleted": deal_id}
    raise HTTPException(status_code=404, detail=f"Deal '{deal_id}' not found")


@app.post("/api/deals/{deal_id}/close")
async def close_deal_route(
    deal_id: str,
    data: CloseRequest,
    today: Optional[str] = None,
    x_user_email: Optional[str] = Header(None),
):
    """Close a deal that is in closing."""
    broker = _current_broker(x_user_email)
    day = _today(today)
    deal = _require_deal(deal_id)

    try:
        change = plan_transition(deal, DealAction.CLOSE, today=day, close_date=data.actual_close_date)
    except InvalidTransitionError as e:
        raise HTTPException(
            status_code=409,
            detail=f"{e}. Move the deal to closing before marking it closed.",
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    updated = _write(lambda: get_storage().patch(deal_id, change.patch()))
    return _deal_view(get_directory().decorate(updated), broker.id, day, detailed=True)


@app.post("/api/deals/{deal_id}/cancel")
async def cancel_deal_route(
    deal_id: str,
    data: CancelRequest,
    today: Optional[str] = None,
    x_user_email: Optional[str] = Header(None),
):
    """Cancel an open deal."""
    broker = _current_broker(x_user_email)
    day = _today(today)
    deal = _require_deal(deal_id)

    try:
        change = plan_transition(deal, DealAction.CANCEL, reason=data.reason)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))

    updated = _write(lambda: get_storage().patch(deal_id, change.patch()))
    return _deal_view(get_directory().decorate(updated), broker.id, day, detailed=True)


@app.post("/api/deals/{deal_id}/decision")
async def resolve_milestone_decision(
    deal_id: str,
    data: DecisionRequest,
    today: Optional[str] = None,
    x_user_email: Optional[str] = Header(None),
):
    """Answer an extension-decision prompt raised by reconciliation."""
    broker = _current_broker(x_user_email)
    day = _today(today)
    _require_deal(deal_id)

    try:
        decision = ExtensionDecision(data.decision)
        updated, outcome = _write(lambda: get_storage().record_decision(
            deal_id, data.milestone_label, data.milestone_date, decision
        ))
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "outcome": outcome.to_dict(),
        "deal": _deal_view(get_directory().decorate(updated), broker.id, day, detailed=True),
    }


@app.post("/api/reconcile")
async def reconcile_deals(today: Optional[str] = None, x_user_email: Optional[str] = Header(None)):
    """
    Run a reconciliation pass over the broker's deals.

    A data set this broker's session has already processed is skipped.
    """
    broker = _current_broker(x_user_email)
    day = _today(today)

    report = get_session(broker.id).run(get_storage(), day, broker_id=broker.id)
    return report.to_dict()


@app.get("/api/board")
async def get_board(today: Optional[str] = None, x_user_email: Optional[str] = Header(None)):
    """Open deals grouped into escrow-phase columns."""
    broker = _current_broker(x_user_email)
    day = _today(today)
    return _board_view(get_storage().for_broker(broker.id), broker.id, day)


@app.post("/api/board/move")
async def move_card(data: MoveRequest, today: Optional[str] = None, x_user_email: Optional[str] = Header(None)):
    """Move a deal to another column (sets that column's status)."""
    broker = _current_broker(x_user_email)
    day = _today(today)
    deal = _require_deal(data.deal_id)

    try:
        command = MoveCommand(deal, BoardColumn(data.column))
    except NoOpMoveError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    result = command.execute(get_storage(), broker.id)
    body = {
        "move": result.to_dict(),
        "board": _board_view(result.deals, broker.id, day),
    }
    if not result.ok:
        return JSONResponse(content=body, status_code=503)
    return body


@app.get("/api/broker/defaults")
async def get_defaults(x_user_email: Optional[str] = Header(None)):
    """Get the signed-in broker's default commission terms."""
    broker = _current_broker(x_user_email)
    return get_directory().defaults_for(broker).to_dict()


@app.patch("/api/broker/defaults")
async def update_defaults(data: DefaultsPatch, x_user_email: Optional[str] = Header(None)):
    """Update the signed-in broker's default commission terms."""
    broker = _current_broker(x_user_email)
    directory = get_directory()

    try:
        updated = directory.update_defaults(
            broker.id,
            commission_rate=data.commission_rate,
            broker_split=data.broker_split,
            additional_splits=(
                _splits(data.additional_splits) if data.additional_splits is not None else None
            ),
        )
    except InvalidRate as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageError as e:
        logger.error("broker.write_failed", broker_id=broker.id, error=str(e))
        raise HTTPException(status_code=503, detail=f"Could not save the defaults: {e}")

    return directory.defaults_for(updated).to_dict()


# Helper functions

def _current_broker(email: Optional[str]) -> Broker:
    """Resolve the signed-in broker from the x-user-email header."""
    if not email:
        raise HTTPException(status_code=401, detail="Missing x-user-email header")

    get_storage()  # Seeds the directory on first use
    broker = get_directory().by_email(email)
    if broker is None:
        raise HTTPException(status_code=404, detail=f"Broker not found for email: {email}")
    return broker


def _today(value: Optional[str]) -> date:
    """The caller's date, or the server date when not supplied."""
    try:
        return to_date(value) or date.today()
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid date for 'today': {value}")


def _require_deal(deal_id: str) -> Deal:
    """A working copy of a stored deal; the stored one changes only on write."""
    deal = get_storage().get(deal_id)
    if deal is None:
        raise HTTPException(status_code=404, detail=f"Deal '{deal_id}' not found")
    return deal


def _require_valid(deal: Deal) -> None:
    result = validate_deal(deal)
    if not result:
        raise HTTPException(
            status_code=400,
            detail=[{"field": e.field, "message": e.message} for e in result.errors],
        )
    for warning in result.warnings:
        logger.info("deal.validation_warning", deal_id=deal.id, warning=warning)


def _write(operation):
    """Run a storage write, turning failures into actionable responses."""
    try:
        return operation()
    except DealNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StorageError as e:
        logger.error("deal.write_failed", error=str(e))
        raise HTTPException(
            status_code=503,
            detail=f"Could not save the change: {e}. The deal was left unchanged; reload and try again.",
        )


def _plan_status_change(deal: Deal, target: DealStatus, day: date, close_date=None, reason=None):
    """Map a requested status to the lifecycle action that reaches it."""
    if target == DealStatus.CLOSED:
        return plan_transition(deal, DealAction.CLOSE, today=day, close_date=close_date)
    if target == DealStatus.CANCELLED:
        return plan_transition(deal, DealAction.CANCEL, reason=reason)
    if target in OPEN_STATUSES:
        return plan_transition(deal, DealAction.MOVE, target=target)
    raise ValueError(f"Unknown status '{target}'")


def _splits(items: list[SplitInput]) -> list[AdditionalSplit]:
    return [AdditionalSplit(label=s.label, percent=s.percent) for s in items]


def _dates(items: list[DealDateInput]) -> list[DealDate]:
    """Build fresh milestone rows; an unreadable date is kept as None."""
    rows = []
    for i, item in enumerate(items):
        try:
            day = to_date(item.date)
        except ValueError:
            day = None
        rows.append(DealDate(
            label=item.label,
            date=day,
            sort_order=item.sort_order if item.sort_order is not None else i,
            offset_days=item.offset_days,
            offset_from=item.offset_from,
        ))
    return rows


def _members(items: list[MemberInput]) -> list[DealMember]:
    return [DealMember(broker_id=m.broker_id, split_percent=m.split_percent) for m in items]


def _deal_view(deal: Deal, broker_id: str, day: date, detailed: bool = False) -> dict[str, Any]:
    """Deal record plus everything derived from it for display."""
    timeline = derive_timeline_detailed(deal, day)
    nxt = next_critical_date(deal, day)
    column = column_for_status(deal.status)

    view = deal.to_dict()
    view.update({
        "status_label": STATUS_LABELS[deal.status],
        "column": column.value if column else None,
        "valid_actions": [a.value for a in valid_actions(deal.status)],
        "next_critical_date": nxt.to_dict() if nxt else None,
        "timeline": timeline.to_dict(),
    })

    try:
        view["my_take_home"] = member_breakdown(deal, broker_id).to_dict()
        if detailed:
            view["commission"] = breakdown_for(deal).to_dict()
            view["member_take_home"] = [m.to_dict() for m in member_breakdowns(deal)]
    except InvalidRate as e:
        view["commission_error"] = str(e)

    return view


def _board_view(deals: list[Deal], broker_id: str, day: date) -> dict[str, Any]:
    grouped = group_by_column(deals, day)
    return {
        "columns": [
            {
                "key": c.key.value,
                "label": c.label,
                "description": c.description,
                "deals": [_deal_view(d, broker_id, day) for d in grouped[c.key]],
            }
            for c in BOARD_COLUMNS
        ],
    }


# Run with: uvicorn web.app:app --reload
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)
