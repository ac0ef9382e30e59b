"""
Pipeline board: status/column mapping and board moves.

Open deals sit in one of three escrow-phase columns. Closed and
cancelled deals are not on the board. Moving a card to another column
asks for that column's status.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, TYPE_CHECKING

import structlog

from .dates import DateLike
from .deal import Deal, DealStatus
from .lifecycle import DealAction, InvalidTransitionError, StatusChange, apply_change, plan_transition
from .timeline import sort_by_next_critical_date

if TYPE_CHECKING:
    from deal_flow.api.storage import DealStorage

logger = structlog.get_logger(__name__)


class BoardColumn(Enum):
    """Escrow-phase columns on the pipeline board."""

    PRE_ESCROW = "pre_escrow"
    DUE_DILIGENCE = "due_diligence"
    CLOSING = "closing"


@dataclass(frozen=True)
class ColumnInfo:
    key: BoardColumn
    label: str
    description: str
    status: DealStatus


BOARD_COLUMNS: tuple[ColumnInfo, ...] = (
    ColumnInfo(BoardColumn.PRE_ESCROW, "Pre-Escrow", "LOI / PSA negotiation", DealStatus.ACTIVE),
    ColumnInfo(BoardColumn.DUE_DILIGENCE, "Due Diligence", "Escrow open, feasibility period", DealStatus.DUE_DILIGENCE),
    ColumnInfo(BoardColumn.CLOSING, "Closing", "Contingencies removed", DealStatus.CLOSING),
)

_STATUS_TO_COLUMN = {c.status: c.key for c in BOARD_COLUMNS}
_COLUMN_TO_STATUS = {c.key: c.status for c in BOARD_COLUMNS}


class NoOpMoveError(ValueError):
    """Raised when a card is dropped back onto its own column."""

    def __init__(self, deal_id: str, column: BoardColumn):
        self.deal_id = deal_id
        self.column = column
        super().__init__(f"Deal '{deal_id}' is already in '{column.value}'")


def column_for_status(status: DealStatus) -> Optional[BoardColumn]:
    """Board column for a status; None for closed and cancelled deals."""
    return _STATUS_TO_COLUMN.get(status)


def status_for_column(column: BoardColumn) -> DealStatus:
    """The canonical status a column represents."""
    return _COLUMN_TO_STATUS[column]


def group_by_column(deals: list[Deal], today: DateLike) -> dict[BoardColumn, list[Deal]]:
    """
    Group open deals into board columns.

    Each column is ordered by next critical date, most urgent first.
    """
    columns: dict[BoardColumn, list[Deal]] = {c.key: [] for c in BOARD_COLUMNS}

    for deal in deals:
        column = column_for_status(deal.status)
        if column is not None:
            columns[column].append(deal)

    return {key: sort_by_next_critical_date(items, today) for key, items in columns.items()}


def plan_move(deal: Deal, column: BoardColumn) -> StatusChange:
    """
    Turn a card drop into a status change.

    Raises:
        NoOpMoveError: If the deal is already in that column
        InvalidTransitionError: If the deal is not on the board
    """
    current = column_for_status(deal.status)
    if current is None:
        raise InvalidTransitionError(deal.status, DealAction.MOVE, status_for_column(column))
    if current == column:
        raise NoOpMoveError(deal.id, column)
    return plan_transition(deal, DealAction.MOVE, target=status_for_column(column))


@dataclass
class MoveResult:
    """Outcome of executing a board move."""

    ok: bool
    change: StatusChange
    deals: list[Deal] = field(default_factory=list)  # Authoritative state after the move
    message: str = ""

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "change": self.change.to_dict(),
            "message": self.message,
        }


class MoveCommand:
    """
    Optimistic board move.

    apply() projects the move onto a local copy of the deal list so the
    board can update at once. execute() persists it; on failure the
    projection is discarded and state is re-read from the store rather
    than undone field by field.
    """

    def __init__(self, deal: Deal, column: BoardColumn):
        self.deal = deal
        self.column = column
        self.change = plan_move(deal, column)
        self.projection: Optional[list[Deal]] = None

    def apply(self, deals: list[Deal]) -> list[Deal]:
        """Return a projected deal list with the move applied."""
        projected = []
        for deal in deals:
            if deal.id == self.deal.id:
                deal = apply_change(copy.deepcopy(deal), self.change)
            projected.append(deal)
        self.projection = projected
        return projected

    def rollback(self, store: "DealStorage", broker_id: Optional[str] = None) -> list[Deal]:
        """Drop the projection and re-read authoritative state."""
        self.projection = None
        return store.for_broker(broker_id) if broker_id else store.get_all()

    def execute(self, store: "DealStorage", broker_id: Optional[str] = None) -> MoveResult:
        """Persist the move; re-read on success or failure."""
        try:
            store.patch_status(self.deal.id, self.change.to_status)
        except Exception as e:
            logger.warning(
                "board.move_failed",
                deal_id=self.deal.id,
                to_status=self.change.to_status.value,
                error=str(e),
            )
            return MoveResult(
                ok=False,
                change=self.change,
                deals=self.rollback(store, broker_id),
                message=(
                    f"Could not move '{self.deal.deal_name or self.deal.id}' to "
                    f"{self.change.to_status.value.replace('_', ' ')}: {e}. "
                    "The board has been refreshed; try again."
                ),
            )

        logger.info(
            "board.moved",
            deal_id=self.deal.id,
            from_status=self.change.from_status.value,
            to_status=self.change.to_status.value,
        )
        self.projection = None
        return MoveResult(
            ok=True,
            change=self.change,
            deals=store.for_broker(broker_id) if broker_id else store.get_all(),
        )
