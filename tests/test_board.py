"""
Tests for the pipeline board: column mapping, grouping and moves.
"""

import pytest
from datetime import date

from deal_flow.api import DealStorage
from deal_flow.core import (
    BOARD_COLUMNS,
    BoardColumn,
    Deal,
    DealDate,
    DealStatus,
    InvalidTransitionError,
    MoveCommand,
    NoOpMoveError,
    column_for_status,
    group_by_column,
    plan_move,
    status_for_column,
)


TODAY = date(2025, 3, 1)


def break_file(path):
    """Swap the JSON file for a directory so the next write fails."""
    path.unlink()
    path.mkdir()


def make_deal(deal_id, status, next_date=None):
    dates = [DealDate("Close of Escrow", next_date)] if next_date else []
    return Deal(
        id=deal_id,
        broker_id="BRK-A",
        deal_name=f"Deal {deal_id}",
        status=status,
        deal_dates=dates,
    )


@pytest.fixture
def store():
    store = DealStorage()
    store.create(make_deal("DEAL-1", DealStatus.ACTIVE, date(2025, 4, 1)))
    store.create(make_deal("DEAL-2", DealStatus.DUE_DILIGENCE, date(2025, 3, 10)))
    store.create(make_deal("DEAL-3", DealStatus.CLOSED))
    return store


class TestColumns:
    """Test status/column mapping."""

    def test_open_statuses_map_to_columns(self):
        assert column_for_status(DealStatus.ACTIVE) == BoardColumn.PRE_ESCROW
        assert column_for_status(DealStatus.DUE_DILIGENCE) == BoardColumn.DUE_DILIGENCE
        assert column_for_status(DealStatus.CLOSING) == BoardColumn.CLOSING

    @pytest.mark.parametrize("status", [DealStatus.CLOSED, DealStatus.CANCELLED])
    def test_terminal_statuses_off_board(self, status):
        assert column_for_status(status) is None

    def test_round_trip(self):
        for column in BoardColumn:
            assert column_for_status(status_for_column(column)) == column

    def test_column_labels(self):
        assert [c.label for c in BOARD_COLUMNS] == ["Pre-Escrow", "Due Diligence", "Closing"]


class TestGrouping:
    """Test grouping deals into columns."""

    def test_terminal_deals_excluded(self, store):
        grouped = group_by_column(store.get_all(), TODAY)

        assert [d.id for d in grouped[BoardColumn.PRE_ESCROW]] == ["DEAL-1"]
        assert [d.id for d in grouped[BoardColumn.DUE_DILIGENCE]] == ["DEAL-2"]
        assert grouped[BoardColumn.CLOSING] == []

    def test_columns_sorted_by_next_date(self):
        deals = [
            make_deal("LATER", DealStatus.CLOSING, date(2025, 6, 1)),
            make_deal("UNDATED", DealStatus.CLOSING),
            make_deal("SOONER", DealStatus.CLOSING, date(2025, 3, 5)),
        ]
        grouped = group_by_column(deals, TODAY)
        assert [d.id for d in grouped[BoardColumn.CLOSING]] == ["SOONER", "LATER", "UNDATED"]


class TestPlanMove:
    """Test turning a drop into a status change."""

    def test_forward_move(self):
        change = plan_move(make_deal("D", DealStatus.ACTIVE), BoardColumn.CLOSING)
        assert change.to_status == DealStatus.CLOSING

    def test_backward_move(self):
        change = plan_move(make_deal("D", DealStatus.CLOSING), BoardColumn.PRE_ESCROW)
        assert change.to_status == DealStatus.ACTIVE

    def test_same_column_rejected(self):
        with pytest.raises(NoOpMoveError):
            plan_move(make_deal("D", DealStatus.DUE_DILIGENCE), BoardColumn.DUE_DILIGENCE)

    def test_terminal_deal_rejected(self):
        with pytest.raises(InvalidTransitionError):
            plan_move(make_deal("D", DealStatus.CANCELLED), BoardColumn.CLOSING)


class TestMoveCommand:
    """Test the optimistic move and its rollback."""

    def test_apply_projects_without_touching_source(self, store):
        deals = store.get_all()
        command = MoveCommand(store.get("DEAL-1"), BoardColumn.CLOSING)

        projected = command.apply(deals)

        assert {d.id: d.status for d in projected}["DEAL-1"] == DealStatus.CLOSING
        assert store.get("DEAL-1").status == DealStatus.ACTIVE
        assert command.projection is projected

    def test_execute_persists(self, store):
        command = MoveCommand(store.get("DEAL-1"), BoardColumn.CLOSING)

        result = command.execute(store)

        assert result.ok is True
        assert store.get("DEAL-1").status == DealStatus.CLOSING
        assert {d.id: d.status for d in result.deals}["DEAL-1"] == DealStatus.CLOSING
        assert command.projection is None

    def test_failed_write_rereads_state(self, tmp_path):
        path = tmp_path / "deals.json"
        store = DealStorage(str(path))
        store.create(make_deal("DEAL-1", DealStatus.ACTIVE))
        revision = store.revision
        break_file(path)
        command = MoveCommand(store.get("DEAL-1"), BoardColumn.CLOSING)
        command.apply(store.get_all())

        result = command.execute(store)

        assert result.ok is False
        assert command.projection is None
        assert [d.status for d in result.deals] == [DealStatus.ACTIVE]
        assert store.get("DEAL-1").status == DealStatus.ACTIVE
        assert store.revision == revision
        assert "Could not write" in result.message
        assert "try again" in result.message

    def test_result_to_dict(self, store):
        result = MoveCommand(store.get("DEAL-2"), BoardColumn.PRE_ESCROW).execute(store)
        data = result.to_dict()
        assert data["ok"] is True
        assert data["change"]["from_status"] == "due_diligence"
        assert data["change"]["to_status"] == "active"
