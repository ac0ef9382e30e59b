"""
Tests for the deal store and broker directory.
"""

import json
import pytest
from datetime import date

from deal_flow.api import (
    BrokerDirectory,
    DealNotFoundError,
    DealStorage,
    StorageError,
    create_sample_data,
)
from deal_flow.core import (
    AdditionalSplit,
    Broker,
    Deal,
    DealDate,
    DealMember,
    DealStatus,
    ExtensionDecision,
    InvalidRate,
    InvalidTransitionError,
)


@pytest.fixture
def sample_deal():
    return Deal(
        id="DEAL-1",
        broker_id="BRK-A",
        deal_name="Harbor Point",
        price=2_000_000,
        escrow_open_date=date(2025, 1, 1),
        deal_dates=[DealDate("Feasibility Ends", date(2025, 2, 1))],
        deal_members=[DealMember("BRK-B", 0.4)],
    )


@pytest.fixture
def directory():
    directory = BrokerDirectory()
    directory.add(Broker(id="BRK-A", name="Avery", email="Avery@Example.com"))
    directory.add(Broker(
        id="BRK-B",
        name="Blake",
        email="blake@example.com",
        default_commission_rate=0.025,
        default_broker_split=0.6,
    ))
    return directory


class TestDealStorage:
    """Test deal CRUD."""

    def test_create_adds_owner_first(self, sample_deal):
        store = DealStorage()
        deal = store.create(sample_deal)

        assert [m.broker_id for m in deal.deal_members] == ["BRK-A", "BRK-B"]
        assert deal.deal_members[0].split_percent is None
        assert all(m.deal_id == "DEAL-1" and m.id for m in deal.deal_members)
        assert deal.deal_dates[0].deal_id == "DEAL-1"

    def test_create_duplicate(self, sample_deal):
        store = DealStorage()
        store.create(sample_deal)
        with pytest.raises(StorageError):
            store.create(Deal(id="DEAL-1", broker_id="BRK-A", deal_name="Again"))

    def test_create_generates_id(self):
        deal = DealStorage().create(Deal(id="", broker_id="BRK-A", deal_name="No ID"))
        assert deal.id.startswith("DEAL-")

    def test_revision_bumps_on_write(self, sample_deal):
        store = DealStorage()
        assert store.revision == 0
        store.create(sample_deal)
        store.patch_status("DEAL-1", DealStatus.DUE_DILIGENCE)
        assert store.revision == 2

    def test_for_broker_is_member_based(self, sample_deal):
        store = DealStorage()
        store.create(sample_deal)
        assert [d.id for d in store.for_broker("BRK-B")] == ["DEAL-1"]
        assert store.for_broker("BRK-C") == []

    def test_patch_status_with_fields(self, sample_deal):
        store = DealStorage()
        store.create(sample_deal)
        store.patch_status("DEAL-1", DealStatus.CLOSING)

        deal = store.patch_status("DEAL-1", DealStatus.CLOSED, actual_close_date="2025-03-15")

        assert deal.status == DealStatus.CLOSED
        assert deal.actual_close_date == date(2025, 3, 15)
        assert deal.deal_name == "Harbor Point"

    def test_patch_missing_deal(self):
        with pytest.raises(DealNotFoundError):
            DealStorage().patch_status("NOPE", DealStatus.CLOSING)

    def test_replace_dates_wholesale(self, sample_deal):
        store = DealStorage()
        store.create(sample_deal)
        old_id = store.get("DEAL-1").deal_dates[0].id

        deal = store.replace_dates("DEAL-1", [
            DealDate("Inspection", date(2025, 1, 20)),
            DealDate("Close of Escrow", date(2025, 3, 1)),
        ])

        assert [d.label for d in deal.deal_dates] == ["Inspection", "Close of Escrow"]
        assert [d.sort_order for d in deal.deal_dates] == [0, 0]
        assert old_id not in [d.id for d in deal.deal_dates]

    def test_replace_members_checks_splits(self, sample_deal):
        store = DealStorage()
        store.create(sample_deal)
        with pytest.raises(InvalidRate):
            store.replace_members("DEAL-1", [DealMember("BRK-A", 70)])

    def test_record_decision(self, sample_deal):
        store = DealStorage()
        sample_deal.status = DealStatus.DUE_DILIGENCE
        store.create(sample_deal)

        deal, outcome = store.record_decision(
            "DEAL-1", "Feasibility Ends", "2025-02-01", ExtensionDecision.DECLINED
        )

        assert deal.status == DealStatus.CLOSING
        assert outcome.change.to_status == DealStatus.CLOSING
        assert store.get("DEAL-1").decision_for("Feasibility Ends", date(2025, 2, 1)) is not None

    def test_record_decision_wrong_status_leaves_deal(self, sample_deal):
        store = DealStorage()
        store.create(sample_deal)
        revision = store.revision

        with pytest.raises(InvalidTransitionError):
            store.record_decision("DEAL-1", "Feasibility Ends", "2025-02-01", ExtensionDecision.FILED)

        assert store.get("DEAL-1").milestone_decisions == []
        assert store.revision == revision

    def test_delete(self, sample_deal):
        store = DealStorage()
        store.create(sample_deal)
        assert store.delete("DEAL-1") is True
        assert store.delete("DEAL-1") is False
        assert store.count() == 0


class TestPersistence:
    """Test JSON file persistence."""

    def test_round_trip_through_file(self, tmp_path, sample_deal):
        path = tmp_path / "deals.json"
        store = DealStorage(str(path))
        store.create(sample_deal)
        store.patch_status("DEAL-1", DealStatus.DUE_DILIGENCE)

        reloaded = DealStorage(str(path))
        deal = reloaded.get("DEAL-1")

        assert reloaded.revision == 2
        assert deal.status == DealStatus.DUE_DILIGENCE
        assert deal.deal_dates[0].date == date(2025, 2, 1)
        assert [m.broker_id for m in deal.deal_members] == ["BRK-A", "BRK-B"]

    def test_unreadable_milestone_date_loads_as_none(self, tmp_path):
        path = tmp_path / "deals.json"
        path.write_text(json.dumps({
            "deals": [{
                "id": "DEAL-9",
                "broker_id": "BRK-A",
                "deal_name": "Messy",
                "deal_dates": [{"label": "Feasibility Ends", "date": "31/02/2025"}],
            }],
        }))

        deal = DealStorage(str(path)).get("DEAL-9")

        assert deal.deal_dates[0].date is None

    def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / "deals.json"
        path.write_text("{not json")
        assert DealStorage(str(path)).count() == 0


def break_file(path):
    """Swap the JSON file for a directory so the next write fails."""
    path.unlink()
    path.mkdir()


class TestFailedWrites:
    """Test that a write that fails leaves the store as it was."""

    @pytest.fixture
    def broken(self, tmp_path, sample_deal):
        path = tmp_path / "deals.json"
        store = DealStorage(str(path))
        store.create(sample_deal)
        break_file(path)
        return store

    @pytest.mark.parametrize("write", [
        lambda s: s.patch_status("DEAL-1", DealStatus.CLOSING),
        lambda s: s.patch("DEAL-1", {"deal_name": "Renamed"}),
        lambda s: s.replace_dates("DEAL-1", [DealDate("Inspection", date(2025, 1, 20))]),
        lambda s: s.replace_members("DEAL-1", [DealMember("BRK-C")]),
        lambda s: s.delete("DEAL-1"),
    ])
    def test_deal_unchanged(self, broken, write):
        before = broken.get("DEAL-1").to_dict()
        revision = broken.revision

        with pytest.raises(StorageError):
            write(broken)

        assert broken.get("DEAL-1").to_dict() == before
        assert broken.revision == revision

    def test_create_not_added(self, broken):
        with pytest.raises(StorageError):
            broken.create(Deal(id="DEAL-2", broker_id="BRK-A", deal_name="New"))

        assert broken.get("DEAL-2") is None
        assert broken.count() == 1

    def test_decision_not_recorded(self, tmp_path, sample_deal):
        path = tmp_path / "deals.json"
        sample_deal.status = DealStatus.DUE_DILIGENCE
        store = DealStorage(str(path))
        store.create(sample_deal)
        break_file(path)

        with pytest.raises(StorageError):
            store.record_decision(
                "DEAL-1", "Feasibility Ends", "2025-02-01", ExtensionDecision.DECLINED
            )

        deal = store.get("DEAL-1")
        assert deal.status == DealStatus.DUE_DILIGENCE
        assert deal.milestone_decisions == []

    def test_update_keeps_stored_object(self, broken):
        deal = broken.get("DEAL-1")
        deal.status = DealStatus.CANCELLED

        with pytest.raises(StorageError):
            broken.update(deal)

        assert broken.get("DEAL-1").status == DealStatus.ACTIVE

    def test_broker_defaults_unchanged(self, tmp_path, directory):
        path = tmp_path / "brokers.json"
        brokers = BrokerDirectory(str(path))
        brokers.add(directory.get("BRK-B"))
        break_file(path)

        with pytest.raises(StorageError):
            brokers.update_defaults("BRK-B", broker_split=0.9)

        assert brokers.get("BRK-B").default_broker_split == 0.6

    def test_reads_are_copies(self, tmp_path, sample_deal):
        store = DealStorage(str(tmp_path / "deals.json"))
        store.create(sample_deal)

        store.get("DEAL-1").status = DealStatus.CANCELLED
        store.get_all()[0].deal_name = "Changed"

        deal = store.get("DEAL-1")
        assert deal.status == DealStatus.ACTIVE
        assert deal.deal_name == "Harbor Point"


class TestBrokerDirectory:
    """Test broker lookup and defaults."""

    def test_by_email_case_insensitive(self, directory):
        assert directory.by_email("avery@example.com").id == "BRK-A"
        assert directory.by_email(" AVERY@EXAMPLE.COM ").id == "BRK-A"
        assert directory.by_email("nobody@example.com") is None

    def test_defaults_fall_back_to_settings(self, directory):
        defaults = directory.defaults_for(directory.get("BRK-A"))
        assert defaults.commission_rate == 0.03
        assert defaults.broker_split == 0.50
        assert defaults.additional_splits == []

    def test_broker_defaults(self, directory):
        defaults = directory.defaults_for(directory.get("BRK-B"))
        assert defaults.commission_rate == 0.025
        assert defaults.broker_split == 0.6

    def test_update_defaults(self, directory):
        directory.update_defaults(
            "BRK-A",
            broker_split=0.7,
            additional_splits=[AdditionalSplit("Team Fee", 0.1)],
        )
        defaults = directory.defaults_for(directory.get("BRK-A"))
        assert defaults.broker_split == 0.7
        assert defaults.commission_rate == 0.03
        assert defaults.additional_splits[0].label == "Team Fee"

    def test_update_defaults_rejects_bad_rate(self, directory):
        with pytest.raises(InvalidRate):
            directory.update_defaults("BRK-A", commission_rate=3)

    def test_update_unknown_broker(self, directory):
        with pytest.raises(StorageError):
            directory.update_defaults("BRK-Z", broker_split=0.5)

    def test_decorate(self, directory, sample_deal):
        directory.decorate(sample_deal)
        assert sample_deal.deal_members[0].broker_name == "Blake"


class TestSampleData:
    """Test demo seeding."""

    def test_seeds_brokers_and_deals(self):
        deals, brokers = DealStorage(), BrokerDirectory()
        create_sample_data(deals, brokers, today=date(2025, 3, 1))

        assert brokers.count() == 2
        assert deals.count() == 3
        assert {d.status for d in deals.get_all()} == {
            DealStatus.ACTIVE,
            DealStatus.DUE_DILIGENCE,
            DealStatus.CLOSING,
        }

    def test_seeding_twice_is_harmless(self):
        deals, brokers = DealStorage(), BrokerDirectory()
        create_sample_data(deals, brokers)
        create_sample_data(deals, brokers)
        assert deals.count() == 3
