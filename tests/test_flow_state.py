from datetime import timedelta
from types import SimpleNamespace
from uuid import uuid4

from conftest import NOW
from teetime.models import BookingState
from teetime.services.flow_state import (
    FlowEnvelope,
    clear_flow_state,
    get_flow_state,
    is_expired,
    merge_shared_context,
    migrate_legacy_state,
    save_flow_state,
    shared_from_fields,
    upgrade_legacy_flow_state,
)


def stored_row(db_session, state, updated_at=NOW):
    row = SimpleNamespace(state=state, updated_at=updated_at)
    db_session.query.return_value.filter.return_value.first.return_value = row
    return row


class TestEnvelopeRead:
    def test_reads_envelope(self, db_session):
        stored_row(
            db_session,
            {"version": 1, "flow": "cancel-booking", "data": {"booking_id": "b1"}, "shared": {"club": "Topgolf"}},
        )

        envelope = get_flow_state(db_session, uuid4(), now=NOW)

        assert envelope.flow == "cancel-booking"
        assert envelope.data == {"booking_id": "b1"}
        assert envelope.shared == {"club": "Topgolf"}

    def test_missing_row(self, db_session):
        db_session.query.return_value.filter.return_value.first.return_value = None
        assert get_flow_state(db_session, uuid4(), now=NOW) is None

    def test_expired_row_is_deleted(self, db_session):
        row = stored_row(db_session, {"flow": "booking-new", "data": {}}, updated_at=NOW - timedelta(hours=3))

        assert get_flow_state(db_session, uuid4(), now=NOW) is None
        db_session.delete.assert_called_once_with(row)

    def test_legacy_row_is_not_read_implicitly(self, db_session):
        row = stored_row(db_session, {"club": "Topgolf", "sharedBookingContext": {"date": "2026-10-19"}})

        assert get_flow_state(db_session, uuid4(), now=NOW) is None
        assert row.state == {"club": "Topgolf", "sharedBookingContext": {"date": "2026-10-19"}}


class TestLegacyUpgrade:
    def test_legacy_row_becomes_booking_envelope(self, db_session):
        row = stored_row(
            db_session,
            {"club": "Topgolf", "time": None, "sharedBookingContext": {"date": "2026-10-19"}},
            updated_at=NOW - timedelta(minutes=5),
        )

        assert upgrade_legacy_flow_state(db_session, uuid4()) is True
        assert row.state == {
            "version": 1,
            "flow": "booking-new",
            "data": {"club": "Topgolf"},
            "shared": {"date": "2026-10-19"},
        }
        assert row.updated_at == NOW - timedelta(minutes=5)

        envelope = get_flow_state(db_session, uuid4(), now=NOW)
        assert envelope.flow == "booking-new"
        assert envelope.shared == {"date": "2026-10-19"}

    def test_envelope_rows_are_left_alone(self, db_session):
        state = {"version": 1, "flow": "support", "data": {"summary": "x"}}
        row = stored_row(db_session, state)

        assert upgrade_legacy_flow_state(db_session, uuid4()) is False
        assert row.state is state
        db_session.flush.assert_not_called()

    def test_missing_row(self, db_session):
        db_session.query.return_value.filter.return_value.first.return_value = None
        assert upgrade_legacy_flow_state(db_session, uuid4()) is False


class TestEnvelopeWrite:
    def test_creates_row(self, db_session):
        db_session.query.return_value.filter.return_value.first.return_value = None
        member_id = uuid4()

        envelope = save_flow_state(db_session, member_id, "booking-new", {"club": "Topgolf", "time": None}, now=NOW)

        added = db_session.add.call_args[0][0]
        assert isinstance(added, BookingState)
        assert added.member_id == member_id
        assert added.state == {"version": 1, "flow": "booking-new", "data": {"club": "Topgolf"}}
        assert envelope.updated_at == NOW

    def test_update_merges_shared_context(self, db_session):
        row = stored_row(
            db_session,
            {"version": 1, "flow": "booking-new", "data": {}, "shared": {"club": "Topgolf", "players": 2}},
        )

        save_flow_state(db_session, uuid4(), "cancel-booking", {"booking_id": "b1"}, {"date": "2026-10-19"}, now=NOW)

        assert row.state["flow"] == "cancel-booking"
        assert row.state["shared"] == {"club": "Topgolf", "players": 2, "date": "2026-10-19"}
        db_session.add.assert_not_called()

    def test_clear(self, db_session):
        clear_flow_state(db_session, uuid4())
        db_session.query.return_value.filter.return_value.delete.assert_called_once()
        db_session.flush.assert_called_once()


class TestHelpers:
    def test_merge_shared_context_none_removes(self):
        merged = merge_shared_context({"club": "Topgolf", "time": "14:00"}, {"time": None, "date": "2026-10-19"})
        assert merged == {"club": "Topgolf", "date": "2026-10-19"}

    def test_shared_from_fields_skips_unresolved(self):
        assert shared_from_fields({"club": "Topgolf", "location": None, "notes": "x"}) == {"club": "Topgolf"}

    def test_migrate_ignores_envelopes_and_empty(self):
        assert migrate_legacy_state({"flow": "support", "data": {}}) is None
        assert migrate_legacy_state({}) is None

    def test_is_expired(self):
        assert is_expired(NOW - timedelta(minutes=30), NOW, ttl_minutes=20) is True
        assert is_expired(NOW - timedelta(minutes=10), NOW, ttl_minutes=20) is False
        assert is_expired(NOW - timedelta(days=2), NOW, ttl_minutes=0) is False

    def test_envelope_json_omits_empty_shared(self):
        assert FlowEnvelope(flow="support", data={"summary": "x"}).to_json() == {
            "version": 1,
            "flow": "support",
            "data": {"summary": "x"},
        }
