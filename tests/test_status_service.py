from datetime import date
from types import SimpleNamespace
from unittest.mock import patch
from uuid import uuid4

import pytest

from conftest import NOW
from teetime.config import settings
from teetime.models import AuditLog, BookingStatusHistory, Notification
from teetime.services.errors import (
    BookingNotFoundError,
    CancellationWindowExceededError,
    InvalidStatusTransitionError,
)
from teetime.services.state_machine import BookingStatus
from teetime.services.status_service import cancel_booking_with_history, set_booking_status_with_history


def make_booking(**overrides):
    values = {
        "id": uuid4(),
        "member_id": uuid4(),
        "status": "Pending",
        "preferred_date": date(2026, 10, 19),
        "preferred_time_start": "14:00",
        "bay_id": None,
        "cancelled_at": None,
        "staff_member_id": None,
        "updated_at": None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def setup_db(db_session, booking, member_timezone="Etc/UTC"):
    db_session.query.return_value.filter.return_value.with_for_update.return_value.first.return_value = booking
    db_session.query.return_value.filter.return_value.first.return_value = SimpleNamespace(
        timezone=member_timezone, name="Alex", phone_number="+15551234567"
    )


def added(db_session, model):
    return [call.args[0] for call in db_session.add.call_args_list if isinstance(call.args[0], model)]


class TestSetBookingStatus:
    def test_confirm_writes_history_and_notice(self, db_session):
        booking = make_booking()
        setup_db(db_session, booking)
        staff_id = uuid4()

        change = set_booking_status_with_history(
            db_session, booking.id, BookingStatus.CONFIRMED, changed_by_staff_id=staff_id, now=NOW
        )

        assert booking.status == "Confirmed"
        assert booking.staff_member_id == staff_id
        assert change.previous_status == "Pending"
        history = added(db_session, BookingStatusHistory)
        assert history[0].next_status == "Confirmed"
        notices = added(db_session, Notification)
        assert notices[0].template_name == "booking_confirmed"
        assert notices[0].recipient == "+15551234567"
        assert notices[0].body == "Great news Alex! Your booking for 2026-10-19 at 2pm is confirmed."

    def test_not_available_offers_alternate_times(self, db_session):
        booking = make_booking()
        setup_db(db_session, booking)

        set_booking_status_with_history(
            db_session,
            booking.id,
            BookingStatus.NOT_AVAILABLE,
            changed_by_staff_id=uuid4(),
            alternate_times=["3pm", "4:30pm"],
            now=NOW,
        )

        notice = added(db_session, Notification)[0]
        assert notice.template_name == "booking_not_available"
        assert notice.body == (
            "Sorry Alex, we couldn't secure 2026-10-19 at 2pm. Would any of these times work instead: 3pm, 4:30pm?"
        )

    def test_system_change_uses_template_notice(self, db_session):
        booking = make_booking()
        setup_db(db_session, booking)

        set_booking_status_with_history(db_session, booking.id, BookingStatus.CONFIRMED, now=NOW)

        notice = added(db_session, Notification)[0]
        assert notice.template_name == "booking_confirmed"
        assert notice.body is None
        assert notice.recipient is None

    def test_unknown_booking(self, db_session):
        setup_db(db_session, None)
        with pytest.raises(BookingNotFoundError):
            set_booking_status_with_history(db_session, uuid4(), BookingStatus.CONFIRMED, now=NOW)

    def test_invalid_transition_writes_nothing(self, db_session):
        setup_db(db_session, make_booking(status="Cancelled"))
        with pytest.raises(InvalidStatusTransitionError):
            set_booking_status_with_history(db_session, uuid4(), BookingStatus.CONFIRMED, now=NOW)
        db_session.add.assert_not_called()


class TestCancelBooking:
    def test_cancel_records_audit_and_releases_bay(self, db_session):
        booking = make_booking(bay_id=uuid4())
        setup_db(db_session, booking)

        with patch("teetime.services.status_service.release_bay") as release_bay:
            cancel_booking_with_history(db_session, booking.id, booking.member_id, now=NOW)

        release_bay.assert_called_once_with(db_session, booking.bay_id, NOW)
        assert booking.status == "Cancelled"
        assert booking.cancelled_at == NOW
        audit = added(db_session, AuditLog)
        assert audit[0].action == "booking.cancel"
        assert audit[0].audit_metadata == {"member_id": str(booking.member_id)}
        assert added(db_session, Notification)[0].template_name == "booking_cancelled"

    def test_inside_window_is_refused_without_history(self, db_session):
        booking = make_booking(preferred_date=date(2026, 10, 18), preferred_time_start="09:45")
        setup_db(db_session, booking)

        with pytest.raises(CancellationWindowExceededError):
            cancel_booking_with_history(db_session, booking.id, booking.member_id, now=NOW)

        assert booking.status == "Pending"
        db_session.add.assert_not_called()

    def test_window_uses_member_timezone(self, db_session):
        # 09:45 in Chicago is 14:45 UTC, well outside the hour before tee-off.
        booking = make_booking(preferred_date=date(2026, 10, 18), preferred_time_start="09:45")
        setup_db(db_session, booking, member_timezone="America/Chicago")

        cancel_booking_with_history(db_session, booking.id, booking.member_id, now=NOW)

        assert booking.status == "Cancelled"

    def test_window_disabled(self, db_session, monkeypatch):
        monkeypatch.setattr(settings, "cancellation_window_minutes", 0)
        booking = make_booking(preferred_date=date(2026, 10, 18), preferred_time_start="09:05")
        setup_db(db_session, booking)

        cancel_booking_with_history(db_session, booking.id, booking.member_id, now=NOW)

        assert booking.status == "Cancelled"
