from datetime import date, datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock
from uuid import uuid4

from conftest import NOW
from teetime.config import settings
from teetime.models import Notification, ScheduledJob
from teetime.services.messaging_service import SendResult
from teetime.services.notification_service import (
    NotificationTemplate,
    build_status_followup_message,
    mark_provider_failure,
    notify_staff,
    process_job,
    render_notification,
    schedule_booking_follow_up,
    schedule_booking_reminder,
    template_for_status,
)


def added(db_session, model):
    return [call.args[0] for call in db_session.add.call_args_list if isinstance(call.args[0], model)]


def make_booking(preferred_date, time_start="14:00"):
    return SimpleNamespace(id=uuid4(), preferred_date=preferred_date, preferred_time_start=time_start)


class TestRendering:
    def test_confirmed_template(self):
        body = render_notification(
            NotificationTemplate.BOOKING_CONFIRMED.value, member_name="Alex", club="Topgolf", date="2026-10-19", time="2pm"
        )
        assert body == "Great news, Alex! Your tee time at Topgolf on 2026-10-19 at 2pm is confirmed. See you on the course!"

    def test_unknown_member_name_is_generic(self):
        body = render_notification(NotificationTemplate.BOOKING_RECEIVED.value, member_name="Unknown", club="Topgolf")
        assert body.startswith("Hi there!")

    def test_status_template_mapping(self):
        assert template_for_status("Cancelled") == NotificationTemplate.BOOKING_CANCELLED
        assert template_for_status("Pending") is None

    def test_followup_offers_alternate_times(self):
        message = build_status_followup_message(
            "Not Available",
            member_name="Alex",
            preferred_date="2026-10-19",
            preferred_time="2pm",
            alternate_times=["3pm", "4pm"],
        )
        assert message == "Sorry Alex, we couldn't secure 2026-10-19 at 2pm. Would any of these times work instead: 3pm, 4pm?"

    def test_followup_ignores_pending(self):
        assert build_status_followup_message("Pending") is None


class TestScheduling:
    def test_reminder_is_queued_ahead_of_tee_time(self, db_session):
        booking = make_booking(date(2026, 10, 20))

        notification = schedule_booking_reminder(db_session, booking, "Etc/UTC", now=NOW)

        assert notification.template_name == "booking_reminder"
        job = added(db_session, ScheduledJob)[0]
        assert job.job_type == "reminder"
        assert job.run_at == datetime(2026, 10, 19, 14, 0, tzinfo=timezone.utc)
        assert job.notification_id == notification.id

    def test_reminder_skipped_inside_window(self, db_session):
        booking = make_booking(date(2026, 10, 19), "08:00")

        assert schedule_booking_reminder(db_session, booking, "Etc/UTC", now=NOW) is None
        db_session.add.assert_not_called()

    def test_follow_up_after_tee_time(self, db_session):
        booking = make_booking(date(2026, 10, 19))

        schedule_booking_follow_up(db_session, booking, "Etc/UTC", now=NOW)

        job = added(db_session, ScheduledJob)[0]
        assert job.job_type == "follow_up"
        assert job.run_at == datetime(2026, 10, 20, 14, 0, tzinfo=timezone.utc)

    def test_staff_notice_needs_number(self, db_session, monkeypatch):
        monkeypatch.setattr(settings, "staff_notify_number", None)
        assert notify_staff(db_session, "New booking") is None

        monkeypatch.setattr(settings, "staff_notify_number", "+15559990000")
        notification = notify_staff(db_session, "New booking", now=NOW)
        assert notification.recipient == "+15559990000"
        assert notification.body == "New booking"
        assert added(db_session, Notification) == [notification]


class TestProcessJob:
    def setup_method(self):
        self.job_id = uuid4()
        self.notification = SimpleNamespace(
            id=uuid4(),
            body="Staff notice",
            recipient="+15559990000",
            status="pending",
            error=None,
            provider_message_id=None,
            sent_at=None,
        )
        self.job_row = SimpleNamespace(id=self.job_id, notification_id=self.notification.id, status="processing")

    def _db(self):
        db = MagicMock()
        db.query.return_value.filter.return_value.first.side_effect = [
            self.notification,
            self.job_row,
            self.notification,
        ]
        return db

    def test_sent(self):
        db = self._db()
        sender = MagicMock()
        sender.send_message.return_value = SendResult(ok=True, message_sid="SM123")

        outcome = process_job(db, {"id": self.job_id, "notification_id": self.notification.id, "attempts": 1}, sender)

        assert outcome == "sent"
        sender.send_message.assert_called_once_with("+15559990000", "Staff notice")
        assert self.job_row.status == "sent"
        assert self.notification.provider_message_id == "SM123"
        assert self.notification.sent_at is not None
        db.commit.assert_called_once()

    def test_failure_is_retried_until_max_attempts(self):
        sender = MagicMock()
        sender.send_message.return_value = SendResult(ok=False, error="21211: invalid number")

        outcome = process_job(
            self._db(), {"id": self.job_id, "notification_id": self.notification.id, "attempts": 1}, sender
        )
        assert outcome == "pending"
        assert self.job_row.last_error == "21211: invalid number"

        self.job_row.status = "processing"
        outcome = process_job(
            self._db(),
            {"id": self.job_id, "notification_id": self.notification.id, "attempts": 3},
            sender,
            max_attempts=3,
        )
        assert outcome == "failed"
        assert self.notification.status == "failed"

    def test_send_exception_returns_job_to_pending(self):
        db = self._db()
        sender = MagicMock()
        sender.send_message.side_effect = ConnectionError("network down")

        outcome = process_job(db, {"id": self.job_id, "notification_id": self.notification.id, "attempts": 1}, sender)

        assert outcome == "pending"
        assert self.job_row.status == "pending"
        assert self.job_row.last_error == "ConnectionError: network down"
        db.commit.assert_called_once()

    def test_send_exception_at_max_attempts_fails_job(self):
        sender = MagicMock()
        sender.send_message.side_effect = ConnectionError("network down")

        outcome = process_job(
            self._db(),
            {"id": self.job_id, "notification_id": self.notification.id, "attempts": 3},
            sender,
            max_attempts=3,
        )

        assert outcome == "failed"
        assert self.job_row.status == "failed"
        assert self.notification.status == "failed"
        assert self.notification.error == "ConnectionError: network down"

    def test_missing_notification(self):
        db = MagicMock()
        db.query.return_value.filter.return_value.first.side_effect = [self.job_row, self.notification]
        sender = MagicMock()

        assert process_job(db, {"id": self.job_id, "notification_id": None}, sender) == "failed"
        assert self.job_row.last_error == "notification_missing"
        sender.send_message.assert_not_called()


class TestProviderFailure:
    def test_marks_notification_failed(self, db_session):
        notification = SimpleNamespace(status="sent", error=None)
        db_session.query.return_value.filter.return_value.first.return_value = notification

        assert mark_provider_failure(db_session, "SM123", "63016") is True
        assert notification.status == "failed"
        assert notification.error == "63016"

    def test_unknown_message(self, db_session):
        db_session.query.return_value.filter.return_value.first.return_value = None
        assert mark_provider_failure(db_session, "SM404", "30003") is False
