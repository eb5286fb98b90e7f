from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock
from uuid import uuid4

from twilio.base.exceptions import TwilioRestException

from conftest import NOW
from teetime.models import MessageLog
from teetime.services.member_service import complete_onboarding, get_or_create_member, normalize_phone_number
from teetime.services.message_log_service import (
    get_recent_history,
    is_debounced,
    is_duplicate_delivery,
    log_message,
)
from teetime.services.messaging_service import WhatsAppService, build_twiml_reply, to_whatsapp_address
from teetime.services.text_utils import hash_message_body


class TestLogMessage:
    def test_stores_redacted_body_and_hash(self, db_session):
        member_id = uuid4()

        entry = log_message(
            db_session,
            member_id,
            "inbound",
            "email me at jo@example.com",
            provider_message_id="SM1",
            profile_name="Jo",
            sender="+15550001111",
            now=NOW,
        )

        assert isinstance(entry, MessageLog)
        assert entry.body_redacted == "email me at [redacted-email-1]"
        assert entry.body_hash == hash_message_body("email me at jo@example.com")
        assert entry.log_metadata["profileName"] == "Jo"
        assert entry.log_metadata["from"] == "[redacted-phone-2]"
        assert entry.log_metadata["redactions"] == [
            {"token": "[redacted-email-1]", "type": "email"},
            {"token": "[redacted-phone-2]", "type": "phone"},
        ]
        db_session.add.assert_called_once_with(entry)

    def test_metadata_is_kept(self, db_session):
        entry = log_message(db_session, uuid4(), "outbound", "Which club?", metadata={"agentFlow": "booking-new"})
        assert entry.log_metadata == {"agentFlow": "booking-new"}


class TestHistory:
    def test_history_is_oldest_first_with_roles(self, db_session):
        rows = [
            SimpleNamespace(direction="outbound", body_redacted="Which club?"),
            SimpleNamespace(direction="inbound", body_redacted="Book a bay"),
        ]
        db_session.query.return_value.filter.return_value.order_by.return_value.limit.return_value.all.return_value = rows

        history = get_recent_history(db_session, uuid4())

        assert history == [
            {"role": "user", "content": "Book a bay"},
            {"role": "assistant", "content": "Which club?"},
        ]


class TestDuplicateDelivery:
    def test_unexpired_marker_is_duplicate(self, db_session):
        db_session.query.return_value.filter.return_value.first.return_value = SimpleNamespace(
            expires_at=NOW + timedelta(seconds=30)
        )

        assert is_duplicate_delivery(db_session, uuid4(), "yes", window_seconds=60, now=NOW) is True
        db_session.execute.assert_not_called()

    def test_first_delivery_records_marker(self, db_session):
        db_session.query.return_value.filter.return_value.first.return_value = None
        db_session.execute.return_value.rowcount = 1

        assert is_duplicate_delivery(db_session, uuid4(), "yes", window_seconds=60, now=NOW) is False
        db_session.execute.assert_called_once()

    def test_lost_insert_race_is_duplicate(self, db_session):
        db_session.query.return_value.filter.return_value.first.return_value = None
        db_session.execute.return_value.rowcount = 0

        assert is_duplicate_delivery(db_session, uuid4(), "yes", window_seconds=60, now=NOW) is True

    def test_expired_marker_is_replaced(self, db_session):
        stale = SimpleNamespace(expires_at=NOW - timedelta(seconds=1))
        db_session.query.return_value.filter.return_value.first.return_value = stale
        db_session.execute.return_value.rowcount = 1

        assert is_duplicate_delivery(db_session, uuid4(), "yes", window_seconds=60, now=NOW) is False
        db_session.delete.assert_called_once_with(stale)

    def test_disabled_window(self, db_session):
        assert is_duplicate_delivery(db_session, uuid4(), "yes", window_seconds=0, now=NOW) is False
        db_session.query.assert_not_called()


class TestDebounce:
    def _last(self, db_session, row):
        db_session.query.return_value.filter.return_value.order_by.return_value.first.return_value = row

    def test_recent_inbound_is_debounced(self, db_session):
        self._last(db_session, SimpleNamespace(direction="inbound", created_at=NOW - timedelta(seconds=5)))
        assert is_debounced(db_session, uuid4(), window_seconds=15, now=NOW) is True

    def test_reply_already_sent(self, db_session):
        self._last(db_session, SimpleNamespace(direction="outbound", created_at=NOW - timedelta(seconds=5)))
        assert is_debounced(db_session, uuid4(), window_seconds=15, now=NOW) is False

    def test_old_inbound(self, db_session):
        self._last(db_session, SimpleNamespace(direction="inbound", created_at=NOW - timedelta(seconds=30)))
        assert is_debounced(db_session, uuid4(), window_seconds=15, now=NOW) is False


class TestMembers:
    def test_normalize_phone_number(self):
        assert normalize_phone_number("whatsapp:+1 555 000 1111") == "+15550001111"

    def test_existing_member(self, db_session):
        member = SimpleNamespace(id=uuid4())
        db_session.query.return_value.filter.return_value.first.return_value = member

        assert get_or_create_member(db_session, "whatsapp:+15550001111", now=NOW) == (member, False)
        db_session.execute.assert_not_called()

    def test_new_member(self, db_session):
        member = SimpleNamespace(id=uuid4())
        db_session.query.return_value.filter.return_value.first.side_effect = [None, member]
        db_session.execute.return_value.rowcount = 1

        assert get_or_create_member(db_session, "+15550001111", now=NOW) == (member, True)

    def test_complete_onboarding(self, db_session):
        member = SimpleNamespace(id=uuid4(), name="Unknown", timezone="Etc/UTC", onboarding_completed_at=None)

        complete_onboarding(db_session, member, name="Alex", timezone_name="Europe/London", favorite_club="Topgolf", now=NOW)

        assert member.name == "Alex"
        assert member.timezone == "Europe/London"
        assert member.favorite_club_label == "Topgolf"
        assert member.onboarding_completed_at == NOW


class TestWhatsApp:
    def test_address_prefix(self):
        assert to_whatsapp_address("+15550001111") == "whatsapp:+15550001111"
        assert to_whatsapp_address("whatsapp:+15550001111") == "whatsapp:+15550001111"

    def test_send_message(self):
        client = MagicMock()
        client.messages.create.return_value = SimpleNamespace(sid="SM42")
        service = WhatsAppService("AC1", "token", "+15551230000", client=client)

        result = service.send_message("+15550001111", "Hello")

        assert result.ok is True
        assert result.message_sid == "SM42"
        client.messages.create.assert_called_once_with(
            body="Hello", from_="whatsapp:+15551230000", to="whatsapp:+15550001111"
        )

    def test_send_failure(self):
        client = MagicMock()
        client.messages.create.side_effect = TwilioRestException(400, "/Messages", msg="Invalid To", code=21211)
        service = WhatsAppService("AC1", "token", "+15551230000", client=client)

        result = service.send_message("+1", "Hello")

        assert result.ok is False
        assert result.error == "21211: Invalid To"

    def test_twiml_reply(self):
        assert "<Message>Which club?</Message>" in build_twiml_reply("Which club?")
        assert "<Message" not in build_twiml_reply(None)
