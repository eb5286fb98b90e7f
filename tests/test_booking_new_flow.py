from datetime import date
from types import SimpleNamespace
from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest

from conftest import NOW, TOPGOLF, TOPGOLF_AUSTIN, TOPGOLF_DALLAS, FakeDirectory, FakeOracle, make_member
from teetime.config import settings
from teetime.schemas.oracle import BookingFields, ValidationIssue
from teetime.services.booking_service import BayAvailability
from teetime.services.decisions import Ask, AskAlternatives, Clarify, ConfirmDefault, Review, Submitted
from teetime.services.errors import BayUnavailableError, BookingInPastError, ReferenceGenerationError
from teetime.services.flows import booking_new
from teetime.services.flows.common import FlowContext

OPEN = BayAvailability(location_full=False, available_bays=[{"id": "bay-1", "name": "Bay 1"}])
FULL = BayAvailability(location_full=True)

READY_STATE = {
    "club": "Topgolf",
    "club_id": TOPGOLF.id,
    "location": "Austin",
    "location_id": TOPGOLF_AUSTIN.id,
    "location_required": True,
    "date": "2026-10-19",
    "time": "2pm",
    "time_start": "14:00",
    "players": 1,
    "notes": "None",
    "validated": True,
    "awaiting": "review",
}


@pytest.fixture(autouse=True)
def open_bays():
    with patch("teetime.services.flows.booking_new.get_bay_availability", return_value=OPEN) as availability:
        yield availability


def make_ctx(message, *, oracle=None, directory, member=None, shared=None, db=None):
    return FlowContext(
        db=db or MagicMock(),
        member=member or make_member(),
        message=message,
        oracle=oracle or FakeOracle(),
        now=NOW,
        directory=directory,
        shared=shared or {},
    )


def extracting(**fields):
    return FakeOracle(extractions={"BookingFields": BookingFields(**fields)})


class TestBookingIntake:
    def test_full_request_then_confirm_creates_booking(self, directory):
        oracle = extracting(club="Topgolf", date="tomorrow", time="2pm", players=1, notes="none")

        decision = booking_new.run(
            make_ctx("Book Topgolf tomorrow at 2pm for 1 player. Notes: none.", oracle=oracle, directory=directory)
        )

        assert isinstance(decision, Review)
        assert decision.summary == (
            "Please confirm these booking details:\n"
            "Club: Topgolf\n"
            "Location: Austin\n"
            "Bay: -\n"
            "Date: Monday, Oct 19 (2026-10-19)\n"
            "Time: 2pm\n"
            "Players: 1\n"
            "Guests: -\n"
            "Notes: None\n"
            "Reply yes to book it, or tell me what to change."
        )
        assert decision.state["awaiting"] == "review"

        booking = SimpleNamespace(id=uuid4(), status="Pending", booking_reference="TT-7QX2KD")
        db = MagicMock()
        with patch("teetime.services.flows.booking_new.create_booking_with_history", return_value=booking) as create:
            submitted = booking_new.run(make_ctx("yes", directory=directory, db=db), decision.state)

        assert isinstance(submitted, Submitted)
        assert submitted.message == "Your booking request is Pending. Your reference is TT-7QX2KD."
        assert submitted.reference.startswith("TT-")
        assert submitted.status == "Pending"
        request = create.call_args.args[1]
        assert request.club_id == TOPGOLF.id
        assert request.club_location_id == TOPGOLF_AUSTIN.id
        assert request.preferred_date == date(2026, 10, 19)
        assert request.preferred_time_start == "14:00"
        assert request.notes == ""
        db.begin_nested.assert_called_once()

    def test_empty_message(self, directory):
        decision = booking_new.run(make_ctx("  ", directory=directory))
        assert isinstance(decision, Clarify)

    def test_asks_for_club_with_options(self, directory):
        decision = booking_new.run(make_ctx("I want to book a bay", directory=directory))

        assert isinstance(decision, Ask)
        assert decision.field_name == "club"
        assert decision.prompt == "Which club would you like to book? Options: Drive Shack or Topgolf."

    def test_unknown_club(self, directory):
        decision = booking_new.run(make_ctx("Bowlero please", oracle=extracting(club="Bowlero"), directory=directory))

        assert decision.prompt.startswith("I couldn't find that club.")
        assert "club" not in decision.state

    def test_no_active_clubs(self):
        decision = booking_new.run(make_ctx("Topgolf", oracle=extracting(club="Topgolf"), directory=FakeDirectory()))
        assert decision.prompt == booking_new.NO_CLUBS_PROMPT

    def test_club_without_locations_skips_location(self, directory):
        decision = booking_new.run(make_ctx("Drive Shack", oracle=extracting(club="drive shack"), directory=directory))

        assert decision.field_name == "date"
        assert decision.state["club"] == "Drive Shack"
        assert decision.state["location_required"] is False

    def test_several_locations_are_offered(self):
        directory = FakeDirectory(clubs=[TOPGOLF], locations={TOPGOLF.id: [TOPGOLF_AUSTIN, TOPGOLF_DALLAS]})

        decision = booking_new.run(make_ctx("Topgolf", oracle=extracting(club="Topgolf"), directory=directory))

        assert decision.field_name == "location"
        assert decision.prompt == "Which Topgolf location would you like? Options: Austin or Dallas."

    def test_raw_reply_fills_awaited_field(self, directory):
        state = {**READY_STATE, "players": None, "awaiting": "players", "validated": False}

        decision = booking_new.run(make_ctx("3 of us", directory=directory), state)

        assert decision.state["players"] == 3
        assert decision.field_name == "guest_names"

    def test_none_reply_skips_guest_names(self, directory):
        oracle = FakeOracle()
        state = {**READY_STATE, "players": 2, "awaiting": "guest_names"}

        decision = booking_new.run(make_ctx("none", oracle=oracle, directory=directory), state)

        assert isinstance(decision, Review)
        assert decision.state["guest_names"] == "None"
        assert oracle.count("extract") == 0

    def test_past_date_is_rejected(self, directory):
        decision = booking_new.run(
            make_ctx("Topgolf on 2026-10-01", oracle=extracting(club="Topgolf", date="2026-10-01"), directory=directory)
        )

        assert decision.field_name == "date"
        assert decision.prompt == "That date has already passed. What date would you like?"

    def test_invalid_player_count(self, directory):
        state = {**READY_STATE, "players": None, "awaiting": "players"}

        decision = booking_new.run(make_ctx("twelve", oracle=extracting(players=12), directory=directory), state)

        assert decision.field_name == "players"
        assert decision.prompt.startswith("We can book 1-4 players.")

    def test_unbounded_player_count_reasks(self, directory):
        state = {**READY_STATE, "players": None, "awaiting": "players"}

        decision = booking_new.run(make_ctx("infinity", directory=directory), state)

        assert decision.field_name == "players"
        assert decision.prompt.startswith("We can book 1-4 players.")


class TestDefaults:
    def test_favorite_club_is_offered(self, directory):
        member = make_member(favorite_club_label="Topgolf")

        decision = booking_new.run(make_ctx("I'd like a tee time", member=member, directory=directory))

        assert isinstance(decision, ConfirmDefault)
        assert decision.prompt == 'I can default the club to "Topgolf". Would you like to use that?'
        assert decision.state["pending_default"] == {"field": "club", "value": "Topgolf"}

        accepted = booking_new.run(make_ctx("yes", member=member, directory=directory), decision.state)
        assert accepted.state["club_id"] == TOPGOLF.id
        assert accepted.field_name == "date"

    def test_declined_default_is_not_offered_again(self, directory):
        member = make_member(favorite_club_label="Topgolf")
        state = {"pending_default": {"field": "club", "value": "Topgolf"}, "awaiting": "club"}

        decision = booking_new.run(make_ctx("no", member=member, directory=directory), state)

        assert isinstance(decision, Ask)
        assert decision.field_name == "club"
        assert decision.state["declined_defaults"] == ["club"]

    def test_shared_context_defaults(self, directory):
        state = {key: READY_STATE[key] for key in ("club", "club_id", "location", "location_id", "location_required")}

        decision = booking_new.run(make_ctx("let me think", directory=directory, shared={"date": "2026-10-20"}), state)

        assert isinstance(decision, ConfirmDefault)
        assert decision.field_name == "date"
        assert decision.prompt == 'I can use "2026-10-20" as the date. Does that work?'


class TestAvailabilityAndValidation:
    def test_full_location_asks_for_alternatives(self, directory, open_bays):
        open_bays.return_value = FULL
        oracle = extracting(club="Topgolf", date="tomorrow", time="2pm", players=1, notes="none")

        decision = booking_new.run(make_ctx("Topgolf tomorrow 2pm", oracle=oracle, directory=directory))

        assert isinstance(decision, AskAlternatives)
        assert "fully booked" in decision.prompt
        assert "time" not in decision.state

    def test_oracle_validation_issue_reasks_field(self, directory, monkeypatch):
        monkeypatch.setattr(settings, "oracle_validation_enabled", True)
        oracle = FakeOracle(
            extractions={
                "BookingFields": BookingFields(club="Topgolf", date="tomorrow", time="11pm", players=1, notes="none")
            },
            validation=[ValidationIssue(field="time", message="The club closes at 10pm.")],
        )

        decision = booking_new.run(make_ctx("Topgolf tomorrow 11pm", oracle=oracle, directory=directory))

        assert decision.field_name == "time"
        assert decision.prompt == "The club closes at 10pm. What time (or time window) should we request?"
        assert decision.state["validated"] is True

    def test_validation_disabled(self, directory, monkeypatch):
        monkeypatch.setattr(settings, "oracle_validation_enabled", False)
        oracle = extracting(club="Topgolf", date="tomorrow", time="2pm", players=1, notes="none")

        decision = booking_new.run(make_ctx("Topgolf tomorrow 2pm", oracle=oracle, directory=directory))

        assert isinstance(decision, Review)
        assert oracle.count("validate") == 0


class TestSubmitFailures:
    def _submit(self, directory, error, state=None):
        with patch("teetime.services.flows.booking_new.create_booking_with_history", side_effect=error):
            return booking_new.run(make_ctx("yes", directory=directory), state or dict(READY_STATE))

    def test_time_passed_today(self, directory):
        decision = self._submit(directory, BookingInPastError(), {**READY_STATE, "date": "2026-10-18"})
        assert decision.prompt == "That time has already passed today. What time would you like?"
        assert decision.field_name == "time"

    def test_date_passed(self, directory):
        decision = self._submit(directory, BookingInPastError())
        assert decision.field_name == "date"

    def test_bay_taken_between_review_and_submit(self, directory):
        decision = self._submit(directory, BayUnavailableError())
        assert isinstance(decision, AskAlternatives)
        assert decision.state["awaiting"] == "time"

    def test_reference_exhausted(self, directory):
        decision = self._submit(directory, ReferenceGenerationError())
        assert decision.prompt == booking_new.SUBMIT_FAILED_PROMPT
