from conftest import FakeOracle
from teetime.schemas.oracle import FlowName, RouterClassification, RouterFlow
from teetime.services.course_correction import (
    DEFAULT_RESTART_PROMPT,
    CourseCorrectionDetector,
    restart_prompt,
)
from teetime.services.flow_state import FlowEnvelope
from teetime.services.intent_service import (
    EMPTY_MESSAGE_PROMPT,
    FALLBACK_PROMPT,
    LOW_CONFIDENCE_PROMPT,
    OFFER_DECLINED_PROMPT,
    route_message,
)


def route(message, *, onboarded=True, envelope=None, oracle=None):
    return route_message(message, onboarded=onboarded, envelope=envelope, oracle=oracle or FakeOracle())


def classified(flow, confidence=0.9):
    return FakeOracle(classification=RouterClassification(flow=flow, confidence=confidence))


BOOKING_IN_PROGRESS = FlowEnvelope(flow="booking-new", data={"club": "Topgolf", "awaiting": "time"})
OFFER = FlowEnvelope(flow="booking-status", data={"offer_booking": True})


class TestRouteMessage:
    def test_empty_message_clarifies(self):
        decision = route("   ")
        assert decision.is_clarify
        assert decision.prompt == EMPTY_MESSAGE_PROMPT

    def test_new_members_are_onboarded_first(self):
        oracle = FakeOracle()
        decision = route("Book Topgolf tomorrow", onboarded=False, oracle=oracle)
        assert decision.flow == FlowName.ONBOARDING
        assert decision.resume is False
        assert oracle.calls == []

    def test_onboarding_resumes(self):
        envelope = FlowEnvelope(flow="onboarding", data={"awaiting": "timezone"})
        assert route("Europe/London", onboarded=False, envelope=envelope).resume is True

    def test_accepting_offer_starts_fresh_booking(self):
        decision = route("yes", envelope=OFFER)
        assert decision.flow == FlowName.BOOKING_NEW
        assert decision.clear_state is True
        assert decision.resume is False

    def test_declining_offer(self):
        decision = route("no thanks", envelope=OFFER)
        assert decision.prompt == OFFER_DECLINED_PROMPT
        assert decision.clear_state is True

    def test_confirmation_resumes_booking(self):
        oracle = FakeOracle()
        decision = route("sounds good", envelope=BOOKING_IN_PROGRESS, oracle=oracle)
        assert decision.flow == FlowName.BOOKING_NEW
        assert decision.resume is True
        assert oracle.count("classify") == 0

    def test_short_answer_resumes_active_flow(self):
        decision = route("2pm", envelope=BOOKING_IN_PROGRESS)
        assert decision.flow == FlowName.BOOKING_NEW
        assert decision.reason == "followup"

    def test_edit_phrase_resumes_booking(self):
        decision = route("Actually make it Friday afternoon with the whole crew", envelope=BOOKING_IN_PROGRESS)
        assert decision.flow == FlowName.BOOKING_NEW
        assert decision.resume is True

    def test_status_question_skips_classifier(self):
        oracle = FakeOracle()
        decision = route("Do I have any bookings this week?", oracle=oracle)
        assert decision.flow == FlowName.BOOKING_STATUS
        assert oracle.count("classify") == 0

    def test_classifier_failure_falls_back(self):
        decision = route("I'd like to do something about my membership")
        assert decision.prompt == FALLBACK_PROMPT
        assert decision.reason == "oracle_timeout"

    def test_low_confidence(self):
        decision = route("hmm what about golf", oracle=classified(RouterFlow.BOOKING_NEW, 0.4))
        assert decision.prompt == LOW_CONFIDENCE_PROMPT

    def test_faq_is_handled_by_support(self):
        decision = route("What are your opening hours on Sunday?", oracle=classified(RouterFlow.FAQ))
        assert decision.flow == FlowName.SUPPORT

    def test_classifier_clarify(self):
        decision = route("hello there friend", oracle=classified(RouterFlow.CLARIFY))
        assert decision.is_clarify
        assert decision.prompt == FALLBACK_PROMPT

    def test_same_flow_resumes(self):
        envelope = FlowEnvelope(flow="cancel-booking", data={"booking_id": "b1"})
        decision = route(
            "I want to cancel my tee time tomorrow morning", envelope=envelope, oracle=classified(RouterFlow.CANCEL_BOOKING)
        )
        assert decision.flow == FlowName.CANCEL_BOOKING
        assert decision.resume is True

    def test_new_intent_switches_flow(self):
        decision = route(
            "Can I cancel the reservation for Friday please", envelope=BOOKING_IN_PROGRESS, oracle=classified(RouterFlow.CANCEL_BOOKING)
        )
        assert decision.flow == FlowName.CANCEL_BOOKING
        assert decision.resume is False


class TestCourseCorrection:
    def test_keyword_gate_skips_oracle(self):
        oracle = FakeOracle(correction=True)
        detector = CourseCorrectionDetector(oracle)

        assert detector.is_correction("2pm works") is False
        assert oracle.calls == []

    def test_correction_is_cached(self):
        oracle = FakeOracle(correction=True)
        detector = CourseCorrectionDetector(oracle)

        assert detector.is_correction("Wait, never mind") is True
        assert detector.is_correction("Wait, never mind") is True
        assert oracle.count("correction") == 1

    def test_negative_verdict_is_cached(self):
        oracle = FakeOracle(correction=False)
        detector = CourseCorrectionDetector(oracle)

        assert detector.is_correction("actually") is False
        assert detector.is_correction("Actually") is False
        assert oracle.count("correction") == 1

    def test_specific_action_request_is_not_a_correction(self):
        oracle = FakeOracle(correction=True)
        detector = CourseCorrectionDetector(oracle)

        assert detector.is_correction("Actually can you book Topgolf for Friday at 3pm instead") is False
        assert oracle.calls == []

    def test_oracle_failure_is_not_cached(self):
        oracle = FakeOracle()
        detector = CourseCorrectionDetector(oracle)

        assert detector.is_correction("scratch that") is False
        assert detector.is_correction("scratch that") is False
        assert oracle.count("correction") == 2

    def test_restart_prompts(self):
        assert restart_prompt("cancel-booking") == "I'll cancel this. How can I help you?"
        assert restart_prompt("support") == DEFAULT_RESTART_PROMPT
        assert restart_prompt(None) == DEFAULT_RESTART_PROMPT
