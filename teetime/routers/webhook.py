"""Twilio WhatsApp webhooks.

Inbound deliveries pass the signature check, then the dedup and debounce
gates, are logged (redacted) and committed before the agent runs, and are
always answered with TwiML. Failures after the signature check are answered
with an apology reply, never an HTTP error.
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import PlainTextResponse, Response
from pydantic import ValidationError
from sqlalchemy.orm import Session
from twilio.request_validator import RequestValidator

from teetime.config import settings
from teetime.database import get_db
from teetime.logging_config import LoggerAdapter, get_logger
from teetime.schemas.webhook import TwilioInboundMessage, TwilioStatusCallback
from teetime.services.agent_service import ConversationAgent, get_agent
from teetime.services.member_service import get_or_create_member
from teetime.services.message_log_service import (
    get_recent_history,
    is_debounced,
    is_duplicate_delivery,
    log_message,
)
from teetime.services.messaging_service import build_twiml_reply
from teetime.services.notification_service import mark_provider_failure
from teetime.services.text_utils import hash_message_body

logger = get_logger("webhook")

router = APIRouter()

APOLOGY_MESSAGE = "Sorry, something went wrong. Please try again or contact us directly."
FAILED_DELIVERY_STATUSES = {"failed", "undelivered"}
TWIML_MEDIA_TYPE = "application/xml"


def _signed_url(request: Request) -> str:
    """URL Twilio signed; rebuilt from PUBLIC_BASE_URL when running behind a proxy."""
    if not settings.public_base_url:
        return str(request.url)
    url = settings.public_base_url.rstrip("/") + request.url.path
    if request.url.query:
        url += f"?{request.url.query}"
    return url


async def _read_verified_form(request: Request) -> dict:
    auth_token = settings.twilio_auth_token
    if not auth_token:
        logger.error("Twilio auth token not configured")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook not configured")

    try:
        form = await request.form()
    except Exception as exc:
        logger.warning("Unreadable webhook form", extra={"context": {"error": str(exc)}})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid form body") from exc
    params = {key: value for key, value in form.items() if isinstance(value, str)}

    signature = request.headers.get("X-Twilio-Signature", "")
    if not signature or not RequestValidator(auth_token).validate(_signed_url(request), params, signature):
        logger.warning("Invalid Twilio signature", extra={"context": {"path": request.url.path}})
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid signature")
    return params


def _twiml(text: Optional[str]) -> Response:
    return Response(content=build_twiml_reply(text), media_type=TWIML_MEDIA_TYPE)


def process_inbound_message(
    db: Session,
    agent: ConversationAgent,
    inbound: TwilioInboundMessage,
    now: Optional[datetime] = None,
) -> Optional[str]:
    """Run one delivery through the gates and the agent. Returns the reply text, or None to stay silent."""
    now = now or datetime.now(timezone.utc)
    member, created = get_or_create_member(db, inbound.from_number, now)
    request_logger = LoggerAdapter(
        logger,
        {"member_id": str(member.id), "message_sid": inbound.message_sid, "body_hash": hash_message_body(inbound.body)},
    )
    if created:
        request_logger.info("First contact from new member")

    if is_duplicate_delivery(db, member.id, inbound.body, window_seconds=settings.message_dedup_window_seconds, now=now):
        db.commit()
        request_logger.info("Duplicate delivery acknowledged")
        return None

    if is_debounced(db, member.id, window_seconds=settings.debounce_window_seconds, now=now):
        log_message(
            db,
            member.id,
            "inbound",
            inbound.body,
            provider_message_id=inbound.message_sid,
            metadata={"debounced": True},
            profile_name=inbound.profile_name,
            sender=inbound.from_number,
            now=now,
        )
        db.commit()
        request_logger.info("Debounced inbound message")
        return None

    inbound_log = log_message(
        db,
        member.id,
        "inbound",
        inbound.body,
        provider_message_id=inbound.message_sid,
        profile_name=inbound.profile_name,
        sender=inbound.from_number,
        now=now,
    )
    db.commit()
    request_logger = request_logger.bind(message_log_id=str(inbound_log.id))

    history = get_recent_history(db, member.id, exclude_id=inbound_log.id)
    reply = agent.handle_message(
        db,
        member,
        inbound.body,
        history=history,
        profile_name=inbound.profile_name,
        now=now,
    )
    log_message(
        db,
        member.id,
        "outbound",
        reply.text,
        metadata={"inReplyTo": inbound.message_sid, "agentFlow": reply.flow, "decision": reply.kind},
        now=now,
    )
    db.commit()
    request_logger.info("Reply ready", context={"flow": reply.flow, "decision": reply.kind})
    return reply.text


@router.get("/webhook/whatsapp", response_class=PlainTextResponse)
async def whatsapp_webhook_active():
    return "WhatsApp webhook is active"


@router.post("/webhook/whatsapp")
async def whatsapp_webhook(
    request: Request,
    db: Session = Depends(get_db),
    agent: ConversationAgent = Depends(get_agent),
):
    params = await _read_verified_form(request)
    try:
        inbound = TwilioInboundMessage.model_validate(params)
    except ValidationError as exc:
        logger.warning("Webhook form missing fields", extra={"context": {"errors": exc.errors()}})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook payload") from exc

    try:
        reply = process_inbound_message(db, agent, inbound)
    except Exception as exc:
        db.rollback()
        logger.error(
            "Webhook processing failed",
            extra={"context": {"message_sid": inbound.message_sid, "error": str(exc)}},
            exc_info=True,
        )
        reply = APOLOGY_MESSAGE
    return _twiml(reply)


@router.post("/webhook/whatsapp/status", status_code=status.HTTP_204_NO_CONTENT)
async def whatsapp_status_callback(request: Request, db: Session = Depends(get_db)):
    params = await _read_verified_form(request)
    try:
        callback = TwilioStatusCallback.model_validate(params)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status payload") from exc

    logger.info(
        "Delivery status",
        extra={
            "context": {
                "message_sid": callback.message_sid,
                "message_status": callback.message_status,
                "error_code": callback.error_code,
            }
        },
    )
    if (callback.message_status or "").lower() in FAILED_DELIVERY_STATUSES:
        error = callback.error_code or callback.message_status
        if callback.error_message:
            error = f"{error}: {callback.error_message}"
        if mark_provider_failure(db, callback.message_sid, error):
            db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
