"""Message logging, duplicate-delivery detection and debounce."""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.orm import Session

from teetime.logging_config import get_logger
from teetime.models import MessageDedup, MessageLog
from teetime.services.text_utils import hash_message_body, redact_sensitive_text

logger = get_logger("message_log_service")

HISTORY_LIMIT = 6


def _ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def log_message(
    db: Session,
    member_id,
    direction: str,
    body: str,
    *,
    provider_message_id: Optional[str] = None,
    metadata: Optional[dict] = None,
    profile_name: Optional[str] = None,
    sender: Optional[str] = None,
    channel: str = "whatsapp",
    now: Optional[datetime] = None,
) -> MessageLog:
    """Store a redacted copy of a message.

    Redaction tokens are numbered across the body, the profile name and the
    sender so each one is unique within the log entry.
    """
    now = now or datetime.now(timezone.utc)
    body_result = redact_sensitive_text(body)
    redactions = list(body_result.redactions)
    next_index = body_result.next_index

    log_metadata = dict(metadata or {})
    if profile_name:
        name_result = redact_sensitive_text(profile_name, start_index=next_index)
        log_metadata["profileName"] = name_result.redacted
        redactions.extend(name_result.redactions)
        next_index = name_result.next_index
    if sender:
        sender_result = redact_sensitive_text(sender, start_index=next_index)
        log_metadata["from"] = sender_result.redacted
        redactions.extend(sender_result.redactions)
    if redactions:
        log_metadata["redactions"] = [{"token": item.token, "type": item.type} for item in redactions]

    entry = MessageLog(
        id=uuid.uuid4(),
        member_id=member_id,
        direction=direction,
        channel=channel,
        provider_message_id=provider_message_id,
        body_redacted=body_result.redacted,
        body_hash=hash_message_body(body),
        log_metadata=log_metadata,
        created_at=now,
    )
    db.add(entry)
    db.flush()
    return entry


def get_recent_history(db: Session, member_id, *, limit: int = HISTORY_LIMIT, exclude_id=None) -> list[dict]:
    """Most recent turns as ``{"role", "content"}``, oldest first."""
    query = db.query(MessageLog).filter(MessageLog.member_id == member_id)
    if exclude_id is not None:
        query = query.filter(MessageLog.id != exclude_id)
    rows = query.order_by(MessageLog.created_at.desc()).limit(limit).all()
    return [
        {"role": "user" if row.direction == "inbound" else "assistant", "content": row.body_redacted}
        for row in reversed(rows)
    ]


def is_duplicate_delivery(
    db: Session,
    member_id,
    body: str,
    *,
    window_seconds: int,
    now: Optional[datetime] = None,
) -> bool:
    """Record a dedup marker for this body. True when another delivery already owns it."""
    if window_seconds <= 0:
        return False
    now = now or datetime.now(timezone.utc)
    message_hash = hash_message_body(body)

    existing = (
        db.query(MessageDedup)
        .filter(MessageDedup.member_id == member_id, MessageDedup.message_hash == message_hash)
        .first()
    )
    if existing:
        if _ensure_aware(existing.expires_at) > now:
            logger.info(
                "Duplicate delivery suppressed",
                extra={"context": {"member_id": str(member_id), "message_hash": message_hash}},
            )
            return True
        db.delete(existing)
        db.flush()

    stmt = (
        insert(MessageDedup)
        .values(
            id=uuid.uuid4(),
            member_id=member_id,
            message_hash=message_hash,
            received_at=now,
            expires_at=now + timedelta(seconds=window_seconds),
        )
        .on_conflict_do_nothing(constraint="uq_message_dedup_member_hash")
    )
    result = db.execute(stmt)
    if result.rowcount == 0:
        logger.info(
            "Duplicate delivery lost insert race",
            extra={"context": {"member_id": str(member_id), "message_hash": message_hash}},
        )
        return True
    return False


def is_debounced(db: Session, member_id, *, window_seconds: int, now: Optional[datetime] = None) -> bool:
    """True when the member's latest logged message is an inbound one inside the window."""
    if window_seconds <= 0:
        return False
    now = now or datetime.now(timezone.utc)
    last = (
        db.query(MessageLog)
        .filter(MessageLog.member_id == member_id)
        .order_by(MessageLog.created_at.desc())
        .first()
    )
    if not last or last.direction != "inbound" or last.created_at is None:
        return False
    return now - _ensure_aware(last.created_at) < timedelta(seconds=window_seconds)
