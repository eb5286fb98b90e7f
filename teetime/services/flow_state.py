"""Per-member flow-state envelopes.

An envelope wraps one flow's private state together with the shared
context (club, location, date, time, players) that carries across flows.
Only the enveloped shape is written or read. Rows written before envelopes
existed are rewritten in place by ``upgrade_legacy_flow_state``, which the
agent calls explicitly when ``FLOW_STATE_LEGACY_UPGRADE`` is on.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.orm import Session

from teetime.config import settings
from teetime.logging_config import get_logger
from teetime.models import BookingState

logger = get_logger("flow_state")

ENVELOPE_VERSION = 1
LEGACY_FLOW = "booking-new"
LEGACY_SHARED_KEY = "sharedBookingContext"

SHARED_CONTEXT_KEYS = ("club", "location", "date", "time", "players")


@dataclass
class FlowEnvelope:
    flow: str
    data: dict = field(default_factory=dict)
    shared: dict = field(default_factory=dict)
    updated_at: Optional[datetime] = None

    def to_json(self) -> dict:
        payload = {"version": ENVELOPE_VERSION, "flow": self.flow, "data": self.data}
        if self.shared:
            payload["shared"] = self.shared
        return payload


def is_envelope(raw) -> bool:
    return isinstance(raw, dict) and isinstance(raw.get("flow"), str) and isinstance(raw.get("data"), dict)


def migrate_legacy_state(raw) -> Optional[FlowEnvelope]:
    """Read a pre-envelope row as new-booking state.

    Older rows stored the new-booking fields at the top level with the
    shared context under ``sharedBookingContext``.
    """
    if not isinstance(raw, dict) or not raw or is_envelope(raw):
        return None
    data = dict(raw)
    shared = data.pop(LEGACY_SHARED_KEY, None)
    return FlowEnvelope(
        flow=LEGACY_FLOW,
        data=compact_state(data),
        shared=compact_state(shared) if isinstance(shared, dict) else {},
    )


def compact_state(state: Optional[dict]) -> dict:
    return {key: value for key, value in (state or {}).items() if value is not None}


def merge_shared_context(existing: Optional[dict], updates: Optional[dict]) -> dict:
    """New keys win; a ``None`` value removes the key."""
    merged = dict(existing or {})
    for key, value in (updates or {}).items():
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = value
    return merged


def _ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_expired(updated_at: Optional[datetime], now: datetime, ttl_minutes: Optional[int] = None) -> bool:
    ttl = settings.booking_state_ttl_minutes if ttl_minutes is None else ttl_minutes
    if ttl <= 0 or updated_at is None:
        return False
    return now - _ensure_aware(updated_at) > timedelta(minutes=ttl)


def lock_member_state(db: Session, member_id: UUID) -> None:
    """Serialize envelope read-modify-write per member until the transaction ends."""
    db.execute(text("SELECT pg_advisory_xact_lock(hashtext(:member_key))"), {"member_key": str(member_id)})


def get_flow_state(db: Session, member_id: UUID, now: Optional[datetime] = None) -> Optional[FlowEnvelope]:
    now = now or datetime.now(timezone.utc)
    row = db.query(BookingState).filter(BookingState.member_id == member_id).first()
    if not row:
        return None

    if is_expired(row.updated_at, now):
        logger.info(
            "Flow state expired",
            extra={"context": {"member_id": str(member_id), "updated_at": row.updated_at}},
        )
        db.delete(row)
        db.flush()
        return None

    raw = row.state
    if is_envelope(raw):
        shared = raw.get("shared")
        return FlowEnvelope(
            flow=raw["flow"],
            data=dict(raw["data"]),
            shared=dict(shared) if isinstance(shared, dict) else {},
            updated_at=row.updated_at,
        )

    logger.warning("Ignoring non-envelope flow state", extra={"context": {"member_id": str(member_id)}})
    return None


def upgrade_legacy_flow_state(db: Session, member_id: UUID) -> bool:
    """Rewrite a pre-envelope row as a new-booking envelope. Returns True if a row changed.

    ``updated_at`` is kept so the upgraded row still expires on schedule.
    """
    row = db.query(BookingState).filter(BookingState.member_id == member_id).first()
    if row is None or is_envelope(row.state):
        return False
    envelope = migrate_legacy_state(row.state)
    if envelope is None:
        return False
    row.state = envelope.to_json()
    db.flush()
    logger.info("Upgraded legacy flow state", extra={"context": {"member_id": str(member_id)}})
    return True


def save_flow_state(
    db: Session,
    member_id: UUID,
    flow: str,
    data: dict,
    shared_updates: Optional[dict] = None,
    *,
    existing_shared: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> FlowEnvelope:
    now = now or datetime.now(timezone.utc)
    row = db.query(BookingState).filter(BookingState.member_id == member_id).first()
    if existing_shared is None and row is not None and is_envelope(row.state):
        existing_shared = row.state.get("shared")

    envelope = FlowEnvelope(
        flow=flow,
        data=compact_state(data),
        shared=merge_shared_context(existing_shared if isinstance(existing_shared, dict) else None, shared_updates),
        updated_at=now,
    )

    if row:
        row.state = envelope.to_json()
        row.updated_at = now
    else:
        db.add(BookingState(member_id=member_id, state=envelope.to_json(), created_at=now, updated_at=now))
    db.flush()
    return envelope


def clear_flow_state(db: Session, member_id: UUID) -> None:
    db.query(BookingState).filter(BookingState.member_id == member_id).delete()
    db.flush()


def shared_from_fields(fields: dict) -> dict:
    """Cross-flow keys a flow has resolved. Unresolved keys are left out so earlier context survives."""
    return {key: fields[key] for key in SHARED_CONTEXT_KEYS if fields.get(key) is not None}
