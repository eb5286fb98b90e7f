import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.orm import Session

from teetime.logging_config import get_logger
from teetime.models import MemberProfile
from teetime.services.messaging_service import strip_whatsapp_prefix

logger = get_logger("member_service")

DEFAULT_MEMBER_NAME = "Unknown"
DEFAULT_TIMEZONE = "Etc/UTC"


def normalize_phone_number(value: str) -> str:
    return strip_whatsapp_prefix(value).replace(" ", "")


def get_or_create_member(db: Session, phone_number: str, now: Optional[datetime] = None) -> tuple[MemberProfile, bool]:
    """Resolve a sender to a member, creating an un-onboarded profile on first contact."""
    now = now or datetime.now(timezone.utc)
    phone_number = normalize_phone_number(phone_number)

    member = db.query(MemberProfile).filter(MemberProfile.phone_number == phone_number).first()
    if member:
        return member, False

    stmt = (
        insert(MemberProfile)
        .values(
            id=uuid.uuid4(),
            phone_number=phone_number,
            name=DEFAULT_MEMBER_NAME,
            timezone=DEFAULT_TIMEZONE,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["phone_number"])
    )
    created = db.execute(stmt).rowcount > 0
    member = db.query(MemberProfile).filter(MemberProfile.phone_number == phone_number).first()
    if created:
        logger.info("Member created", extra={"context": {"member_id": str(member.id)}})
    return member, created


def is_onboarded(member: MemberProfile) -> bool:
    return member.onboarding_completed_at is not None


def complete_onboarding(
    db: Session,
    member: MemberProfile,
    *,
    name: str,
    timezone_name: Optional[str] = None,
    favorite_club: Optional[str] = None,
    favorite_location: Optional[str] = None,
    now: Optional[datetime] = None,
) -> MemberProfile:
    now = now or datetime.now(timezone.utc)
    member.name = name
    if timezone_name:
        member.timezone = timezone_name
    member.favorite_club_label = favorite_club
    member.favorite_location_label = favorite_location
    member.onboarding_completed_at = now
    member.updated_at = now
    db.flush()
    logger.info("Onboarding completed", extra={"context": {"member_id": str(member.id)}})
    return member
