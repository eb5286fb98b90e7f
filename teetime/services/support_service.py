from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from teetime.logging_config import get_logger
from teetime.models import MemberProfile, SupportRequest
from teetime.services.notification_service import notify_staff

logger = get_logger("support_service")


def create_support_request(
    db: Session, member: MemberProfile, message: str, now: Optional[datetime] = None
) -> SupportRequest:
    now = now or datetime.now(timezone.utc)
    request = SupportRequest(member_id=member.id, message=message, status="open", created_at=now)
    db.add(request)
    db.flush()

    logger.info(
        "Support request created",
        extra={"context": {"support_request_id": str(request.id), "member_id": str(member.id)}},
    )
    notify_staff(db, f"New support request from {member.name} ({member.phone_number}):\n{message}", now=now)
    return request
