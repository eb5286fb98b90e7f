import uuid

from sqlalchemy import Column, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.sql import func

from teetime.database import Base


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    booking_id = Column(UUID(as_uuid=True), ForeignKey("bookings.id"))
    channel = Column(Text, nullable=False, default="whatsapp")  # whatsapp, slack, email
    template_name = Column(Text, nullable=False)
    recipient = Column(Text)  # staff notices only; member notices resolve the booking's member
    body = Column(Text)  # pre-rendered text for staff notices
    status = Column(Text, nullable=False, default="pending")  # pending, sent, failed
    reason = Column(Text)
    provider_message_id = Column(Text)
    error = Column(Text)
    sent_at = Column(TIMESTAMP(timezone=True))
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())


class ScheduledJob(Base):
    __tablename__ = "scheduled_jobs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    job_type = Column(Text, nullable=False)  # reminder, follow_up, notification
    booking_id = Column(UUID(as_uuid=True), ForeignKey("bookings.id"))
    notification_id = Column(UUID(as_uuid=True), ForeignKey("notifications.id"))
    run_at = Column(TIMESTAMP(timezone=True), nullable=False)
    status = Column(Text, nullable=False, default="pending")  # pending, processing, sent, failed
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
