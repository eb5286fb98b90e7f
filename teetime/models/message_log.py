import uuid

from sqlalchemy import Column, ForeignKey, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID

from teetime.database import Base


class MessageLog(Base):
    __tablename__ = "message_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    member_id = Column(UUID(as_uuid=True), ForeignKey("member_profiles.id"), nullable=False)
    direction = Column(Text, nullable=False)  # inbound, outbound
    channel = Column(Text, nullable=False, default="whatsapp")
    provider_message_id = Column(Text)
    body_redacted = Column(Text, nullable=False)
    body_hash = Column(Text)
    log_metadata = Column("metadata", JSONB, nullable=False, default=dict)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)


class MessageDedup(Base):
    __tablename__ = "message_dedup"
    __table_args__ = (UniqueConstraint("member_id", "message_hash", name="uq_message_dedup_member_hash"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    member_id = Column(UUID(as_uuid=True), ForeignKey("member_profiles.id"), nullable=False)
    message_hash = Column(Text, nullable=False)
    received_at = Column(TIMESTAMP(timezone=True), nullable=False)
    expires_at = Column(TIMESTAMP(timezone=True), nullable=False)
