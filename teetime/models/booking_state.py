from sqlalchemy import Column, ForeignKey
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID

from teetime.database import Base


class BookingState(Base):
    """Persisted flow-state envelope, at most one per member."""

    __tablename__ = "booking_states"

    member_id = Column(UUID(as_uuid=True), ForeignKey("member_profiles.id"), primary_key=True)
    state = Column(JSONB, nullable=False, default=dict)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False)
