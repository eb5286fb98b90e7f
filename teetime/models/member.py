import uuid

from sqlalchemy import Boolean, Column, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from teetime.database import Base


class MemberProfile(Base):
    __tablename__ = "member_profiles"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    phone_number = Column(Text, nullable=False, unique=True)
    name = Column(Text, nullable=False, default="Unknown")
    timezone = Column(Text, nullable=False, default="Etc/UTC")
    favorite_club_label = Column(Text)
    favorite_location_label = Column(Text)
    onboarding_completed_at = Column(TIMESTAMP(timezone=True))
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False)

    bookings = relationship("Booking", back_populates="member")
