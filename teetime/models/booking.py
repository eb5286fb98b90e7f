import uuid

from sqlalchemy import Column, Date, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from teetime.database import Base


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    member_id = Column(UUID(as_uuid=True), ForeignKey("member_profiles.id"), nullable=False)
    club_id = Column(UUID(as_uuid=True), ForeignKey("clubs.id"), nullable=False)
    club_location_id = Column(UUID(as_uuid=True), ForeignKey("club_locations.id"))
    bay_id = Column(UUID(as_uuid=True), ForeignKey("club_location_bays.id"))
    booking_reference = Column(Text, nullable=False, unique=True)
    preferred_date = Column(Date, nullable=False)
    preferred_time_start = Column(Text, nullable=False)  # HH:MM
    preferred_time_end = Column(Text)
    number_of_players = Column(Integer, nullable=False)
    guest_names = Column(Text, nullable=False, default="")
    notes = Column(Text, nullable=False, default="")
    status = Column(Text, nullable=False, default="Pending")
    staff_member_id = Column(UUID(as_uuid=True))
    cancelled_at = Column(TIMESTAMP(timezone=True))
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False)

    member = relationship("MemberProfile", back_populates="bookings")
    history = relationship("BookingStatusHistory", back_populates="booking")


class BookingStatusHistory(Base):
    __tablename__ = "booking_status_history"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    booking_id = Column(UUID(as_uuid=True), ForeignKey("bookings.id"), nullable=False)
    previous_status = Column(Text, nullable=False)
    next_status = Column(Text, nullable=False)
    changed_by_staff_id = Column(UUID(as_uuid=True))
    reason = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)

    booking = relationship("Booking", back_populates="history")
