import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from teetime.database import Base


class Club(Base):
    __tablename__ = "clubs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(TIMESTAMP(timezone=True))

    locations = relationship("ClubLocation", back_populates="club")


class ClubLocation(Base):
    __tablename__ = "club_locations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    club_id = Column(UUID(as_uuid=True), ForeignKey("clubs.id"), nullable=False)
    name = Column(Text, nullable=False)
    address = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(TIMESTAMP(timezone=True))

    club = relationship("Club", back_populates="locations")
    bays = relationship("ClubLocationBay", back_populates="location")


class ClubLocationBay(Base):
    __tablename__ = "club_location_bays"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    club_location_id = Column(UUID(as_uuid=True), ForeignKey("club_locations.id"), nullable=False)
    name = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="available")  # available, booked, maintenance
    updated_at = Column(TIMESTAMP(timezone=True))

    location = relationship("ClubLocation", back_populates="bays")
