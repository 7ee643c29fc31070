import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base

# Roles allowed to manage venue-wide integrations
VENUE_ADMIN_ROLES = ("admin", "superadmin")


def generate_id():
    """Generate a UUID primary key"""
    return str(uuid.uuid4())


class Venue(Base):
    __tablename__ = "venues"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    members = relationship("VenueMember", back_populates="venue")
    spaces = relationship("Space", back_populates="venue")


class VenueMember(Base):
    __tablename__ = "venue_members"
    __table_args__ = (UniqueConstraint("venue_id", "user_id", name="uq_venue_members_venue_user"),)

    id = Column(String(36), primary_key=True, default=generate_id)
    venue_id = Column(String(36), ForeignKey("venues.id"), nullable=False, index=True)
    user_id = Column(String(36), nullable=False, index=True)  # auth provider user id
    role = Column(String(20), nullable=False, default="staff")  # admin, manager, staff, superadmin
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    venue = relationship("Venue", back_populates="members")


class Space(Base):
    __tablename__ = "spaces"

    id = Column(String(36), primary_key=True, default=generate_id)
    venue_id = Column(String(36), ForeignKey("venues.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)

    venue = relationship("Venue", back_populates="spaces")


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=generate_id)
    venue_id = Column(String(36), ForeignKey("venues.id"), nullable=False, index=True)
    space_id = Column(String(36), ForeignKey("spaces.id"), nullable=True)
    professional_id = Column(String(36), ForeignKey("venue_members.id"), nullable=True)
    customer_name = Column(String(255), nullable=False)
    customer_phone = Column(String(50), nullable=True)
    customer_email = Column(String(255), nullable=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    notes = Column(Text, nullable=True)

    # Google Calendar integration fields
    google_event_id = Column(String(500), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    venue = relationship("Venue")
    space = relationship("Space")
    professional = relationship("VenueMember")


class OAuthState(Base):
    """Server-side OAuth state issued by /google-calendar/connect"""

    __tablename__ = "oauth_states"

    id = Column(String(36), primary_key=True, default=generate_id)
    state = Column(String(128), unique=True, nullable=False, index=True)
    venue_id = Column(String(36), ForeignKey("venues.id"), nullable=False)
    user_id = Column(String(36), nullable=False)
    personal = Column(Boolean, nullable=False, default=False)  # credential scoped to user_id
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
