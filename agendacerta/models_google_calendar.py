"""
Google Calendar Integration Models
"""
from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text, UniqueConstraint, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base
from .models import generate_id


class GoogleCalendarToken(Base):
    __tablename__ = "google_calendar_tokens"
    __table_args__ = (
        UniqueConstraint("venue_id", "user_id", name="uq_calendar_tokens_venue_user"),
        # NULL user_id rows are not covered by the constraint above
        Index(
            "uq_calendar_tokens_venue_shared",
            "venue_id",
            unique=True,
            postgresql_where=text("user_id IS NULL"),
            sqlite_where=text("user_id IS NULL"),
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    venue_id = Column(String(36), ForeignKey("venues.id"), nullable=False, index=True)
    user_id = Column(String(36), nullable=True)  # NULL = venue-wide credential

    # OAuth tokens (encrypted, see utils.token_cipher)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    token_expires_at = Column(DateTime(timezone=True), nullable=False)

    calendar_id = Column(String(500), nullable=True)  # NULL = "primary"

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    venue = relationship("Venue")
