"""Calendar sync repository - Database operations for bookings, memberships and credentials"""

from datetime import datetime, timezone
from typing import NamedTuple, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session, joinedload

from ...models import VENUE_ADMIN_ROLES, Booking, OAuthState, VenueMember
from ...models_google_calendar import GoogleCalendarToken

# Columns the legacy upgrade is allowed to rewrite
TOKEN_COLUMNS = ("access_token", "refresh_token")


class ConsumedState(NamedTuple):
    venue_id: str
    user_id: str
    personal: bool
    expires_at: datetime


def as_utc(value: datetime) -> datetime:
    """Stored timestamps are UTC; some drivers (SQLite) return them naive"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CalendarSyncRepository:
    """Repository for calendar sync database operations"""

    # ------------------------------------------------------------------
    # Memberships
    # ------------------------------------------------------------------

    @staticmethod
    def is_venue_member(db: Session, user_id: str, venue_id: str) -> bool:
        member = (
            db.query(VenueMember.id)
            .filter(VenueMember.user_id == user_id, VenueMember.venue_id == venue_id)
            .first()
        )
        return member is not None

    @staticmethod
    def is_venue_admin(db: Session, user_id: str, venue_id: str) -> bool:
        member = (
            db.query(VenueMember.id)
            .filter(
                VenueMember.user_id == user_id,
                VenueMember.venue_id == venue_id,
                VenueMember.role.in_(VENUE_ADMIN_ROLES),
            )
            .first()
        )
        return member is not None

    @staticmethod
    def get_member_user_id(db: Session, venue_id: str, member_id: str) -> Optional[str]:
        """Auth user linked to a venue member (bookings.professional_id points here)"""
        row = (
            db.query(VenueMember.user_id)
            .filter(VenueMember.id == member_id, VenueMember.venue_id == venue_id)
            .first()
        )
        return row.user_id if row else None

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------

    @staticmethod
    def get_booking_for_venue(db: Session, booking_id: str, venue_id: str) -> Optional[Booking]:
        """Booking by id AND venue in one query, with space and venue names loaded"""
        return (
            db.query(Booking)
            .options(joinedload(Booking.space), joinedload(Booking.venue))
            .filter(Booking.id == booking_id, Booking.venue_id == venue_id)
            .first()
        )

    @staticmethod
    def set_google_event_id(db: Session, booking: Booking, event_id: Optional[str]) -> None:
        booking.google_event_id = event_id
        db.commit()

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    @staticmethod
    def get_credential(
        db: Session, venue_id: str, user_id: Optional[str]
    ) -> Optional[GoogleCalendarToken]:
        """Credential for (venue, user); user_id=None selects the venue-wide row"""
        query = db.query(GoogleCalendarToken).filter(GoogleCalendarToken.venue_id == venue_id)
        if user_id is None:
            query = query.filter(GoogleCalendarToken.user_id.is_(None))
        else:
            query = query.filter(GoogleCalendarToken.user_id == user_id)
        return query.first()

    @staticmethod
    def update_tokens(
        db: Session,
        credential: GoogleCalendarToken,
        access_token: str,
        token_expires_at: datetime,
        refresh_token: Optional[str] = None,
    ) -> None:
        """Persist refreshed (already encrypted) tokens on this credential row only"""
        credential.access_token = access_token
        credential.token_expires_at = token_expires_at
        if refresh_token:
            credential.refresh_token = refresh_token
        db.commit()

    @staticmethod
    def replace_token_if_unchanged(
        db: Session, credential_id: str, column: str, expected: str, new_value: str
    ) -> bool:
        """
        Compare-and-swap one token column.

        Returns False when the stored value no longer equals `expected`
        (for example a refresh already replaced it).
        """
        if column not in TOKEN_COLUMNS:
            raise ValueError(f"Not a token column: {column}")
        target = getattr(GoogleCalendarToken, column)
        result = db.execute(
            update(GoogleCalendarToken)
            .where(GoogleCalendarToken.id == credential_id, target == expected)
            .values({column: new_value})
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount == 1

    @staticmethod
    def upsert_credential(
        db: Session,
        venue_id: str,
        user_id: Optional[str],
        access_token: str,
        refresh_token: Optional[str],
        token_expires_at: datetime,
        calendar_id: Optional[str],
    ) -> GoogleCalendarToken:
        """Create or replace the credential for (venue, user); tokens already encrypted"""
        credential = CalendarSyncRepository.get_credential(db, venue_id, user_id)
        if credential:
            credential.access_token = access_token
            if refresh_token:
                credential.refresh_token = refresh_token
            credential.token_expires_at = token_expires_at
            credential.calendar_id = calendar_id
        else:
            if not refresh_token:
                raise ValueError("A new calendar credential requires a refresh token")
            credential = GoogleCalendarToken(
                venue_id=venue_id,
                user_id=user_id,
                access_token=access_token,
                refresh_token=refresh_token,
                token_expires_at=token_expires_at,
                calendar_id=calendar_id,
            )
            db.add(credential)
        db.commit()
        db.refresh(credential)
        return credential

    @staticmethod
    def delete_credential(db: Session, credential: GoogleCalendarToken) -> None:
        db.delete(credential)
        db.commit()

    @staticmethod
    def list_credentials(db: Session) -> list[GoogleCalendarToken]:
        return db.query(GoogleCalendarToken).order_by(GoogleCalendarToken.created_at).all()

    # ------------------------------------------------------------------
    # OAuth states
    # ------------------------------------------------------------------

    @staticmethod
    def create_oauth_state(
        db: Session, state: str, venue_id: str, user_id: str, personal: bool, expires_at: datetime
    ) -> OAuthState:
        oauth_state = OAuthState(
            state=state,
            venue_id=venue_id,
            user_id=user_id,
            personal=personal,
            expires_at=expires_at,
        )
        db.add(oauth_state)
        db.commit()
        return oauth_state

    @staticmethod
    def consume_oauth_state(db: Session, state: str) -> Optional[ConsumedState]:
        """Fetch and delete a state row; a state is valid for one callback only"""
        oauth_state = db.query(OAuthState).filter(OAuthState.state == state).first()
        if not oauth_state:
            return None
        consumed = ConsumedState(
            venue_id=oauth_state.venue_id,
            user_id=oauth_state.user_id,
            personal=bool(oauth_state.personal),
            expires_at=as_utc(oauth_state.expires_at),
        )
        db.delete(oauth_state)
        db.commit()
        return consumed

    @staticmethod
    def delete_expired_oauth_states(db: Session, now: datetime) -> int:
        deleted = (
            db.query(OAuthState)
            .filter(OAuthState.expires_at < now)
            .delete(synchronize_session=False)
        )
        db.commit()
        return deleted
