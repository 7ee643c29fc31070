"""Calendar sync service - Business logic for pushing bookings to Google Calendar"""

import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import Settings
from ...models import Booking
from ...models_google_calendar import GoogleCalendarToken
from ...security_utils import mask_identifier
from ...services.google_calendar_service import DEFAULT_CALENDAR_ID, GoogleCalendarClient
from .authorization import require_venue_member
from .errors import InternalError, NotFound
from .repository import CalendarSyncRepository, as_utc
from .resolvers import SYNC_RESOLVERS, CredentialContext, resolve_credential
from .schemas import SyncAction, SyncRequest, SyncResult
from .token_refresh import TokenRefresher

logger = logging.getLogger(__name__)

NOT_CONNECTED = "not_connected"
DEFAULT_SPACE_NAME = "Space"
DEFAULT_VENUE_NAME = "Venue"


def _isoformat(value: datetime) -> str:
    return as_utc(value).isoformat()


def build_event_payload(booking: Booking, time_zone: str) -> dict:
    """Google Calendar event body for a booking"""
    space_name = booking.space.name if booking.space and booking.space.name else DEFAULT_SPACE_NAME
    venue_name = booking.venue.name if booking.venue and booking.venue.name else DEFAULT_VENUE_NAME

    description_lines = []
    if booking.customer_phone:
        description_lines.append(f"Phone: {booking.customer_phone}")
    if booking.customer_email:
        description_lines.append(f"Email: {booking.customer_email}")
    if booking.notes:
        description_lines.append(f"Notes: {booking.notes}")

    return {
        "summary": f"{booking.customer_name} - {space_name}",
        "description": "\n".join(description_lines),
        "location": venue_name,
        "start": {"dateTime": _isoformat(booking.start_time), "timeZone": time_zone},
        "end": {"dateTime": _isoformat(booking.end_time), "timeZone": time_zone},
    }


class CalendarSyncService:
    """
    Runs one sync request through:
    authorize venue -> resolve booking -> resolve credential -> refresh token -> action

    Actions are dispatched through TRANSITIONS, keyed by the requested action and
    whether the booking already has a Google event.
    """

    def __init__(
        self,
        db: Session,
        google: GoogleCalendarClient,
        refresher: TokenRefresher,
        settings: Settings,
    ):
        self.db = db
        self.google = google
        self.refresher = refresher
        self.settings = settings
        self.repo = CalendarSyncRepository()

    async def sync(self, user_id: str, request: SyncRequest) -> SyncResult:
        logger.info(
            f"📅 Sync request - action: {request.action.value}, "
            f"booking: {mask_identifier(request.booking_id)}, "
            f"venue: {mask_identifier(request.venue_id)}, user: {mask_identifier(user_id)}"
        )

        # Membership is checked before any booking data is read
        require_venue_member(self.db, user_id, request.venue_id)

        booking = self.get_booking(request.booking_id, request.venue_id)
        credential = self.resolve_credential(booking, user_id)
        if credential is None:
            logger.info(f"ℹ️ No Google Calendar connected for venue {mask_identifier(request.venue_id)}")
            return SyncResult(synced=False, reason=NOT_CONNECTED)

        access_token = await self.refresher.get_valid_access_token(credential)
        calendar_id = credential.calendar_id or DEFAULT_CALENDAR_ID

        transition = self.TRANSITIONS[(request.action, bool(booking.google_event_id))]
        return await transition(self, access_token, calendar_id, booking)

    def get_booking(self, booking_id: str, venue_id: str) -> Booking:
        try:
            booking = self.repo.get_booking_for_venue(self.db, booking_id, venue_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Booking lookup failed: {type(e).__name__}")
            raise InternalError() from e

        if not booking:
            logger.warning(
                f"⚠️ Booking {mask_identifier(booking_id)} not found in venue {mask_identifier(venue_id)}"
            )
            raise NotFound()
        return booking

    def resolve_credential(self, booking: Booking, user_id: str) -> Optional[GoogleCalendarToken]:
        ctx = CredentialContext(
            venue_id=booking.venue_id,
            requesting_user_id=user_id,
            professional_id=booking.professional_id,
        )
        try:
            return resolve_credential(self.db, ctx, SYNC_RESOLVERS)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Credential lookup failed: {type(e).__name__}")
            raise InternalError() from e

    def _save_event_id(self, booking: Booking, event_id: Optional[str]) -> None:
        try:
            self.repo.set_google_event_id(self.db, booking, event_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                f"❌ Failed to save event id on booking {mask_identifier(booking.id)}: {type(e).__name__}"
            )
            raise InternalError() from e

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _create(self, access_token: str, calendar_id: str, booking: Booking) -> SyncResult:
        event = build_event_payload(booking, self.settings.calendar_timezone)
        event_id = await self.google.create_event(access_token, calendar_id, event)
        self._save_event_id(booking, event_id)
        logger.info(f"✅ Google Calendar event created for booking {mask_identifier(booking.id)}")
        return SyncResult(synced=True, event_id=event_id)

    async def _update(self, access_token: str, calendar_id: str, booking: Booking) -> SyncResult:
        event = build_event_payload(booking, self.settings.calendar_timezone)
        await self.google.update_event(access_token, calendar_id, booking.google_event_id, event)
        logger.info(f"✅ Google Calendar event updated for booking {mask_identifier(booking.id)}")
        return SyncResult(synced=True, event_id=booking.google_event_id)

    async def _delete(self, access_token: str, calendar_id: str, booking: Booking) -> SyncResult:
        await self.google.delete_event(access_token, calendar_id, booking.google_event_id)
        self._save_event_id(booking, None)
        logger.info(f"✅ Google Calendar event deleted for booking {mask_identifier(booking.id)}")
        return SyncResult(synced=True)

    async def _skip(self, access_token: str, calendar_id: str, booking: Booking) -> SyncResult:
        return SyncResult(synced=False)

    TRANSITIONS: dict[
        tuple[SyncAction, bool],
        Callable[["CalendarSyncService", str, str, Booking], Awaitable[SyncResult]],
    ] = {
        (SyncAction.CREATE, False): _create,
        (SyncAction.CREATE, True): _create,
        (SyncAction.UPDATE, True): _update,
        # Never-synced booking: an update creates the event
        (SyncAction.UPDATE, False): _create,
        (SyncAction.DELETE, True): _delete,
        (SyncAction.DELETE, False): _skip,
    }
