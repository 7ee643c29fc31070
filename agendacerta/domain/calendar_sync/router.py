"""Calendar sync router - FastAPI endpoint for booking -> Google Calendar sync"""

import logging
from typing import Callable

import httpx
from fastapi import APIRouter, BackgroundTasks, Depends, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ...auth import AuthenticatedUser, get_current_identity
from ...config import Settings, get_settings
from ...database import get_db, get_session_factory
from ...http_client import get_http_client
from ...security_utils import get_token_cipher
from ...services.google_calendar_service import GoogleCalendarClient
from ...utils.token_cipher import TokenCipher, TokenCipherError
from .errors import BadRequest, CalendarSyncError, InternalError
from .schemas import SyncRequest, SyncResult
from .service import CalendarSyncService
from .token_refresh import LegacyTokenUpgrader, TokenRefresher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/google-calendar", tags=["google-calendar"])

REQUIRED_FIELDS = ("action", "booking_id", "venue_id")


def get_google_client(
    http_client: httpx.AsyncClient = Depends(get_http_client),
    settings: Settings = Depends(get_settings),
) -> GoogleCalendarClient:
    """Dependency injection for GoogleCalendarClient"""
    return GoogleCalendarClient(http_client, settings.google_client_id, settings.google_client_secret)


def get_calendar_sync_service(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    google: GoogleCalendarClient = Depends(get_google_client),
    cipher: TokenCipher = Depends(get_token_cipher),
    settings: Settings = Depends(get_settings),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
) -> CalendarSyncService:
    """Dependency injection for CalendarSyncService"""
    # Error handlers attach these to their response, so upgrades also run when the sync fails
    request.state.background_tasks = background_tasks
    upgrader = LegacyTokenUpgrader(background_tasks, session_factory, cipher)
    refresher = TokenRefresher(db, cipher, google, upgrader)
    return CalendarSyncService(db, google, refresher, settings)


async def parse_sync_request(request: Request) -> SyncRequest:
    try:
        body = await request.json()
    except ValueError as e:
        raise BadRequest("Invalid JSON body") from e

    if not isinstance(body, dict) or not all(body.get(field) for field in REQUIRED_FIELDS):
        raise BadRequest()

    try:
        return SyncRequest.model_validate(body)
    except ValidationError as e:
        raise BadRequest("Invalid parameters") from e


@router.post("/sync", response_model=SyncResult, response_model_exclude_none=True)
async def sync_booking(
    request: Request,
    current_user: AuthenticatedUser = Depends(get_current_identity),
    service: CalendarSyncService = Depends(get_calendar_sync_service),
):
    """Create, update or delete the Google Calendar event for a booking"""
    sync_request = await parse_sync_request(request)

    try:
        return await service.sync(current_user.id, sync_request)
    except (CalendarSyncError, TokenCipherError):
        raise
    except Exception as e:
        logger.error(f"❌ Sync error: {type(e).__name__}")
        raise InternalError() from e
