"""
Google Calendar Integration Routes
Handles OAuth connection, disconnection and connection status
"""

import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from ..auth import AuthenticatedUser, get_current_identity
from ..config import Settings, get_settings
from ..database import get_db
from ..domain.calendar_sync.connection import CalendarConnectionService
from ..domain.calendar_sync.router import get_google_client
from ..domain.calendar_sync.schemas import CalendarStatusResponse, ConnectResponse, VenueRequest
from ..security_utils import get_token_cipher
from ..services.google_calendar_service import GoogleCalendarClient
from ..utils.token_cipher import TokenCipher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/google-calendar", tags=["google-calendar"])


def get_connection_service(
    db: Session = Depends(get_db),
    google: GoogleCalendarClient = Depends(get_google_client),
    cipher: TokenCipher = Depends(get_token_cipher),
    settings: Settings = Depends(get_settings),
) -> CalendarConnectionService:
    """Dependency injection for CalendarConnectionService"""
    return CalendarConnectionService(db, google, cipher, settings)


@router.get("/status", response_model=CalendarStatusResponse, response_model_exclude_none=True)
async def get_google_calendar_status(
    venue_id: str = Query(..., min_length=1),
    current_user: AuthenticatedUser = Depends(get_current_identity),
    service: CalendarConnectionService = Depends(get_connection_service),
):
    """Get Google Calendar connection status for a venue"""
    return service.get_status(current_user.id, venue_id)


@router.post("/connect", response_model=ConnectResponse)
async def initiate_google_calendar_oauth(
    body: VenueRequest,
    current_user: AuthenticatedUser = Depends(get_current_identity),
    service: CalendarConnectionService = Depends(get_connection_service),
):
    """Initiate Google Calendar OAuth flow"""
    return ConnectResponse(auth_url=service.start_connect(current_user.id, body))


@router.get("/callback")
async def handle_google_calendar_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    service: CalendarConnectionService = Depends(get_connection_service),
):
    """Google redirects here after consent; always answers with a redirect to the frontend"""
    redirect_url = await service.complete_callback(code, state, error)
    return RedirectResponse(url=redirect_url, status_code=302)


@router.post("/disconnect")
async def disconnect_google_calendar(
    body: VenueRequest,
    current_user: AuthenticatedUser = Depends(get_current_identity),
    service: CalendarConnectionService = Depends(get_connection_service),
):
    """Disconnect Google Calendar integration"""
    await service.disconnect(current_user.id, body)
    return {"success": True}
