"""Calendar connection service - OAuth connect, callback, disconnect and status"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import Settings
from ...security_utils import mask_identifier
from ...services.google_calendar_service import (
    DEFAULT_CALENDAR_ID,
    GoogleCalendarClient,
    build_authorization_url,
)
from ...utils.token_cipher import ConfigurationError, TokenCipher, TokenCipherError
from .authorization import require_scope_permission, require_venue_member
from .errors import CalendarSyncError, InternalError, NotFound
from .repository import CalendarSyncRepository, ConsumedState
from .resolvers import STATUS_RESOLVERS, CredentialContext, resolve_credential
from .schemas import CalendarStatusResponse, VenueRequest

logger = logging.getLogger(__name__)

OAUTH_STATE_TTL = timedelta(minutes=10)
DEFAULT_EXPIRES_IN = 3600

# Error codes Google sends back on the consent redirect
GOOGLE_OAUTH_ERRORS = frozenset(
    {"access_denied", "invalid_request", "invalid_scope", "server_error", "temporarily_unavailable"}
)


class CalendarConnectionService:
    """Service layer for linking and unlinking Google Calendar credentials"""

    def __init__(
        self,
        db: Session,
        google: GoogleCalendarClient,
        cipher: TokenCipher,
        settings: Settings,
    ):
        self.db = db
        self.google = google
        self.cipher = cipher
        self.settings = settings
        self.repo = CalendarSyncRepository()

    def get_status(self, user_id: str, venue_id: str) -> CalendarStatusResponse:
        """Connection status as seen by this user (personal first, then venue-wide)"""
        require_venue_member(self.db, user_id, venue_id)

        ctx = CredentialContext(venue_id=venue_id, requesting_user_id=user_id)
        try:
            credential = resolve_credential(self.db, ctx, STATUS_RESOLVERS)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Credential lookup failed: {type(e).__name__}")
            raise InternalError() from e

        if not credential:
            return CalendarStatusResponse(connected=False)
        return CalendarStatusResponse(
            connected=True,
            calendar_id=credential.calendar_id or DEFAULT_CALENDAR_ID,
            personal=credential.user_id is not None,
        )

    def start_connect(self, user_id: str, request: VenueRequest) -> str:
        """Store a one-time OAuth state and return Google's consent URL"""
        if not self.settings.google_configured:
            raise ConfigurationError("Google Calendar not configured")

        require_scope_permission(self.db, user_id, request.venue_id, request.personal)

        now = datetime.now(timezone.utc)
        state = secrets.token_urlsafe(32)
        try:
            self.repo.create_oauth_state(
                self.db,
                state=state,
                venue_id=request.venue_id,
                user_id=user_id,
                personal=request.personal,
                expires_at=now + OAUTH_STATE_TTL,
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Error storing OAuth state: {type(e).__name__}")
            raise InternalError("Failed to initiate OAuth flow") from e

        try:
            removed = self.repo.delete_expired_oauth_states(self.db, now)
            if removed:
                logger.info(f"🧹 Cleaned up {removed} expired OAuth states")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(f"⚠️ Failed to clean up expired OAuth states: {type(e).__name__}")

        logger.info(
            f"Google Calendar OAuth initiated for venue {mask_identifier(request.venue_id)}"
        )
        return build_authorization_url(
            self.settings.google_client_id, self.settings.google_redirect_uri, state
        )

    def _settings_redirect(self, **params: str) -> str:
        return f"{self.settings.frontend_base_url}{self.settings.settings_path}?{urlencode(params)}"

    async def complete_callback(self, code: str | None, state: str | None, error: str | None) -> str:
        """
        Handle Google's redirect. Never raises: every outcome is a frontend URL
        carrying google_success or google_error.
        """
        if error:
            # Caller-controlled value: only known Google codes are logged
            logged = error if error in GOOGLE_OAUTH_ERRORS else "unrecognized"
            logger.warning(f"⚠️ OAuth error from Google: {logged}")
            return self._settings_redirect(google_error=error)

        if not code or not state:
            logger.warning("⚠️ OAuth callback missing code or state")
            return self._settings_redirect(google_error="missing_params")

        try:
            oauth_state = self.repo.consume_oauth_state(self.db, state)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to read OAuth state: {type(e).__name__}")
            return self._settings_redirect(google_error="invalid_state")

        if not oauth_state or oauth_state.expires_at < datetime.now(timezone.utc):
            logger.warning("⚠️ OAuth callback with unknown or expired state")
            return self._settings_redirect(google_error="invalid_state")

        try:
            return await self._store_credential(oauth_state, code)
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Unexpected error in OAuth callback: {type(e).__name__}")
            return self._settings_redirect(google_error="unknown")

    async def _store_credential(self, oauth_state: ConsumedState, code: str) -> str:
        try:
            tokens = await self.google.exchange_code(code, self.settings.google_redirect_uri)
        except CalendarSyncError:
            return self._settings_redirect(google_error="token_exchange_failed")

        access_token = tokens["access_token"]
        refresh_token = tokens.get("refresh_token")
        expires_in = int(tokens.get("expires_in") or DEFAULT_EXPIRES_IN)
        calendar_id = await self.google.get_primary_calendar_id(access_token)

        try:
            self.repo.upsert_credential(
                self.db,
                venue_id=oauth_state.venue_id,
                user_id=oauth_state.user_id if oauth_state.personal else None,
                access_token=self.cipher.encrypt(access_token),
                refresh_token=self.cipher.encrypt(refresh_token) if refresh_token else None,
                token_expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
                calendar_id=calendar_id,
            )
        except (SQLAlchemyError, ValueError) as e:
            self.db.rollback()
            logger.error(f"❌ Error saving calendar tokens: {type(e).__name__}")
            return self._settings_redirect(google_error="save_failed")

        logger.info(
            f"✅ Google Calendar connected for venue {mask_identifier(oauth_state.venue_id)}"
        )
        return self._settings_redirect(google_success="true")

    async def disconnect(self, user_id: str, request: VenueRequest) -> None:
        """Revoke at Google (best-effort) and delete the credential row"""
        require_scope_permission(self.db, user_id, request.venue_id, request.personal)

        scope_user_id = user_id if request.personal else None
        try:
            credential = self.repo.get_credential(self.db, request.venue_id, scope_user_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Credential lookup failed: {type(e).__name__}")
            raise InternalError() from e

        if not credential:
            raise NotFound("Google Calendar not connected")

        try:
            access_token = self.cipher.decrypt_stored(credential.access_token).plaintext
            await self.google.revoke_token(access_token)
            logger.info("Token revoked with Google")
        except (TokenCipherError, CalendarSyncError) as e:
            logger.warning(f"⚠️ Token revocation skipped (may already be invalid): {type(e).__name__}")

        try:
            self.repo.delete_credential(self.db, credential)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Error deleting calendar credential: {type(e).__name__}")
            raise InternalError("Failed to disconnect") from e

        logger.info(f"✅ Google Calendar disconnected for venue {mask_identifier(request.venue_id)}")
