"""
Token refresh for calendar credentials

Decrypts stored tokens (scheduling a background re-encryption for legacy values),
and renews the access token through Google when it expires within 5 minutes.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from fastapi import BackgroundTasks
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models_google_calendar import GoogleCalendarToken
from ...security_utils import mask_identifier
from ...services.google_calendar_service import GoogleCalendarClient
from ...utils.token_cipher import TokenCipher
from .errors import InternalError
from .repository import CalendarSyncRepository, as_utc

logger = logging.getLogger(__name__)

REFRESH_MARGIN = timedelta(minutes=5)
DEFAULT_EXPIRES_IN = 3600  # seconds, when Google omits expires_in


def upgrade_legacy_token(
    session_factory: Callable[[], Session],
    cipher: TokenCipher,
    credential_id: str,
    column: str,
    stored_value: str,
    plaintext: str,
) -> bool:
    """
    Re-encrypt a legacy token with a fresh salt and write it back.

    Runs detached from the request: failures are logged and reported as False,
    the next request reading the same legacy value retries. The write only lands
    if the column still holds `stored_value`.
    """
    db: Optional[Session] = None
    try:
        new_value = cipher.encrypt(plaintext)
        db = session_factory()
        replaced = CalendarSyncRepository.replace_token_if_unchanged(
            db, credential_id, column, stored_value, new_value
        )
        if replaced:
            logger.info(f"🔐 Upgraded legacy {column} for credential {mask_identifier(credential_id)}")
        else:
            logger.info(
                f"ℹ️ Skipped legacy {column} upgrade for credential "
                f"{mask_identifier(credential_id)}: value changed"
            )
        return replaced
    except Exception as e:
        logger.error(
            f"⚠️ Legacy {column} upgrade failed for credential "
            f"{mask_identifier(credential_id)}: {type(e).__name__}"
        )
        if db is not None:
            db.rollback()
        return False
    finally:
        if db is not None:
            db.close()


class LegacyTokenUpgrader:
    """Queues `upgrade_legacy_token` as a background task (runs after the response)"""

    def __init__(
        self,
        background_tasks: BackgroundTasks,
        session_factory: Callable[[], Session],
        cipher: TokenCipher,
    ):
        self.background_tasks = background_tasks
        self.session_factory = session_factory
        self.cipher = cipher

    def schedule(self, credential_id: str, column: str, stored_value: str, plaintext: str) -> None:
        self.background_tasks.add_task(
            upgrade_legacy_token,
            self.session_factory,
            self.cipher,
            credential_id,
            column,
            stored_value,
            plaintext,
        )


class TokenRefresher:
    """Produces a usable Google access token for a stored credential"""

    def __init__(
        self,
        db: Session,
        cipher: TokenCipher,
        google: GoogleCalendarClient,
        upgrader: Optional[LegacyTokenUpgrader] = None,
    ):
        self.db = db
        self.cipher = cipher
        self.google = google
        self.upgrader = upgrader

    def decrypt_token(self, credential: GoogleCalendarToken, column: str) -> str:
        stored_value = getattr(credential, column)
        decrypted = self.cipher.decrypt_stored(stored_value)
        if decrypted.legacy and self.upgrader is not None:
            self.upgrader.schedule(credential.id, column, stored_value, decrypted.plaintext)
        return decrypted.plaintext

    async def get_valid_access_token(self, credential: GoogleCalendarToken) -> str:
        """
        Get a valid access token, refreshing if it expires within REFRESH_MARGIN.

        Raises:
            AuthenticationError: a stored token failed decryption
            UpstreamAuthError: Google rejected the refresh token
            InternalError: refreshed tokens could not be saved
        """
        access_token = self.decrypt_token(credential, "access_token")
        refresh_token = self.decrypt_token(credential, "refresh_token")

        now = datetime.now(timezone.utc)
        if as_utc(credential.token_expires_at) - now > REFRESH_MARGIN:
            return access_token

        logger.info(f"🔄 Refreshing access token for venue {mask_identifier(credential.venue_id)}")
        tokens = await self.google.refresh_access_token(refresh_token)

        new_access_token = tokens["access_token"]
        rotated_refresh_token = tokens.get("refresh_token")
        expires_in = int(tokens.get("expires_in") or DEFAULT_EXPIRES_IN)

        try:
            CalendarSyncRepository.update_tokens(
                self.db,
                credential,
                access_token=self.cipher.encrypt(new_access_token),
                token_expires_at=now + timedelta(seconds=expires_in),
                refresh_token=(
                    self.cipher.encrypt(rotated_refresh_token) if rotated_refresh_token else None
                ),
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to save refreshed tokens: {type(e).__name__}")
            raise InternalError() from e

        logger.info("✅ Google Calendar token refreshed successfully")
        return new_access_token
