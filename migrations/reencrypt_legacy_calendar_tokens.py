"""
Re-encrypt legacy Google Calendar tokens with per-record salts

Tokens written before per-record salts are upgraded lazily when a sync reads
them; this script upgrades every remaining row in one pass. Safe to re-run: a
column is only rewritten if it still holds the legacy value that was read.

Usage: python migrations/reencrypt_legacy_calendar_tokens.py
"""

# Ensure this script can be run directly from repo root or the migrations folder
import logging
import sys
from pathlib import Path
from typing import Callable, Optional

CURRENT_DIR = Path(__file__).resolve().parent
PROJECT_DIR = CURRENT_DIR.parent
if str(PROJECT_DIR) not in sys.path:
    sys.path.insert(0, str(PROJECT_DIR))

from sqlalchemy.orm import Session  # noqa: E402

from agendacerta.config import get_settings  # noqa: E402
from agendacerta.database import SessionLocal  # noqa: E402
from agendacerta.domain.calendar_sync.repository import (  # noqa: E402
    TOKEN_COLUMNS,
    CalendarSyncRepository,
)
from agendacerta.security_utils import mask_identifier  # noqa: E402
from agendacerta.utils.token_cipher import AuthenticationError, TokenCipher  # noqa: E402

logger = logging.getLogger(__name__)


def upgrade(
    session_factory: Callable[[], Session] = SessionLocal,
    cipher: Optional[TokenCipher] = None,
) -> dict[str, int]:
    """
    Returns:
        Counts: upgraded, current (already salted), failed (undecryptable), skipped (changed concurrently)
    """
    cipher = cipher or TokenCipher(get_settings().token_encryption_key)
    counts = {"upgraded": 0, "current": 0, "failed": 0, "skipped": 0}

    db = session_factory()
    try:
        pending = []
        for credential in CalendarSyncRepository.list_credentials(db):
            for column in TOKEN_COLUMNS:
                stored_value = getattr(credential, column)
                try:
                    decrypted = cipher.decrypt_stored(stored_value)
                except AuthenticationError:
                    logger.warning(
                        f"⚠️ Cannot decrypt {column} of credential {mask_identifier(credential.id)}"
                    )
                    counts["failed"] += 1
                    continue

                if not decrypted.legacy:
                    counts["current"] += 1
                    continue
                pending.append((credential.id, column, stored_value, decrypted.plaintext))

        for credential_id, column, stored_value, plaintext in pending:
            replaced = CalendarSyncRepository.replace_token_if_unchanged(
                db, credential_id, column, stored_value, cipher.encrypt(plaintext)
            )
            counts["upgraded" if replaced else "skipped"] += 1
    finally:
        db.close()

    logger.info(
        f"✅ Legacy token migration finished: {counts['upgraded']} upgraded, "
        f"{counts['current']} current, {counts['skipped']} skipped, {counts['failed']} failed"
    )
    return counts


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    try:
        result = upgrade()
    except Exception as e:
        logger.error(f"❌ Migration failed: {type(e).__name__}")
        sys.exit(1)
    sys.exit(1 if result["failed"] else 0)
