"""
Tests for the legacy calendar token backfill migration
"""

import base64

from agendacerta.models_google_calendar import GoogleCalendarToken
from migrations.reencrypt_legacy_calendar_tokens import upgrade

from tests.conftest import TestingSessionLocal, add_credential, add_venue


def test_backfill_upgrades_only_legacy_values(db, cipher, legacy_encrypt):
    venue = add_venue(db)
    current = add_credential(db, cipher, venue, user_id=None)
    current_access = current.access_token
    legacy = add_credential(
        db,
        cipher,
        venue,
        user_id="legacy-user",
        encrypted_access=legacy_encrypt("short"),
        encrypted_refresh=legacy_encrypt("1//0g-a-legacy-refresh-token-of-realistic-size"),
    )

    counts = upgrade(session_factory=TestingSessionLocal, cipher=cipher)

    assert counts == {"upgraded": 2, "current": 2, "failed": 0, "skipped": 0}
    db.expire_all()
    upgraded = db.get(GoogleCalendarToken, legacy.id)
    assert cipher.decrypt(upgraded.access_token) == "short"
    assert cipher.decrypt(upgraded.refresh_token) == "1//0g-a-legacy-refresh-token-of-realistic-size"
    assert db.get(GoogleCalendarToken, current.id).access_token == current_access


def test_backfill_is_rerunnable(db, cipher, legacy_encrypt):
    add_credential(db, cipher, add_venue(db), encrypted_access=legacy_encrypt("short"))

    upgrade(session_factory=TestingSessionLocal, cipher=cipher)
    counts = upgrade(session_factory=TestingSessionLocal, cipher=cipher)

    assert counts == {"upgraded": 0, "current": 2, "failed": 0, "skipped": 0}


def test_backfill_reports_undecryptable_values(db, cipher):
    garbage = base64.b64encode(b"g" * 64).decode()
    credential = add_credential(db, cipher, add_venue(db), encrypted_access=garbage)

    counts = upgrade(session_factory=TestingSessionLocal, cipher=cipher)

    assert counts["failed"] == 1
    assert counts["current"] == 1
    db.expire_all()
    assert db.get(GoogleCalendarToken, credential.id).access_token == garbage
