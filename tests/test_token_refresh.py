"""
Tests for access token refresh and the legacy token upgrade
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from agendacerta.domain.calendar_sync.errors import UpstreamAuthError
from agendacerta.domain.calendar_sync.repository import as_utc
from agendacerta.domain.calendar_sync.token_refresh import TokenRefresher, upgrade_legacy_token
from agendacerta.models_google_calendar import GoogleCalendarToken
from agendacerta.services.google_calendar_service import GoogleCalendarClient

from tests.conftest import TestingSessionLocal, add_credential, add_venue


@pytest.fixture
def google(http_client):
    return GoogleCalendarClient(http_client, "client-id", "client-secret")


# ---------------------------------------------------------------------------
# REFRESH GATING
# ---------------------------------------------------------------------------


class TestGetValidAccessToken:
    @pytest.mark.asyncio
    async def test_token_valid_for_ten_minutes_is_used_as_is(self, db, cipher, google, upstream):
        credential = add_credential(
            db, cipher, add_venue(db), expires_in=timedelta(minutes=10), access_token="still-good"
        )

        token = await TokenRefresher(db, cipher, google).get_valid_access_token(credential)

        assert token == "still-good"
        assert upstream.token_calls("refresh_token") == []

    @pytest.mark.asyncio
    async def test_token_expiring_in_two_minutes_is_refreshed(self, db, cipher, google, upstream):
        credential = add_credential(db, cipher, add_venue(db), expires_in=timedelta(minutes=2))

        token = await TokenRefresher(db, cipher, google).get_valid_access_token(credential)

        assert token == "refreshed-access"
        assert len(upstream.token_calls("refresh_token")) == 1

        db.refresh(credential)
        assert credential.access_token != "refreshed-access"
        assert cipher.decrypt(credential.access_token) == "refreshed-access"
        assert cipher.decrypt(credential.refresh_token) == "stored-refresh"
        assert as_utc(credential.token_expires_at) > datetime.now(timezone.utc) + timedelta(minutes=55)

    @pytest.mark.asyncio
    async def test_rotated_refresh_token_is_stored(self, db, cipher, google, upstream):
        upstream.refresh_payload = {
            "access_token": "refreshed-access",
            "refresh_token": "rotated-refresh",
            "expires_in": 3600,
        }
        credential = add_credential(db, cipher, add_venue(db), expires_in=timedelta(seconds=-30))

        await TokenRefresher(db, cipher, google).get_valid_access_token(credential)

        db.refresh(credential)
        assert cipher.decrypt(credential.refresh_token) == "rotated-refresh"

    @pytest.mark.asyncio
    async def test_rejected_refresh_token(self, db, cipher, google, upstream):
        upstream.refresh_status = 400
        credential = add_credential(db, cipher, add_venue(db), expires_in=timedelta(minutes=1))
        stored_access = credential.access_token

        with pytest.raises(UpstreamAuthError):
            await TokenRefresher(db, cipher, google).get_valid_access_token(credential)

        db.refresh(credential)
        assert credential.access_token == stored_access

    @pytest.mark.asyncio
    async def test_refresh_only_touches_its_own_row(self, db, cipher, google):
        venue = add_venue(db)
        target = add_credential(db, cipher, venue, expires_in=timedelta(minutes=1))
        bystander = add_credential(db, cipher, venue, user_id="someone-else")
        bystander_access = bystander.access_token

        await TokenRefresher(db, cipher, google).get_valid_access_token(target)

        db.refresh(bystander)
        assert bystander.access_token == bystander_access

    @pytest.mark.asyncio
    async def test_legacy_tokens_are_scheduled_for_upgrade(self, db, cipher, google, legacy_encrypt):
        legacy_access = legacy_encrypt("legacy-access")
        legacy_refresh = legacy_encrypt("legacy-refresh")
        credential = add_credential(
            db,
            cipher,
            add_venue(db),
            encrypted_access=legacy_access,
            encrypted_refresh=legacy_refresh,
        )
        upgrader = MagicMock()

        token = await TokenRefresher(db, cipher, google, upgrader).get_valid_access_token(credential)

        assert token == "legacy-access"
        scheduled = {call.args[1]: call.args for call in upgrader.schedule.call_args_list}
        assert scheduled["access_token"] == (credential.id, "access_token", legacy_access, "legacy-access")
        assert scheduled["refresh_token"] == (
            credential.id,
            "refresh_token",
            legacy_refresh,
            "legacy-refresh",
        )

    @pytest.mark.asyncio
    async def test_current_tokens_are_not_scheduled(self, db, cipher, google):
        credential = add_credential(db, cipher, add_venue(db))
        upgrader = MagicMock()

        await TokenRefresher(db, cipher, google, upgrader).get_valid_access_token(credential)

        upgrader.schedule.assert_not_called()


# ---------------------------------------------------------------------------
# LEGACY UPGRADE
# ---------------------------------------------------------------------------


class TestUpgradeLegacyToken:
    def test_upgrade_writes_salted_value(self, db, cipher, legacy_encrypt):
        legacy_value = legacy_encrypt("legacy-access")
        credential = add_credential(db, cipher, add_venue(db), encrypted_access=legacy_value)

        assert upgrade_legacy_token(
            TestingSessionLocal, cipher, credential.id, "access_token", legacy_value, "legacy-access"
        )

        db.refresh(credential)
        result = cipher.decrypt_stored(credential.access_token)
        assert result.plaintext == "legacy-access"
        assert result.legacy is False

    def test_upgrade_skips_when_value_changed(self, db, cipher, legacy_encrypt):
        legacy_value = legacy_encrypt("legacy-access")
        credential = add_credential(db, cipher, add_venue(db), access_token="fresh-from-refresh")
        current_value = credential.access_token

        assert not upgrade_legacy_token(
            TestingSessionLocal, cipher, credential.id, "access_token", legacy_value, "legacy-access"
        )

        db.refresh(credential)
        assert credential.access_token == current_value

    def test_upgrade_failure_is_swallowed(self, cipher):
        def broken_factory():
            raise RuntimeError("database unavailable")

        assert not upgrade_legacy_token(
            broken_factory, cipher, "cred-id", "access_token", "old", "plaintext"
        )

    def test_upgrade_rejects_other_columns(self, db, cipher):
        credential = add_credential(db, cipher, add_venue(db))

        assert not upgrade_legacy_token(
            TestingSessionLocal, cipher, credential.id, "calendar_id", "x", "y"
        )
        assert db.get(GoogleCalendarToken, credential.id).calendar_id is None
