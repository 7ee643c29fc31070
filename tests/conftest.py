"""
Test configuration and fixtures for pytest.

This module provides shared fixtures used across all tests:
- Test database (SQLite in-memory for speed)
- Fake upstream (auth provider + Google) behind httpx.MockTransport
- Test client (FastAPI TestClient) wired to both
- Sample data factories for venues, bookings and calendar credentials
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("TOKEN_ENCRYPTION_KEY", "test-passphrase")

import base64
import itertools
from datetime import datetime, timedelta, timezone
from typing import Generator, Optional
from urllib.parse import parse_qsl

import httpx
import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from agendacerta.config import Settings, get_settings
from agendacerta.database import Base, get_db, get_session_factory
from agendacerta.http_client import get_http_client
from agendacerta.main import create_app
from agendacerta.models import Booking, Space, Venue, VenueMember
from agendacerta.models_google_calendar import GoogleCalendarToken
from agendacerta.utils.token_cipher import LEGACY_SALT, PBKDF2_ITERATIONS, TokenCipher

PASSPHRASE = "test-passphrase"

# Users known to the fake auth provider
USER_A = "user-a-0000-1111"
USER_B = "user-b-0000-2222"
USER_PRO = "user-p-0000-3333"
TOKEN_A = "jwt-user-a"
TOKEN_B = "jwt-user-b"
TOKEN_PRO = "jwt-user-pro"


# ---------------------------------------------------------------------------
# TEST DATABASE SETUP
# ---------------------------------------------------------------------------
# StaticPool keeps the same connection across all operations

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Fresh database per test function"""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        token_encryption_key=PASSPHRASE,
        google_client_id="client-id",
        google_client_secret="client-secret",
        google_redirect_uri="http://testserver/google-calendar/callback",
        supabase_url="https://auth.example.test",
        supabase_service_role_key="service-role-key",
        frontend_url="https://app.example.test",
        allowed_origins=("https://app.example.test",),
    )


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher(PASSPHRASE)


@pytest.fixture
def legacy_encrypt():
    """Writes the pre-salt format: base64(iv || ciphertext) under the fixed salt"""

    def _encrypt(plaintext: str, passphrase: str = PASSPHRASE) -> str:
        key = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=LEGACY_SALT,
            iterations=PBKDF2_ITERATIONS,
        ).derive(passphrase.encode())
        iv = os.urandom(12)
        return base64.b64encode(iv + AESGCM(key).encrypt(iv, plaintext.encode(), None)).decode()

    return _encrypt


# ---------------------------------------------------------------------------
# FAKE UPSTREAM
# ---------------------------------------------------------------------------


class FakeUpstream:
    """Auth provider + Google OAuth/Calendar endpoints, recording every request"""

    def __init__(self):
        self.users = {
            TOKEN_A: {"id": USER_A, "email": "a@example.com"},
            TOKEN_B: {"id": USER_B, "email": "b@example.com"},
            TOKEN_PRO: {"id": USER_PRO, "email": "pro@example.com"},
        }
        self.requests: list[httpx.Request] = []
        self._event_ids = itertools.count(1)
        self.refresh_status = 200
        self.refresh_payload = {"access_token": "refreshed-access", "expires_in": 3600}
        self.exchange_status = 200
        self.exchange_payload = {
            "access_token": "oauth-access",
            "refresh_token": "oauth-refresh",
            "expires_in": 3599,
        }
        self.primary_calendar_id = "owner@example.com"
        self.primary_calendar_raw: Optional[bytes] = None
        self.create_status = 200
        self.update_status = 200
        self.delete_status = 204
        self.revoke_status = 200

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host, path, method = request.url.host, request.url.path, request.method

        if host == "auth.example.test" and path == "/auth/v1/user":
            token = request.headers.get("authorization", "").removeprefix("Bearer ")
            user = self.users.get(token)
            if not user:
                return httpx.Response(401, json={"msg": "invalid JWT"})
            return httpx.Response(200, json=user)

        if host == "oauth2.googleapis.com" and path == "/token":
            form = dict(parse_qsl(request.content.decode()))
            if form.get("grant_type") == "refresh_token":
                if self.refresh_status != 200:
                    return httpx.Response(self.refresh_status, json={"error": "invalid_grant"})
                return httpx.Response(200, json=self.refresh_payload)
            if self.exchange_status != 200:
                return httpx.Response(self.exchange_status, json={"error": "invalid_grant"})
            return httpx.Response(200, json=self.exchange_payload)

        if host == "oauth2.googleapis.com" and path == "/revoke":
            return httpx.Response(self.revoke_status)

        if host == "www.googleapis.com":
            if method == "GET" and path == "/calendar/v3/calendars/primary":
                if self.primary_calendar_raw is not None:
                    return httpx.Response(200, content=self.primary_calendar_raw)
                return httpx.Response(200, json={"id": self.primary_calendar_id})
            if method == "POST" and path.endswith("/events"):
                if self.create_status not in (200, 201):
                    return httpx.Response(
                        self.create_status, json={"error": {"message": "secret upstream detail"}}
                    )
                return httpx.Response(self.create_status, json={"id": f"evt-{next(self._event_ids)}"})
            if method == "PUT":
                return httpx.Response(self.update_status, json={})
            if method == "DELETE":
                return httpx.Response(self.delete_status)

        return httpx.Response(500, json={"error": "unexpected request"})

    def calls(self, method: str, host: str, path_part: str = "") -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.method == method and r.url.host == host and path_part in r.url.path
        ]

    def token_calls(self, grant_type: str) -> list[httpx.Request]:
        return [
            r
            for r in self.calls("POST", "oauth2.googleapis.com", "/token")
            if dict(parse_qsl(r.content.decode())).get("grant_type") == grant_type
        ]

    def event_calls(self, method: str) -> list[httpx.Request]:
        return self.calls(method, "www.googleapis.com", "/events")


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def http_client(upstream: FakeUpstream) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler))


@pytest.fixture(scope="function")
def client(db: Session, settings: Settings, upstream: FakeUpstream) -> Generator[TestClient, None, None]:
    """Test client with the test database, test settings and the fake upstream"""
    app = create_app(settings)

    def override_get_db():
        try:
            yield db
        finally:
            pass

    async def override_http_client():
        async with httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler)) as http:
            yield http

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_http_client] = override_http_client

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def auth_headers(token: str = TOKEN_A) -> dict:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# DATA FACTORIES
# ---------------------------------------------------------------------------


def add_venue(db: Session, name: str = "Studio Centro") -> Venue:
    venue = Venue(name=name)
    db.add(venue)
    db.commit()
    db.refresh(venue)
    return venue


def add_member(db: Session, venue: Venue, user_id: str, role: str = "staff") -> VenueMember:
    member = VenueMember(venue_id=venue.id, user_id=user_id, role=role)
    db.add(member)
    db.commit()
    db.refresh(member)
    return member


def add_booking(db: Session, venue: Venue, **fields) -> Booking:
    start = datetime(2026, 11, 3, 14, 0, tzinfo=timezone.utc)
    space = fields.pop("space", None)
    if space is None:
        space = Space(venue_id=venue.id, name="Sala 1")
        db.add(space)
        db.commit()
    values = {
        "customer_name": "Maria Souza",
        "customer_phone": "+55 11 99999-0000",
        "customer_email": "maria@example.com",
        "start_time": start,
        "end_time": start + timedelta(hours=1),
        "notes": None,
    }
    values.update(fields)
    booking = Booking(venue_id=venue.id, space_id=space.id, **values)
    db.add(booking)
    db.commit()
    db.refresh(booking)
    return booking


def add_credential(
    db: Session,
    cipher: TokenCipher,
    venue: Venue,
    user_id: Optional[str] = None,
    calendar_id: Optional[str] = None,
    expires_in: timedelta = timedelta(hours=1),
    access_token: str = "stored-access",
    refresh_token: str = "stored-refresh",
    encrypted_access: Optional[str] = None,
    encrypted_refresh: Optional[str] = None,
) -> GoogleCalendarToken:
    credential = GoogleCalendarToken(
        venue_id=venue.id,
        user_id=user_id,
        access_token=encrypted_access or cipher.encrypt(access_token),
        refresh_token=encrypted_refresh or cipher.encrypt(refresh_token),
        token_expires_at=datetime.now(timezone.utc) + expires_in,
        calendar_id=calendar_id,
    )
    db.add(credential)
    db.commit()
    db.refresh(credential)
    return credential
