import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./agendacerta.db")

# Public base URL of this API (used to build the OAuth redirect URI)
API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000")

# Default CORS allow-list, extended with FRONTEND_URL when set
DEFAULT_ALLOWED_ORIGINS = "https://agendacertaa.lovable.app,http://localhost:5173,http://localhost:8080"


def _split_origins(raw: str, frontend_url: Optional[str]) -> tuple[str, ...]:
    origins = [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]
    if frontend_url and frontend_url.rstrip("/") not in origins:
        origins.append(frontend_url.rstrip("/"))
    return tuple(origins)


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, read once from the environment at startup."""

    token_encryption_key: Optional[str]
    google_client_id: Optional[str]
    google_client_secret: Optional[str]
    google_redirect_uri: str
    supabase_url: Optional[str]
    supabase_service_role_key: Optional[str]
    frontend_url: Optional[str]
    allowed_origins: tuple[str, ...]
    calendar_timezone: str = "America/Sao_Paulo"
    settings_path: str = "/configuracoes"
    http_timeout_seconds: float = 15.0

    @property
    def google_configured(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)

    @property
    def frontend_base_url(self) -> str:
        # Redirect target after the OAuth callback
        if self.frontend_url:
            return self.frontend_url.rstrip("/")
        return self.allowed_origins[0] if self.allowed_origins else API_BASE_URL

    @classmethod
    def from_env(cls) -> "Settings":
        frontend_url = os.getenv("FRONTEND_URL")
        return cls(
            # Security - CRITICAL: no default encryption key, token operations fail without it
            token_encryption_key=os.getenv("TOKEN_ENCRYPTION_KEY"),
            # Google Calendar OAuth Configuration
            google_client_id=os.getenv("GOOGLE_CLIENT_ID"),
            google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET"),
            google_redirect_uri=os.getenv(
                "GOOGLE_REDIRECT_URI", f"{API_BASE_URL}/google-calendar/callback"
            ),
            # Auth provider (Supabase) - the service role key is never sent to clients
            supabase_url=os.getenv("SUPABASE_URL"),
            supabase_service_role_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY"),
            frontend_url=frontend_url,
            allowed_origins=_split_origins(
                os.getenv("ALLOWED_ORIGINS", DEFAULT_ALLOWED_ORIGINS), frontend_url
            ),
            calendar_timezone=os.getenv("CALENDAR_TIMEZONE", "America/Sao_Paulo"),
            settings_path=os.getenv("SETTINGS_PATH", "/configuracoes"),
            http_timeout_seconds=float(os.getenv("HTTP_TIMEOUT_SECONDS", "15")),
        )


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
