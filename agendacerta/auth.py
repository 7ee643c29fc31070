import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import Settings, get_settings
from .domain.calendar_sync.errors import Unauthorized
from .http_client import get_http_client
from .security_utils import mask_identifier

logger = logging.getLogger(__name__)

# auto_error=False: a missing header is reported as 401 by get_current_identity
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthenticatedUser:
    id: str
    email: Optional[str] = None


async def resolve_identity(
    token: str, http_client: httpx.AsyncClient, settings: Settings
) -> AuthenticatedUser:
    """
    Resolve a user JWT to an identity through the auth provider
    (GET {SUPABASE_URL}/auth/v1/user).

    Raises:
        Unauthorized: the provider rejected the token or could not be reached
    """
    if not settings.supabase_url or not settings.supabase_service_role_key:
        logger.error("❌ SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY not configured")
        raise Unauthorized()

    try:
        response = await http_client.get(
            f"{settings.supabase_url.rstrip('/')}/auth/v1/user",
            headers={
                "Authorization": f"Bearer {token}",
                "apikey": settings.supabase_service_role_key,
            },
        )
    except httpx.HTTPError as e:
        logger.error(f"❌ Auth provider unreachable: {type(e).__name__}")
        raise Unauthorized() from e

    if response.status_code != 200:
        logger.warning(f"⚠️ Token rejected by auth provider: HTTP {response.status_code}")
        raise Unauthorized()

    try:
        payload = response.json()
    except ValueError as e:
        logger.error("❌ Auth provider returned an invalid body")
        raise Unauthorized() from e

    user_id = payload.get("id") if isinstance(payload, dict) else None
    if not user_id:
        logger.error("❌ Auth provider response missing user id")
        raise Unauthorized()

    logger.debug(f"✅ User authenticated: {mask_identifier(user_id)}")
    return AuthenticatedUser(id=user_id, email=payload.get("email"))


async def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    settings: Settings = Depends(get_settings),
) -> AuthenticatedUser:
    """Current user from the Authorization: Bearer header"""
    if not credentials or not credentials.credentials:
        logger.warning("⚠️ No authorization header provided")
        raise Unauthorized("No authorization header")

    return await resolve_identity(credentials.credentials, http_client, settings)
