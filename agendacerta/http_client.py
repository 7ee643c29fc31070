from typing import AsyncIterator

import httpx
from fastapi import Depends

from .config import Settings, get_settings


async def get_http_client(settings: Settings = Depends(get_settings)) -> AsyncIterator[httpx.AsyncClient]:
    """One outbound httpx client per request (auth provider and Google calls)"""
    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
        yield client
