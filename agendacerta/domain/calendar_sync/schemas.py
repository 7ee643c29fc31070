"""Calendar sync schemas - Pydantic models for validation"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class SyncAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SyncRequest(BaseModel):
    """Body of POST /google-calendar/sync"""

    action: SyncAction
    booking_id: str = Field(..., min_length=1)
    venue_id: str = Field(..., min_length=1)


class SyncResult(BaseModel):
    synced: bool
    event_id: Optional[str] = None
    reason: Optional[str] = None


class VenueRequest(BaseModel):
    """Body of /google-calendar/connect and /google-calendar/disconnect"""

    venue_id: str = Field(..., min_length=1)
    personal: bool = False


class ConnectResponse(BaseModel):
    auth_url: str


class CalendarStatusResponse(BaseModel):
    connected: bool
    calendar_id: Optional[str] = None
    personal: Optional[bool] = None
