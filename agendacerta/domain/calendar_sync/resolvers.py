"""
Credential resolution for calendar sync

Each resolver looks for one kind of credential and returns None when it has
nothing to offer; `resolve_credential` walks them in priority order and stops at
the first match.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from sqlalchemy.orm import Session

from ...models_google_calendar import GoogleCalendarToken
from ...security_utils import mask_identifier
from .repository import CalendarSyncRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CredentialContext:
    venue_id: str
    requesting_user_id: str
    professional_id: Optional[str] = None


CredentialResolver = Callable[[Session, CredentialContext], Optional[GoogleCalendarToken]]


def professional_credential(db: Session, ctx: CredentialContext) -> Optional[GoogleCalendarToken]:
    """Credential of the user linked to the booking's professional"""
    if not ctx.professional_id:
        return None
    user_id = CalendarSyncRepository.get_member_user_id(db, ctx.venue_id, ctx.professional_id)
    if not user_id:
        return None
    return CalendarSyncRepository.get_credential(db, ctx.venue_id, user_id)


def requesting_user_credential(
    db: Session, ctx: CredentialContext
) -> Optional[GoogleCalendarToken]:
    return CalendarSyncRepository.get_credential(db, ctx.venue_id, ctx.requesting_user_id)


def venue_credential(db: Session, ctx: CredentialContext) -> Optional[GoogleCalendarToken]:
    """Venue-wide (user_id IS NULL) credential"""
    return CalendarSyncRepository.get_credential(db, ctx.venue_id, None)


SYNC_RESOLVERS: tuple[CredentialResolver, ...] = (
    professional_credential,
    requesting_user_credential,
    venue_credential,
)

STATUS_RESOLVERS: tuple[CredentialResolver, ...] = (
    requesting_user_credential,
    venue_credential,
)


def resolve_credential(
    db: Session,
    ctx: CredentialContext,
    resolvers: Sequence[CredentialResolver] = SYNC_RESOLVERS,
) -> Optional[GoogleCalendarToken]:
    """First credential returned by `resolvers`, in order"""
    for resolver in resolvers:
        credential = resolver(db, ctx)
        if credential is not None:
            logger.debug(
                f"Calendar credential resolved by {resolver.__name__} "
                f"for venue {mask_identifier(ctx.venue_id)}"
            )
            return credential
    return None
