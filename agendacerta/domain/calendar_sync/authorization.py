"""Venue authorization checks - the tenant isolation boundary for calendar operations"""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...security_utils import mask_identifier
from .errors import Forbidden, InternalError
from .repository import CalendarSyncRepository

logger = logging.getLogger(__name__)


def require_venue_member(db: Session, user_id: str, venue_id: str) -> None:
    """
    Raises:
        Forbidden: user is not a member of the venue
        InternalError: the membership lookup itself failed
    """
    try:
        is_member = CalendarSyncRepository.is_venue_member(db, user_id, venue_id)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ Error checking venue membership: {type(e).__name__}")
        raise InternalError("Failed to verify permissions") from e

    if not is_member:
        logger.warning(
            f"🚫 User {mask_identifier(user_id)} is not a member of venue {mask_identifier(venue_id)}"
        )
        raise Forbidden()


def require_venue_admin(db: Session, user_id: str, venue_id: str) -> None:
    try:
        is_admin = CalendarSyncRepository.is_venue_admin(db, user_id, venue_id)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ Error checking venue admin role: {type(e).__name__}")
        raise InternalError("Failed to verify permissions") from e

    if not is_admin:
        logger.warning(
            f"🚫 User {mask_identifier(user_id)} is not an admin of venue {mask_identifier(venue_id)}"
        )
        raise Forbidden()


def require_scope_permission(db: Session, user_id: str, venue_id: str, personal: bool) -> None:
    """Personal calendars need membership; venue-wide calendars need an admin"""
    if personal:
        require_venue_member(db, user_id, venue_id)
    else:
        require_venue_admin(db, user_id, venue_id)
