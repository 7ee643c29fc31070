"""Calendar sync errors - each maps to an HTTP status and a short public message"""


class CalendarSyncError(Exception):
    """Base class; `message` is safe to return to the caller"""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequest(CalendarSyncError):
    status_code = 400
    default_message = "Missing required parameters"


class Unauthorized(CalendarSyncError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(CalendarSyncError):
    status_code = 403
    default_message = "Not authorized for this venue"


class NotFound(CalendarSyncError):
    status_code = 404
    default_message = "Booking not found"


class UpstreamAuthError(CalendarSyncError):
    """Google refused the refresh token"""

    default_message = "Calendar sync failed"


class UpstreamError(CalendarSyncError):
    """Google Calendar API call failed"""

    default_message = "Calendar sync failed"


class InternalError(CalendarSyncError):
    """Own persistence layer failed"""
