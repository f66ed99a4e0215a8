from typing import Optional


class PortalError(Exception):
    """Base class for recoverable portal errors shown to the user."""

    status_code = 400

    def __init__(self, message: str, data: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.data = data or {}


class ValidationError(PortalError):
    """A form field is missing or invalid."""

    status_code = 422

    def __init__(self, errors: dict):
        super().__init__("Please correct the highlighted fields", {"errors": errors})
        self.errors = errors


class AuthFailed(PortalError):
    status_code = 401


class NotFound(PortalError):
    status_code = 404


class NotRegistered(PortalError):
    status_code = 409


class NotWaitlisted(PortalError):
    status_code = 409


class EventFull(PortalError):
    """Raised when a promotion would take an event over capacity."""

    status_code = 409


class RedirectRequired(Exception):
    """Raised by the route guard; rendered as a redirect, not an error."""

    def __init__(self, location: str):
        super().__init__(location)
        self.location = location
