"""
Match engine error taxonomy.

Every error carries the HTTP status category it maps to, so routers and the
exception handlers in main.py can render ``{"error": message}`` uniformly.
"""

from fastapi import status


class TartanTripsError(Exception):
    """Base class for all match engine errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(TartanTripsError):
    """Malformed input or a rejected precondition. Raised before any mutation."""

    status_code = status.HTTP_400_BAD_REQUEST


class AuthenticationError(TartanTripsError):
    """Missing or invalid bearer credential."""

    status_code = status.HTTP_401_UNAUTHORIZED


class AuthorizationError(TartanTripsError):
    """Caller does not own a trip it is acting on."""

    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(TartanTripsError):
    """Referenced trip or expected match relationship is absent."""

    status_code = status.HTTP_404_NOT_FOUND


class CapacityExceeded(TartanTripsError):
    """The match slot ceiling would be exceeded."""

    status_code = status.HTTP_409_CONFLICT


class StoreFailure(TartanTripsError):
    """An underlying persistence call failed."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class NotifyFailure(TartanTripsError):
    """Email dispatch failed. Logged, never surfaced past the notifier."""

    status_code = status.HTTP_502_BAD_GATEWAY
