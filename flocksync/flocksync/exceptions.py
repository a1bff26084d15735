from __future__ import annotations


class FlockError(Exception):
    """Base class for flocksync errors."""


class ValidationError(FlockError):
    """A required field was empty or malformed; raised before any network call."""


class ApiError(FlockError):
    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class RateLimitedError(ApiError):
    """The REST API answered with HTTP 429."""


class NotConnectedError(FlockError):
    """The realtime socket could not be established."""
