"""
Domain exceptions shared across modules.

Routers do not translate these by hand; main.create_app registers an
exception handler per class.
"""

from typing import Any


class VetcallError(Exception):
    """Base class for application errors."""


class NotFoundError(VetcallError):
    """Requested entity does not exist."""


class ConfigurationError(VetcallError):
    """Required configuration is missing or invalid."""


class UpstreamError(VetcallError):
    """A remote provider (voice API, durable queue, email API) failed."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        provider_response: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.provider_response = provider_response or {}


class SchedulingError(VetcallError):
    """Scheduling a delayed job failed.

    ``user_message`` is safe to return to API callers. ``upstream`` is True
    when the cause was the durable queue rather than the request itself.
    """

    def __init__(self, user_message: str, upstream: bool = False) -> None:
        super().__init__(user_message)
        self.user_message = user_message
        self.upstream = upstream
