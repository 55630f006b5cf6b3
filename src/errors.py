"""Error taxonomy for the webhook relay."""

from __future__ import annotations

from typing import Any


class RelayError(Exception):
    """Base class for relay errors that map onto an HTTP status."""

    status_code = 500


class ValidationError(RelayError):
    """Bad caller input."""

    status_code = 400


class ConfigurationError(RelayError):
    """A required credential or secret is missing."""

    status_code = 500


class AuthError(RelayError):
    """Webhook signature or timestamp check failed."""

    status_code = 401

    def __init__(self, reason: str, message: str) -> None:
        self.reason = reason
        super().__init__(message)


class UpstreamError(RelayError):
    """The provider rejected or never answered a dispatch."""

    status_code = 500

    def __init__(
        self,
        provider_message: str,
        status_code: int | None = None,
        provider_details: Any = None,
    ) -> None:
        self.provider_message = provider_message
        self.upstream_status = status_code
        self.provider_details = provider_details
        super().__init__(provider_message)


class ForwardingError(RelayError):
    """Callback POST failed. Logged only, never returned to the webhook caller."""


class CallbackShapeError(RelayError):
    """Raised when a callback payload's ``data`` is not a JSON object."""

    def __init__(self, data: object) -> None:
        self.data = data
        super().__init__("invalid-callback-shape")


class NotFoundError(RelayError):
    status_code = 404
