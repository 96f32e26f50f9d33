"""Exception types raised by the sync/cache layer and mapped to HTTP codes by the routes."""

from __future__ import annotations


class SyncGuestyError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(SyncGuestyError):
    """A required credential or secret is missing."""


class UnknownPropertyError(SyncGuestyError, KeyError):
    """A property key or Guesty listing id is not in the catalog."""

    def __init__(self, property_key: str):
        super().__init__(property_key)
        self.property_key = property_key

    def __str__(self) -> str:
        return f"Unknown property: {self.property_key}"


class UpstreamError(SyncGuestyError):
    """
    The Guesty API answered with an error or an unusable body.

    Attributes:
        endpoint: API endpoint that failed
        status_code: HTTP status code, None for transport failures
    """

    def __init__(self, message: str, endpoint: str, status_code: int | None = None):
        super().__init__(message)
        self.endpoint = endpoint
        self.status_code = status_code


class WebhookVerificationError(SyncGuestyError):
    """An inbound webhook failed signature verification."""
