"""Error taxonomy for exchange trade synchronisation.

The classes extend ccxt's exception hierarchy so callers that already handle
``ccxt.AuthenticationError`` or ``ccxt.NetworkError`` treat sync failures the
same way.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from ccxt.base import errors as ccxt_errors

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from .classifier import Classification

PAYLOAD_PREVIEW_CHARS = 200


def truncate_payload(payload: object, limit: int = PAYLOAD_PREVIEW_CHARS) -> str:
    text = payload if isinstance(payload, str) else repr(payload)
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class SyncError(ccxt_errors.BaseError):
    """Base class for every failure raised by the sync engine."""

    def __init__(
        self,
        message: str,
        *,
        exchange_id: Optional[str] = None,
        code: Optional[str] = None,
        category: Optional[str] = None,
        http_status: Optional[int] = None,
        classification: Optional["Classification"] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.exchange_id = exchange_id
        self.code = code
        self.category = category
        self.http_status = http_status
        self.classification = classification


class ConfigurationError(SyncError, ValueError):
    """Invalid settings or credentials detected before any request is sent."""


class AuthError(SyncError, ccxt_errors.AuthenticationError):
    """Credentials are categorically broken; the whole call aborts."""


class PermissionDeniedError(SyncError, ccxt_errors.PermissionDenied):
    """Data scope, category or source IP not enabled for the API key."""


class RateLimitError(SyncError, ccxt_errors.RateLimitExceeded):
    """Exchange throttled the request."""


class NetworkError(SyncError, ccxt_errors.NetworkError):
    """Transport failure, timeout or transient service outage."""


class ParseError(SyncError, ccxt_errors.BadResponse):
    """Response body was not valid JSON or did not match the expected schema."""

    def __init__(self, message: str, *, payload: object = None, **kwargs) -> None:
        preview = truncate_payload(payload) if payload is not None else None
        if preview:
            message = f"{message} (payload: {preview})"
        super().__init__(message, **kwargs)
        self.payload_preview = preview


class ExchangeResponseError(SyncError, ccxt_errors.ExchangeError):
    """Exchange returned an error code with no known disposition."""


class SyncDeadlineExceeded(SyncError, ccxt_errors.RequestTimeout):
    """The caller supplied deadline expired before the sync completed."""


__all__ = [
    "AuthError",
    "ConfigurationError",
    "ExchangeResponseError",
    "NetworkError",
    "ParseError",
    "PermissionDeniedError",
    "RateLimitError",
    "SyncDeadlineExceeded",
    "SyncError",
    "truncate_payload",
]
