"""Map exchange error responses onto sync dispositions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, FrozenSet, Iterable, Mapping, Optional, Type

from .errors import (
    AuthError,
    ExchangeResponseError,
    NetworkError,
    ParseError,
    PermissionDeniedError,
    RateLimitError,
    SyncError,
)
from .models import ConnectionDiagnostic

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 30.0


class Disposition(str, Enum):
    ABORT = "abort"
    SKIP_CATEGORY = "skip_category"
    RETRY = "retry"
    FAIL_CHUNK = "fail_chunk"


@dataclass(frozen=True)
class Classification:
    disposition: Disposition
    error_type: Type[SyncError]
    diagnostic: ConnectionDiagnostic
    retry_after: Optional[float] = None

    def build_error(self, message: str, **context: Any) -> SyncError:
        return self.error_type(message, classification=self, **context)


NETWORK_FAILURE = Classification(Disposition.RETRY, NetworkError, ConnectionDiagnostic.NETWORK_ERROR)
MALFORMED_RESPONSE = Classification(Disposition.FAIL_CHUNK, ParseError, ConnectionDiagnostic.INVALID_RESPONSE)


def _code_set(values: Optional[Iterable[Any]]) -> FrozenSet[str]:
    if values is None:
        return frozenset()
    if isinstance(values, (str, bytes, int)):
        raise TypeError("Error code tables must be arrays of codes")
    return frozenset(str(value).strip() for value in values if str(value).strip())


@dataclass(frozen=True)
class ErrorCodes:
    """Exact exchange return codes grouped by meaning."""

    invalid_key: FrozenSet[str] = field(default_factory=frozenset)
    invalid_signature: FrozenSet[str] = field(default_factory=frozenset)
    ip_not_whitelisted: FrozenSet[str] = field(default_factory=frozenset)
    permission: FrozenSet[str] = field(default_factory=frozenset)
    unsupported_category: FrozenSet[str] = field(default_factory=frozenset)
    rate_limit: FrozenSet[str] = field(default_factory=frozenset)
    transient: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def from_mapping(
        cls, payload: Optional[Mapping[str, Any]], *, defaults: Optional["ErrorCodes"] = None
    ) -> "ErrorCodes":
        base = defaults or cls()
        if not payload:
            return base
        if not isinstance(payload, Mapping):
            raise TypeError("'error_codes' must be an object mapping groups to code arrays")
        kwargs = {}
        for name in cls.__dataclass_fields__:
            if name in payload:
                kwargs[name] = _code_set(payload[name])
            else:
                kwargs[name] = getattr(base, name)
        unknown = set(payload) - set(cls.__dataclass_fields__)
        if unknown:
            raise ValueError(f"Unknown error code groups: {', '.join(sorted(unknown))}")
        return cls(**kwargs)


class ErrorClassifier:
    """Decide whether a failed chunk aborts the sync, skips a category or retries.

    Codes are matched exactly; message text is informational only. Codes that
    match no table fail the chunk so the sync records a warning and moves on.
    """

    def __init__(self, codes: ErrorCodes) -> None:
        self.codes = codes

    def classify(
        self,
        http_status: Optional[int],
        code: Any = None,
        message: str = "",
        *,
        retry_after: Optional[float] = None,
    ) -> Classification:
        code_key = str(code).strip() if code not in (None, "") else None
        codes = self.codes
        if code_key is not None:
            if code_key in codes.invalid_key:
                return Classification(Disposition.ABORT, AuthError, ConnectionDiagnostic.INVALID_API_KEY)
            if code_key in codes.invalid_signature:
                return Classification(Disposition.ABORT, AuthError, ConnectionDiagnostic.INVALID_SIGNATURE)
            if code_key in codes.ip_not_whitelisted:
                return Classification(
                    Disposition.SKIP_CATEGORY, PermissionDeniedError, ConnectionDiagnostic.IP_NOT_WHITELISTED
                )
            if code_key in codes.permission or code_key in codes.unsupported_category:
                return Classification(
                    Disposition.SKIP_CATEGORY, PermissionDeniedError, ConnectionDiagnostic.PERMISSION_DENIED
                )
            if code_key in codes.rate_limit:
                return Classification(
                    Disposition.RETRY, RateLimitError, ConnectionDiagnostic.RATE_LIMITED, retry_after
                )
            if code_key in codes.transient:
                return Classification(
                    Disposition.RETRY, NetworkError, ConnectionDiagnostic.SERVICE_UNAVAILABLE, retry_after
                )

        if http_status in (418, 429):
            return Classification(Disposition.RETRY, RateLimitError, ConnectionDiagnostic.RATE_LIMITED, retry_after)
        if http_status is not None and http_status >= 500:
            return Classification(
                Disposition.RETRY, NetworkError, ConnectionDiagnostic.SERVICE_UNAVAILABLE, retry_after
            )
        if http_status == 401:
            return Classification(Disposition.ABORT, AuthError, ConnectionDiagnostic.INVALID_API_KEY)
        if http_status == 403:
            return Classification(
                Disposition.SKIP_CATEGORY, PermissionDeniedError, ConnectionDiagnostic.PERMISSION_DENIED
            )

        logger.debug("Unmatched exchange error (status=%s, code=%s): %s", http_status, code_key, message)
        return Classification(Disposition.FAIL_CHUNK, ExchangeResponseError, ConnectionDiagnostic.UNKNOWN)


def backoff_delay(attempt: int, base: float, retry_after: Optional[float] = None) -> float:
    """Return the sleep before retry ``attempt`` (1-based)."""

    if retry_after is not None and retry_after > 0:
        return min(float(retry_after), MAX_BACKOFF_SECONDS)
    return min(base * (2 ** max(attempt - 1, 0)), MAX_BACKOFF_SECONDS)


__all__ = [
    "Classification",
    "Disposition",
    "ErrorClassifier",
    "ErrorCodes",
    "MALFORMED_RESPONSE",
    "NETWORK_FAILURE",
    "backoff_delay",
]
