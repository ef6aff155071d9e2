"""Exchange trade history synchronisation."""

from .errors import (
    AuthError,
    ConfigurationError,
    ExchangeResponseError,
    NetworkError,
    ParseError,
    PermissionDeniedError,
    RateLimitError,
    SyncDeadlineExceeded,
    SyncError,
)
from .models import (
    CanonicalTrade,
    ConnectionDiagnostic,
    ConnectionTestResult,
    ExchangeCredential,
    SyncResult,
    SyncWarning,
    SyncWindow,
    WarningKind,
)

__all__ = [
    "AuthError",
    "CanonicalTrade",
    "ConfigurationError",
    "ConnectionDiagnostic",
    "ConnectionTestResult",
    "ExchangeCredential",
    "ExchangeResponseError",
    "NetworkError",
    "ParseError",
    "PermissionDeniedError",
    "RateLimitError",
    "SyncDeadlineExceeded",
    "SyncError",
    "SyncResult",
    "SyncWarning",
    "SyncWindow",
    "WarningKind",
]
