"""Domain models shared by the trade synchronisation engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

MS_PER_DAY = 24 * 60 * 60 * 1000


def ms_to_iso(timestamp_ms: int) -> str:
    """Return an ISO-8601 UTC representation of ``timestamp_ms``."""

    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).isoformat()


class Category(str, Enum):
    SPOT = "spot"
    LINEAR = "linear"
    INVERSE = "inverse"
    OPTION = "option"


@dataclass(frozen=True)
class ExchangeCredential:
    """API credentials for one exchange account.

    The secret is excluded from ``repr`` so credentials can appear in debug
    output without leaking.
    """

    exchange_id: str
    api_key: str = field(repr=False)
    api_secret: str = field(repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "exchange_id", str(self.exchange_id).strip().lower())


@dataclass(frozen=True)
class SyncWindow:
    """Half-open ``[start, end)`` interval in epoch milliseconds."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise ValueError(f"SyncWindow end ({self.end}) must be greater than start ({self.start})")

    @property
    def duration(self) -> int:
        return self.end - self.start

    def contains(self, timestamp_ms: int) -> bool:
        return self.start <= timestamp_ms < self.end

    def describe(self) -> str:
        return f"{ms_to_iso(self.start)} -> {ms_to_iso(self.end)}"


@dataclass(frozen=True)
class RawTrade:
    """Exchange-native execution as parsed from an API response."""

    exec_id: str
    symbol: str
    side: str
    size: str
    price: str
    fee: str
    fee_currency: str
    executed_at: int
    category: str
    payload: Mapping[str, Any] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class CanonicalTrade:
    """Exchange agnostic trade record handed to the journal store."""

    exchange_id: str
    exchange_trade_id: str
    symbol: str
    side: str
    quantity: float
    price: float
    fee: float
    fee_currency: str
    executed_at: int
    category: str

    @property
    def key(self) -> Tuple[str, str]:
        return self.exchange_id, self.exchange_trade_id

    @property
    def sort_key(self) -> Tuple[int, str]:
        return self.executed_at, self.exchange_trade_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exchange_id": self.exchange_id,
            "exchange_trade_id": self.exchange_trade_id,
            "symbol": self.symbol,
            "side": self.side,
            "quantity": self.quantity,
            "price": self.price,
            "fee": self.fee,
            "fee_currency": self.fee_currency,
            "executed_at": self.executed_at,
            "datetime": ms_to_iso(self.executed_at),
            "category": self.category,
        }


class WarningKind(str, Enum):
    CATEGORY_SKIPPED = "category_skipped"
    CHUNK_FAILED = "chunk_failed"
    PARSE_ERROR = "parse_error"
    PAGE_LIMIT_REACHED = "page_limit_reached"
    DUPLICATE_CONFLICT = "duplicate_conflict"
    SYMBOL_REQUIRED = "symbol_required"
    DEADLINE_EXCEEDED = "deadline_exceeded"


@dataclass(frozen=True)
class SyncWarning:
    kind: WarningKind
    message: str
    category: Optional[str] = None
    window: Optional[SyncWindow] = None
    code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        if self.category is not None:
            payload["category"] = self.category
        if self.window is not None:
            payload["window"] = {"start": self.window.start, "end": self.window.end}
        if self.code is not None:
            payload["code"] = self.code
        return payload


@dataclass
class SyncResult:
    """Outcome of a ``fetch_trades`` call.

    ``trades`` is ordered by ``executed_at`` (ties broken by trade id). A result
    with warnings but no error is a partial success.
    """

    trades: List[CanonicalTrade] = field(default_factory=list)
    warnings: List[SyncWarning] = field(default_factory=list)
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def partial(self) -> bool:
        return bool(self.warnings) or (self.error is not None and bool(self.trades))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "partial": self.partial,
            "trades": [trade.to_dict() for trade in self.trades],
            "warnings": [warning.to_dict() for warning in self.warnings],
            "error": str(self.error) if self.error is not None else None,
            "error_type": type(self.error).__name__ if self.error is not None else None,
        }


class ConnectionDiagnostic(str, Enum):
    OK = "ok"
    INVALID_API_KEY = "invalid_api_key"
    INVALID_SIGNATURE = "invalid_signature"
    IP_NOT_WHITELISTED = "ip_not_whitelisted"
    PERMISSION_DENIED = "permission_denied"
    RATE_LIMITED = "rate_limited"
    SERVICE_UNAVAILABLE = "service_unavailable"
    NETWORK_ERROR = "network_error"
    INVALID_RESPONSE = "invalid_response"
    UNKNOWN = "unknown"


DIAGNOSTIC_MESSAGES: Mapping[ConnectionDiagnostic, str] = {
    ConnectionDiagnostic.OK: "Connection successful",
    ConnectionDiagnostic.INVALID_API_KEY: "Invalid API key: check API key",
    ConnectionDiagnostic.INVALID_SIGNATURE: "Invalid signature: check API secret",
    ConnectionDiagnostic.IP_NOT_WHITELISTED: (
        "IP address not whitelisted: add this IP to the API key whitelist or remove the IP restriction"
    ),
    ConnectionDiagnostic.PERMISSION_DENIED: (
        "Permission denied: enable read-only access to trade history for this API key"
    ),
    ConnectionDiagnostic.RATE_LIMITED: "Rate limited by the exchange: try again shortly",
    ConnectionDiagnostic.SERVICE_UNAVAILABLE: "Exchange service unavailable: try again later",
    ConnectionDiagnostic.NETWORK_ERROR: "Network error or timeout: check connectivity and try again",
    ConnectionDiagnostic.INVALID_RESPONSE: "Unexpected response from the exchange",
    ConnectionDiagnostic.UNKNOWN: "Connection test failed",
}


@dataclass(frozen=True)
class ConnectionTestResult:
    success: bool
    diagnostic: ConnectionDiagnostic
    message: str
    code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "diagnostic": self.diagnostic.value,
            "message": self.message,
            "code": self.code,
        }


__all__ = [
    "CanonicalTrade",
    "Category",
    "ConnectionDiagnostic",
    "ConnectionTestResult",
    "DIAGNOSTIC_MESSAGES",
    "ExchangeCredential",
    "MS_PER_DAY",
    "RawTrade",
    "SyncResult",
    "SyncWarning",
    "SyncWindow",
    "WarningKind",
    "ms_to_iso",
]
