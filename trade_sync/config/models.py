from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from services.telemetry import ResiliencePolicy
from trade_sync.classifier import ErrorCodes
from trade_sync.signing import HeaderNames


@dataclass(frozen=True)
class CategoryEndpoint:
    """Trade history endpoint serving one asset category."""

    path: str
    max_window_ms: Optional[int] = None
    base_url: Optional[str] = None


@dataclass(frozen=True)
class ExchangeSettings:
    """Everything an adapter needs to talk to one exchange.

    ``adapter`` names the request/response shape (``bybit`` or ``binance``);
    ``exchange_id`` is the identifier stamped on canonical trades, so a second
    exchange speaking the Bybit dialect only needs a new id and base URL.
    """

    exchange_id: str
    adapter: str
    base_url: str
    categories: Mapping[str, CategoryEndpoint]
    connection_path: str
    connection_params: Mapping[str, str] = field(default_factory=dict)
    recv_window: int = 5000
    page_size: int = 100
    default_symbols: Tuple[str, ...] = ()
    error_codes: ErrorCodes = field(default_factory=ErrorCodes)
    header_names: HeaderNames = field(default_factory=HeaderNames)
    api_key_header: str = "X-MBX-APIKEY"

    def endpoint(self, category: str) -> CategoryEndpoint:
        try:
            return self.categories[category]
        except KeyError:
            raise ValueError(f"{self.exchange_id} does not support category '{category}'") from None

    def url_for(self, category: str) -> str:
        endpoint = self.endpoint(category)
        return (endpoint.base_url or self.base_url).rstrip("/") + endpoint.path


@dataclass()
class SyncConfig:
    """Top level trade sync configuration."""

    exchanges: Dict[str, ExchangeSettings]
    resilience: ResiliencePolicy = field(default_factory=ResiliencePolicy)
    default_lookback_days: int = 180
    api_keys_path: Optional[Path] = None
    journal_path: Optional[Path] = None
    config_path: Optional[Path] = None
    config_root: Optional[Path] = None

    def exchange(self, exchange_id: str) -> ExchangeSettings:
        key = str(exchange_id).strip().lower()
        try:
            return self.exchanges[key]
        except KeyError:
            known = ", ".join(sorted(self.exchanges)) or "none"
            raise ValueError(f"Unknown exchange '{exchange_id}' (configured: {known})") from None


__all__ = [
    "CategoryEndpoint",
    "ExchangeSettings",
    "SyncConfig",
]
