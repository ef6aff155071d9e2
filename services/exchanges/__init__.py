"""Exchange adapter interfaces and implementations."""

from __future__ import annotations

from typing import Callable, Dict, Optional, Type

from trade_sync.config.models import ExchangeSettings
from trade_sync.transport import HttpTransport

from . import binance, bybit
from .base import Page, PreparedRequest, TradeHistoryAdapter
from .binance import BinanceTradeAdapter
from .bybit import BybitTradeAdapter

ADAPTERS: Dict[str, Type[TradeHistoryAdapter]] = {
    "bybit": BybitTradeAdapter,
    "binance": BinanceTradeAdapter,
}

DEFAULT_SETTINGS: Dict[str, Callable[..., ExchangeSettings]] = {
    "bybit": bybit.default_settings,
    "binance": binance.default_settings,
}


def default_settings(adapter: str, exchange_id: Optional[str] = None) -> ExchangeSettings:
    """Return built-in settings for the ``adapter`` dialect."""

    key = str(adapter).strip().lower()
    try:
        factory = DEFAULT_SETTINGS[key]
    except KeyError:
        raise ValueError(
            f"Unknown exchange adapter '{adapter}' (available: {', '.join(sorted(ADAPTERS))})"
        ) from None
    return factory(exchange_id or key)


def build_adapter(settings: ExchangeSettings, transport: HttpTransport, **kwargs) -> TradeHistoryAdapter:
    try:
        adapter_cls = ADAPTERS[settings.adapter]
    except KeyError:
        raise ValueError(
            f"Unknown exchange adapter '{settings.adapter}' for {settings.exchange_id}"
        ) from None
    return adapter_cls(settings, transport, **kwargs)


__all__ = [
    "ADAPTERS",
    "BinanceTradeAdapter",
    "BybitTradeAdapter",
    "Page",
    "PreparedRequest",
    "TradeHistoryAdapter",
    "build_adapter",
    "default_settings",
]
