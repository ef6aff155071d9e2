"""Wire configured exchanges to sync services."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

from services.exchanges import build_adapter
from services.telemetry import Telemetry

from .config.models import SyncConfig
from .configuration import default_sync_config
from .orchestrator import TradeSyncService
from .transport import HttpTransport

logger = logging.getLogger(__name__)


def build_sync_service(
    exchange_id: str,
    config: Optional[SyncConfig] = None,
    *,
    transport: HttpTransport,
    telemetry: Optional[Telemetry] = None,
    clock: Callable[[], float] = time.time,
    **kwargs: Any,
) -> TradeSyncService:
    """Return a :class:`TradeSyncService` for ``exchange_id``.

    The transport is owned by the caller and must be closed by it.
    """

    config = config or default_sync_config()
    settings = config.exchange(exchange_id)
    adapter = build_adapter(settings, transport, clock=clock)
    logger.debug("Built %s adapter for %s", settings.adapter, settings.exchange_id)
    return TradeSyncService(
        adapter,
        policy=config.resilience,
        telemetry=telemetry,
        default_lookback_days=config.default_lookback_days,
        clock=clock,
        **kwargs,
    )


__all__ = ["build_sync_service"]
