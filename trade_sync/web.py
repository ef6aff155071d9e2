"""FastAPI application exposing connection tests and trade syncs."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Mapping, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from services.exchanges import ADAPTERS
from services.telemetry import Telemetry

from .config.models import SyncConfig
from .configuration import credential_from_mapping, default_sync_config
from .errors import ConfigurationError
from .factory import build_sync_service
from .journal import FileJournalStore, InMemoryJournalStore, JournalStore
from .models import ExchangeCredential
from .orchestrator import TradeSyncService
from .transport import AiohttpTransport, HttpTransport

logger = logging.getLogger(__name__)


def _optional_int(payload: Mapping[str, Any], key: str) -> Optional[int]:
    value = payload.get(key)
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"'{key}' must be an integer")


def _optional_float(payload: Mapping[str, Any], key: str) -> Optional[float]:
    value = payload.get(key)
    if value in (None, ""):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"'{key}' must be numeric")
    if number <= 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"'{key}' must be positive")
    return number


async def _read_payload(request: Request) -> Mapping[str, Any]:
    try:
        payload = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload") from exc
    if not isinstance(payload, Mapping):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Request payload must be an object")
    return payload


def _credential(exchange: str, payload: Mapping[str, Any]) -> ExchangeCredential:
    entry = {key: value for key, value in payload.items() if key not in {"exchange"}}
    try:
        return credential_from_mapping(entry, exchange_id=exchange, description="Request")
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def create_app(
    config: Optional[SyncConfig] = None,
    *,
    transport: Optional[HttpTransport] = None,
    telemetry: Optional[Telemetry] = None,
    journal_store: Optional[JournalStore] = None,
) -> FastAPI:
    config = config or default_sync_config()
    owns_transport = transport is None
    transport = transport or AiohttpTransport()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if owns_transport:
            await transport.close()

    app = FastAPI(title="Exchange Trade Sync", lifespan=lifespan)
    app.state.config = config
    app.state.transport = transport
    app.state.telemetry = telemetry or Telemetry(policy=config.resilience)
    if journal_store is None:
        journal_store = FileJournalStore(config.journal_path) if config.journal_path else InMemoryJournalStore()
    app.state.journal_store = journal_store
    app.state.services = {}

    async def get_service(exchange: str, request: Request) -> TradeSyncService:
        services: Dict[str, TradeSyncService] = request.app.state.services
        key = exchange.strip().lower()
        service = services.get(key)
        if service is None:
            try:
                service = build_sync_service(
                    key,
                    request.app.state.config,
                    transport=request.app.state.transport,
                    telemetry=request.app.state.telemetry,
                )
            except ValueError as exc:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
            services[key] = service
        return service

    @app.get("/health", response_class=JSONResponse)
    async def health(request: Request) -> JSONResponse:
        return JSONResponse(request.app.state.telemetry.health_snapshot())

    @app.get("/api/exchanges", response_class=JSONResponse)
    async def api_exchanges(request: Request) -> JSONResponse:
        exchanges = []
        for settings in request.app.state.config.exchanges.values():
            exchanges.append(
                {
                    "id": settings.exchange_id,
                    "adapter": settings.adapter,
                    "categories": list(settings.categories),
                    "max_window_ms": {name: ep.max_window_ms for name, ep in settings.categories.items()},
                    "requires_symbol": ADAPTERS[settings.adapter].requires_symbol,
                    "default_symbols": list(settings.default_symbols),
                }
            )
        return JSONResponse({"exchanges": exchanges})

    @app.post("/api/exchanges/{exchange}/test-connection", response_class=JSONResponse)
    async def api_test_connection(
        exchange: str,
        request: Request,
        service: TradeSyncService = Depends(get_service),
    ) -> JSONResponse:
        payload = await _read_payload(request)
        credential = _credential(service.exchange_id, payload)
        result = await service.test_connection(credential, deadline=_optional_float(payload, "deadline"))
        return JSONResponse(result.to_dict())

    @app.post("/api/exchanges/{exchange}/sync", response_class=JSONResponse)
    async def api_sync(
        exchange: str,
        request: Request,
        service: TradeSyncService = Depends(get_service),
    ) -> JSONResponse:
        payload = await _read_payload(request)
        credential = _credential(service.exchange_id, payload)
        symbol = str(payload.get("symbol") or "").strip() or None
        result = await service.fetch_trades(
            credential,
            symbol=symbol,
            since=_optional_int(payload, "since"),
            until=_optional_int(payload, "until"),
            page_limit=_optional_int(payload, "page_limit"),
            deadline=_optional_float(payload, "deadline"),
        )
        body = result.to_dict()
        owner = str(payload.get("owner") or "").strip()
        if owner:
            store: JournalStore = request.app.state.journal_store
            body["stored"] = await asyncio.to_thread(store.save_trades, owner, result.trades)
        return JSONResponse(body)

    return app


__all__ = ["create_app"]
