"""HTTP transport used by exchange adapters."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional, Protocol

import aiohttp

from .errors import NetworkError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HttpResponse:
    status: int
    text: str
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def retry_after(self) -> Optional[float]:
        raw = None
        for key, value in self.headers.items():
            if key.lower() == "retry-after":
                raw = value
                break
        if raw in (None, ""):
            return None
        try:
            return float(raw)
        except (TypeError, ValueError):
            return None


class HttpTransport(Protocol):
    async def get(self, url: str, *, headers: Mapping[str, str], timeout: float) -> HttpResponse:
        ...

    async def close(self) -> None:
        ...


class AiohttpTransport:
    """``aiohttp`` backed transport with one lazily created session."""

    def __init__(self, session: Optional[aiohttp.ClientSession] = None) -> None:
        self._session = session
        self._owns_session = session is None
        self._session_lock = asyncio.Lock()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        async with self._session_lock:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession(headers={"Content-Type": "application/json"})
                self._owns_session = True
            return self._session

    async def get(self, url: str, *, headers: Mapping[str, str], timeout: float) -> HttpResponse:
        session = await self._ensure_session()
        try:
            async with session.get(
                url, headers=dict(headers), timeout=aiohttp.ClientTimeout(total=timeout)
            ) as response:
                text = await response.text()
                return HttpResponse(status=response.status, text=text, headers=dict(response.headers))
        except asyncio.TimeoutError as exc:
            raise NetworkError(f"Request timed out after {timeout:.0f}s") from exc
        except aiohttp.ClientError as exc:
            raise NetworkError(f"HTTP request failed: {exc.__class__.__name__}: {exc}") from exc

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "AiohttpTransport":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


__all__ = ["AiohttpTransport", "HttpResponse", "HttpTransport"]
