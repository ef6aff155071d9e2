"""Exchange adapter interface for signed trade history requests."""

from __future__ import annotations

import abc
import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Sequence, Tuple

import aiohttp

from trade_sync.classifier import MALFORMED_RESPONSE, NETWORK_FAILURE, ErrorClassifier
from trade_sync.config.models import ExchangeSettings
from trade_sync.errors import ParseError, SyncError
from trade_sync.models import DIAGNOSTIC_MESSAGES, ExchangeCredential, RawTrade, SyncWindow
from trade_sync.transport import HttpResponse, HttpTransport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreparedRequest:
    """Signed GET request. ``url`` embeds the query string."""

    url: str
    headers: Mapping[str, str] = field(default_factory=dict, repr=False)

    @property
    def path(self) -> str:
        return self.url.split("?", 1)[0]


@dataclass(frozen=True)
class Page:
    trades: Tuple[RawTrade, ...] = ()
    next_cursor: Optional[str] = None
    rejected: Tuple[str, ...] = ()


class TradeHistoryAdapter(abc.ABC):
    """Asynchronous interface for one exchange's private trade history API.

    Subclasses describe the request shape and the response envelope; this base
    class sends requests through the injected transport and turns every failure
    into a classified :class:`~trade_sync.errors.SyncError`.
    """

    requires_symbol: bool = False

    def __init__(
        self,
        settings: ExchangeSettings,
        transport: HttpTransport,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.transport = transport
        self.classifier = ErrorClassifier(settings.error_codes)
        self._clock = clock

    @property
    def exchange_id(self) -> str:
        return self.settings.exchange_id

    def list_categories(self) -> Tuple[str, ...]:
        return tuple(self.settings.categories)

    def max_window(self, category: str) -> Optional[int]:
        return self.settings.endpoint(category).max_window_ms

    def page_size(self, limit: Optional[int] = None) -> int:
        if limit is None or limit <= 0:
            return self.settings.page_size
        return min(int(limit), self.settings.page_size)

    def timestamp(self) -> int:
        return int(self._clock() * 1000)

    @abc.abstractmethod
    def build_page_request(
        self,
        credential: ExchangeCredential,
        category: str,
        window: SyncWindow,
        cursor: Optional[str],
        *,
        symbol: Optional[str],
        limit: int,
    ) -> PreparedRequest:
        """Return the signed request for one page of ``category`` trades."""

    @abc.abstractmethod
    def parse_page(self, response: HttpResponse, category: str, window: SyncWindow, *, limit: int) -> Page:
        """Decode a trade history response or raise a classified error."""

    @abc.abstractmethod
    def test_connection_request(self, credential: ExchangeCredential) -> PreparedRequest:
        """Return the lightweight authenticated request used to verify credentials."""

    @abc.abstractmethod
    def check_connection(self, response: HttpResponse) -> None:
        """Raise a classified error unless ``response`` proves the credentials work."""

    async def fetch_page(
        self,
        credential: ExchangeCredential,
        category: str,
        window: SyncWindow,
        cursor: Optional[str] = None,
        *,
        symbol: Optional[str] = None,
        limit: Optional[int] = None,
        timeout: float = 30.0,
    ) -> Page:
        size = self.page_size(limit)
        request = self.build_page_request(credential, category, window, cursor, symbol=symbol, limit=size)
        response = await self._send(request, timeout=timeout, category=category)
        return self.parse_page(response, category, window, limit=size)

    async def verify_credentials(self, credential: ExchangeCredential, *, timeout: float = 15.0) -> None:
        request = self.test_connection_request(credential)
        response = await self._send(request, timeout=timeout)
        self.check_connection(response)

    async def _send(
        self, request: PreparedRequest, *, timeout: float, category: Optional[str] = None
    ) -> HttpResponse:
        logger.debug("GET %s (%s, category=%s)", request.path, self.exchange_id, category)
        try:
            return await self.transport.get(request.url, headers=request.headers, timeout=timeout)
        except SyncError as exc:
            if exc.classification is not None:
                raise
            raise NETWORK_FAILURE.build_error(
                str(exc), exchange_id=self.exchange_id, category=category
            ) from exc
        except (asyncio.TimeoutError, aiohttp.ClientError) as exc:
            raise NETWORK_FAILURE.build_error(
                f"{exc.__class__.__name__}: {exc}", exchange_id=self.exchange_id, category=category
            ) from exc

    def decode(self, response: HttpResponse, *, category: Optional[str] = None) -> Any:
        """Parse a JSON body, classifying undecodable error pages by HTTP status."""

        try:
            return json.loads(response.text)
        except (TypeError, ValueError):
            if not response.ok:
                raise self.error_for(response, None, "non-JSON error body", category=category) from None
            raise MALFORMED_RESPONSE.build_error(
                "Response body is not valid JSON",
                payload=response.text,
                exchange_id=self.exchange_id,
                category=category,
                http_status=response.status,
            ) from None

    def malformed(self, message: str, payload: Any, *, category: Optional[str] = None) -> ParseError:
        return ParseError(
            message,
            payload=payload,
            exchange_id=self.exchange_id,
            category=category,
            classification=MALFORMED_RESPONSE,
        )

    def error_for(
        self, response: HttpResponse, code: Any, message: str, *, category: Optional[str] = None
    ) -> SyncError:
        classification = self.classifier.classify(
            response.status, code, message, retry_after=response.retry_after
        )
        code_text = None if code in (None, "") else str(code)
        summary = DIAGNOSTIC_MESSAGES[classification.diagnostic]
        detail = f"HTTP {response.status}" if code_text is None else f"code {code_text}"
        return classification.build_error(
            f"{summary} ({self.exchange_id} {detail}: {message or 'no message'})",
            exchange_id=self.exchange_id,
            code=code_text,
            category=category,
            http_status=response.status,
        )

    @staticmethod
    def require(item: Mapping[str, Any], keys: Sequence[str]) -> None:
        missing = [key for key in keys if item.get(key) in (None, "")]
        if missing:
            raise KeyError(", ".join(missing))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(exchange_id={self.exchange_id!r})"


__all__ = ["Page", "PreparedRequest", "TradeHistoryAdapter"]
