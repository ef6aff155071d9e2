import inspect
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import parse_qsl, urlsplit

import pytest

from trade_sync.transport import HttpResponse


@dataclass
class RecordedRequest:
    url: str
    host: str
    path: str
    params: Dict[str, str]
    headers: Dict[str, str]
    timeout: float
    query: str = field(default="", repr=False)


class ScriptedTransport:
    """In-memory stand-in for the HTTP transport.

    ``handler`` receives each :class:`RecordedRequest` and returns an
    :class:`HttpResponse`, an awaitable resolving to one, or an exception to raise.
    """

    def __init__(self, handler: Callable[[RecordedRequest], Any]) -> None:
        self.handler = handler
        self.requests: List[RecordedRequest] = []
        self.closed = False

    async def get(self, url, *, headers, timeout):
        parts = urlsplit(url)
        request = RecordedRequest(
            url=url,
            host=parts.netloc,
            path=parts.path,
            params=dict(parse_qsl(parts.query)),
            headers=dict(headers),
            timeout=timeout,
            query=parts.query,
        )
        self.requests.append(request)
        result = self.handler(request)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, BaseException):
            raise result
        return result

    async def close(self):
        self.closed = True

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


def json_response(payload: Any, status: int = 200, headers: Optional[Dict[str, str]] = None) -> HttpResponse:
    return HttpResponse(status=status, text=json.dumps(payload), headers=headers or {})


def bybit_ok(items, cursor: str = "") -> HttpResponse:
    return json_response(
        {"retCode": 0, "retMsg": "OK", "result": {"list": list(items), "nextPageCursor": cursor}, "time": 1}
    )


def bybit_error(code: int, message: str = "error") -> HttpResponse:
    return json_response({"retCode": code, "retMsg": message, "result": {}, "time": 1})


def bybit_execution(exec_id: str, executed_at: int, *, symbol: str = "BTCUSDT", side: str = "Buy") -> Dict[str, str]:
    return {
        "execId": exec_id,
        "symbol": symbol,
        "side": side,
        "execQty": "0.010",
        "execPrice": "30000.5",
        "execFee": "0.12",
        "execTime": str(executed_at),
        "execType": "Trade",
    }


@pytest.fixture
def make_transport():
    return ScriptedTransport


@pytest.fixture
def responses():
    """Response builders shared by adapter and orchestrator tests."""

    class _Responses:
        json = staticmethod(json_response)
        bybit_ok = staticmethod(bybit_ok)
        bybit_error = staticmethod(bybit_error)
        execution = staticmethod(bybit_execution)

    return _Responses
