import asyncio

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from trade_sync.errors import NetworkError
from trade_sync.transport import AiohttpTransport, HttpResponse


async def _executions(request: web.Request) -> web.Response:
    return web.json_response(
        {"retCode": 0, "query": dict(request.query), "key": request.headers.get("X-BAPI-API-KEY")},
        headers={"Retry-After": "2"},
    )


async def _slow(request: web.Request) -> web.Response:
    await asyncio.sleep(2)
    return web.json_response({})


@pytest_asyncio.fixture
async def server():
    app = web.Application()
    app.router.add_get("/v5/execution/list", _executions)
    app.router.add_get("/slow", _slow)
    test_server = TestServer(app)
    await test_server.start_server()
    try:
        yield test_server
    finally:
        await test_server.close()


def test_http_response_helpers() -> None:
    assert HttpResponse(204, "").ok
    assert not HttpResponse(404, "").ok
    assert HttpResponse(429, "", {"retry-after": "7"}).retry_after == 7.0
    assert HttpResponse(429, "", {"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}).retry_after is None
    assert HttpResponse(200, "").retry_after is None


@pytest.mark.asyncio
async def test_get_returns_status_body_and_headers(server) -> None:
    async with AiohttpTransport() as transport:
        response = await transport.get(
            str(server.make_url("/v5/execution/list?category=spot&limit=5")),
            headers={"X-BAPI-API-KEY": "abc"},
            timeout=5,
        )

    assert response.status == 200
    assert '"category": "spot"' in response.text
    assert '"key": "abc"' in response.text
    assert response.retry_after == 2.0


@pytest.mark.asyncio
async def test_timeout_becomes_network_error(server) -> None:
    async with AiohttpTransport() as transport:
        with pytest.raises(NetworkError, match="timed out"):
            await transport.get(str(server.make_url("/slow")), headers={}, timeout=0.1)


@pytest.mark.asyncio
async def test_connection_failure_becomes_network_error() -> None:
    transport = AiohttpTransport()
    try:
        with pytest.raises(NetworkError, match="HTTP request failed"):
            await transport.get("http://127.0.0.1:9/unreachable", headers={}, timeout=2)
    finally:
        await transport.close()
