"""Binance spot, USD-M and COIN-M trade history adapter."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from trade_sync.classifier import ErrorCodes
from trade_sync.config.models import CategoryEndpoint, ExchangeSettings
from trade_sync.models import MS_PER_DAY, Category, ExchangeCredential, RawTrade, SyncWindow
from trade_sync.signing import signed_query
from trade_sync.transport import HttpResponse

from .base import Page, PreparedRequest, TradeHistoryAdapter

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 1000

BINANCE_ERROR_CODES = ErrorCodes(
    invalid_key=frozenset({"-2014", "-2008"}),
    invalid_signature=frozenset({"-1022"}),
    ip_not_whitelisted=frozenset(),
    permission=frozenset({"-2015"}),
    unsupported_category=frozenset({"-1121"}),
    rate_limit=frozenset({"-1003", "-1015"}),
    transient=frozenset({"-1001", "-1007", "-1021"}),
)


def default_settings(exchange_id: str = "binance", base_url: str = "https://api.binance.com") -> ExchangeSettings:
    return ExchangeSettings(
        exchange_id=exchange_id,
        adapter="binance",
        base_url=base_url,
        categories={
            Category.SPOT.value: CategoryEndpoint("/api/v3/myTrades", MS_PER_DAY),
            Category.LINEAR.value: CategoryEndpoint(
                "/fapi/v1/userTrades", 7 * MS_PER_DAY, "https://fapi.binance.com"
            ),
            Category.INVERSE.value: CategoryEndpoint(
                "/dapi/v1/userTrades", 7 * MS_PER_DAY, "https://dapi.binance.com"
            ),
        },
        connection_path="/api/v3/account",
        recv_window=5000,
        page_size=MAX_PAGE_SIZE,
        error_codes=BINANCE_ERROR_CODES,
    )


def _side(item: Mapping[str, Any]) -> str:
    side = item.get("side")
    if side:
        return str(side)
    for key in ("isBuyer", "buyer"):
        if key in item:
            return "buy" if item[key] else "sell"
    raise KeyError("side")


class BinanceTradeAdapter(TradeHistoryAdapter):
    """Query string signed endpoints paginated by ``fromId``.

    Binance trade ids are unique per market and symbol only, so canonical ids
    are namespaced as ``category:symbol:id``.
    """

    requires_symbol = True

    def _signed(self, credential: ExchangeCredential, url: str, params: Mapping[str, Any]) -> PreparedRequest:
        signed = signed_query(
            credential.api_key,
            credential.api_secret,
            params,
            timestamp=self.timestamp(),
            recv_window=self.settings.recv_window,
            api_key_header=self.settings.api_key_header,
        )
        return PreparedRequest(url=f"{url}?{signed.query}", headers=signed.headers)

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
        params: Dict[str, Any] = {"symbol": symbol, "limit": limit}
        if cursor is None:
            params["startTime"] = window.start
            params["endTime"] = window.end - 1
        else:
            params["fromId"] = cursor
        return self._signed(credential, self.settings.url_for(category), params)

    def _raise_for_error(self, response: HttpResponse, body: Any, *, category: Optional[str] = None) -> None:
        if isinstance(body, Mapping) and "code" in body and str(body.get("code")) not in ("0", "200"):
            raise self.error_for(response, body.get("code"), str(body.get("msg") or ""), category=category)
        if not response.ok:
            raise self.error_for(response, None, str(body)[:200], category=category)

    def parse_page(self, response: HttpResponse, category: str, window: SyncWindow, *, limit: int) -> Page:
        body = self.decode(response, category=category)
        self._raise_for_error(response, body, category=category)
        if not isinstance(body, list):
            raise self.malformed("Expected a list of trades", body, category=category)

        trades: List[RawTrade] = []
        rejected: List[str] = []
        last_id: Optional[int] = None
        passed_window = False
        for item in body:
            if not isinstance(item, Mapping):
                rejected.append(f"Trade entry is not an object: {item!r}"[:200])
                continue
            try:
                self.require(item, ("id", "symbol", "price", "qty", "time"))
                trade_id = int(item["id"])
                executed_at = int(item["time"])
                side = _side(item)
            except (KeyError, TypeError, ValueError) as exc:
                rejected.append(f"Trade {item.get('id', '?')} is malformed: {exc}")
                continue
            last_id = trade_id if last_id is None else max(last_id, trade_id)
            if executed_at >= window.end:
                passed_window = True
                continue
            if executed_at < window.start:
                continue
            symbol = str(item["symbol"])
            trades.append(
                RawTrade(
                    exec_id=f"{category}:{symbol}:{trade_id}",
                    symbol=symbol,
                    side=side,
                    size=str(item["qty"]),
                    price=str(item["price"]),
                    fee=str(item.get("commission") or ""),
                    fee_currency=str(item.get("commissionAsset") or ""),
                    executed_at=executed_at,
                    category=category,
                    payload=dict(item),
                )
            )
        next_cursor = None
        if len(body) >= limit and last_id is not None and not passed_window:
            next_cursor = str(last_id + 1)
        return Page(trades=tuple(trades), next_cursor=next_cursor, rejected=tuple(rejected))

    def test_connection_request(self, credential: ExchangeCredential) -> PreparedRequest:
        url = self.settings.base_url.rstrip("/") + self.settings.connection_path
        return self._signed(credential, url, dict(self.settings.connection_params))

    def check_connection(self, response: HttpResponse) -> None:
        body = self.decode(response)
        self._raise_for_error(response, body)
        if not isinstance(body, Mapping):
            raise self.malformed("Expected an account object", body)


__all__ = ["BINANCE_ERROR_CODES", "BinanceTradeAdapter", "default_settings"]
