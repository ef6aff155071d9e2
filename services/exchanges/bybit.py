"""Bybit v5 execution history adapter."""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional

from trade_sync.classifier import ErrorCodes
from trade_sync.config.models import CategoryEndpoint, ExchangeSettings
from trade_sync.models import MS_PER_DAY, Category, ExchangeCredential, RawTrade, SyncWindow
from trade_sync.signing import signed_headers
from trade_sync.transport import HttpResponse

from .base import Page, PreparedRequest, TradeHistoryAdapter

logger = logging.getLogger(__name__)

EXECUTION_PATH = "/v5/execution/list"
MAX_PAGE_SIZE = 100

BYBIT_ERROR_CODES = ErrorCodes(
    invalid_key=frozenset({"10003"}),
    invalid_signature=frozenset({"10004"}),
    ip_not_whitelisted=frozenset({"10010"}),
    permission=frozenset({"10005"}),
    unsupported_category=frozenset(),
    rate_limit=frozenset({"10006", "10018"}),
    transient=frozenset({"10002", "10016"}),
)


def default_settings(exchange_id: str = "bybit", base_url: str = "https://api.bybit.com") -> ExchangeSettings:
    window = 7 * MS_PER_DAY
    return ExchangeSettings(
        exchange_id=exchange_id,
        adapter="bybit",
        base_url=base_url,
        categories={
            Category.SPOT.value: CategoryEndpoint(EXECUTION_PATH, window),
            Category.LINEAR.value: CategoryEndpoint(EXECUTION_PATH, window),
            Category.INVERSE.value: CategoryEndpoint(EXECUTION_PATH, window),
            Category.OPTION.value: CategoryEndpoint(EXECUTION_PATH, window),
        },
        connection_path="/v5/account/wallet-balance",
        connection_params={"accountType": "UNIFIED"},
        recv_window=5000,
        page_size=MAX_PAGE_SIZE,
        error_codes=BYBIT_ERROR_CODES,
    )


def _fee_currency(item: Mapping[str, Any], category: str) -> str:
    explicit = item.get("feeCurrency")
    if explicit:
        return str(explicit)
    symbol = str(item.get("symbol") or "")
    if category == Category.INVERSE.value and symbol.endswith("USD"):
        return symbol[: -len("USD")]
    if category == Category.LINEAR.value:
        return "USDC" if symbol.endswith("PERP") or symbol.endswith("USDC") else "USDT"
    return ""


class BybitTradeAdapter(TradeHistoryAdapter):
    """Header signed ``retCode`` envelope with cursor pagination."""

    def _signed(self, credential: ExchangeCredential, path: str, params: Mapping[str, Any]) -> PreparedRequest:
        signed = signed_headers(
            credential.api_key,
            credential.api_secret,
            params,
            timestamp=self.timestamp(),
            recv_window=self.settings.recv_window,
            names=self.settings.header_names,
        )
        url = path if not signed.query else f"{path}?{signed.query}"
        return PreparedRequest(url=url, headers=signed.headers)

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
        params = {
            "category": category,
            "symbol": symbol,
            "startTime": window.start,
            "endTime": window.end - 1,
            "limit": limit,
            "cursor": cursor,
        }
        return self._signed(credential, self.settings.url_for(category), params)

    def _envelope(self, response: HttpResponse, *, category: Optional[str] = None) -> Mapping[str, Any]:
        body = self.decode(response, category=category)
        if not isinstance(body, Mapping) or "retCode" not in body:
            if not response.ok:
                raise self.error_for(response, None, str(body)[:200], category=category)
            raise self.malformed("Response is missing 'retCode'", body, category=category)
        ret_code = body.get("retCode")
        if str(ret_code) != "0":
            raise self.error_for(response, ret_code, str(body.get("retMsg") or ""), category=category)
        if not response.ok:
            raise self.error_for(response, None, str(body.get("retMsg") or ""), category=category)
        return body

    def parse_page(self, response: HttpResponse, category: str, window: SyncWindow, *, limit: int) -> Page:
        body = self._envelope(response, category=category)
        result = body.get("result")
        items = result.get("list") if isinstance(result, Mapping) else None
        if not isinstance(items, list):
            raise self.malformed("Response is missing 'result.list'", body, category=category)

        trades: List[RawTrade] = []
        rejected: List[str] = []
        for item in items:
            if not isinstance(item, Mapping):
                rejected.append(f"Execution entry is not an object: {item!r}"[:200])
                continue
            try:
                self.require(item, ("execId", "symbol", "side", "execQty", "execPrice", "execTime"))
                executed_at = int(item["execTime"])
            except (KeyError, TypeError, ValueError) as exc:
                rejected.append(f"Execution {item.get('execId', '?')} is malformed: {exc}")
                continue
            trades.append(
                RawTrade(
                    exec_id=str(item["execId"]),
                    symbol=str(item["symbol"]),
                    side=str(item["side"]),
                    size=str(item["execQty"]),
                    price=str(item["execPrice"]),
                    fee=str(item.get("execFee") or ""),
                    fee_currency=_fee_currency(item, category),
                    executed_at=executed_at,
                    category=category,
                    payload=dict(item),
                )
            )
        cursor = result.get("nextPageCursor") or None
        return Page(trades=tuple(trades), next_cursor=str(cursor) if cursor else None, rejected=tuple(rejected))

    def test_connection_request(self, credential: ExchangeCredential) -> PreparedRequest:
        url = self.settings.base_url.rstrip("/") + self.settings.connection_path
        return self._signed(credential, url, dict(self.settings.connection_params))

    def check_connection(self, response: HttpResponse) -> None:
        self._envelope(response)


__all__ = ["BYBIT_ERROR_CODES", "BybitTradeAdapter", "default_settings"]
