"""Trade sync orchestration: windows x categories x pages with bounded concurrency."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from services.telemetry import ResiliencePolicy, Telemetry

from .classifier import Disposition, backoff_delay
from .errors import ConfigurationError, ExchangeResponseError, ParseError, SyncDeadlineExceeded, SyncError
from .models import (
    DIAGNOSTIC_MESSAGES,
    MS_PER_DAY,
    CanonicalTrade,
    ConnectionDiagnostic,
    ConnectionTestResult,
    ExchangeCredential,
    SyncResult,
    SyncWarning,
    SyncWindow,
    WarningKind,
)
from .normalizer import dedup, normalize
from .pacing import RequestPacer, SleepFunc
from .windows import plan_windows

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from services.exchanges.base import Page, TradeHistoryAdapter


DEFAULT_LOOKBACK_DAYS = 180

LoggerLike = Union[logging.Logger, logging.LoggerAdapter]
# (category index, symbol index, window index, page number)
PagePosition = Tuple[int, ...]


class TradeSyncService:
    """Public entry points for connection tests and trade history syncs.

    One service wraps one exchange adapter. Credentials are passed per call and
    never stored on the service.
    """

    def __init__(
        self,
        adapter: "TradeHistoryAdapter",
        *,
        policy: Optional[ResiliencePolicy] = None,
        telemetry: Optional[Telemetry] = None,
        logger: Optional[LoggerLike] = None,
        sleep: Optional[SleepFunc] = None,
        clock: Callable[[], float] = time.time,
        pacer: Optional[RequestPacer] = None,
        default_lookback_days: int = DEFAULT_LOOKBACK_DAYS,
    ) -> None:
        self.adapter = adapter
        self.policy = policy or ResiliencePolicy()
        self.telemetry = telemetry
        base_logger = logger if logger is not None else logging.getLogger(__name__)
        self.log = logging.LoggerAdapter(base_logger, {"exchange_id": adapter.exchange_id})
        self._sleep = sleep or asyncio.sleep
        self._clock = clock
        self.pacer = pacer or RequestPacer(self.policy.inter_request_delay, sleep=self._sleep)
        self.default_lookback_days = default_lookback_days

    @property
    def exchange_id(self) -> str:
        return self.adapter.exchange_id

    def _check_credential(self, credential: ExchangeCredential) -> None:
        if credential.exchange_id != self.exchange_id:
            raise ConfigurationError(
                f"Credential for '{credential.exchange_id}' cannot be used with '{self.exchange_id}'",
                exchange_id=self.exchange_id,
            )
        if not credential.api_key or not credential.api_secret:
            raise ConfigurationError("API key and secret must both be provided", exchange_id=self.exchange_id)

    async def request(self, call: Callable[[], Awaitable[Any]]) -> Any:
        """Run one paced outbound call and record its latency."""

        await self.pacer.wait()
        started = time.perf_counter()
        ok = False
        try:
            result = await call()
            ok = True
            return result
        finally:
            if self.telemetry is not None:
                duration_ms = (time.perf_counter() - started) * 1000
                self.telemetry.record_request(self.exchange_id, duration_ms, ok=ok)

    async def test_connection(
        self, credential: ExchangeCredential, *, deadline: Optional[float] = None
    ) -> ConnectionTestResult:
        """Issue one authenticated call and translate the outcome into a diagnostic.

        ``deadline`` is a budget in seconds for the whole call.
        """

        self._check_credential(credential)
        timeout = self.policy.connection_test_timeout
        call = self.request(lambda: self.adapter.verify_credentials(credential, timeout=timeout))
        try:
            if deadline is None:
                await call
            else:
                await asyncio.wait_for(call, timeout=deadline)
        except asyncio.TimeoutError:
            self.log.warning("Connection test for %s exceeded its %.1fs deadline", self.exchange_id, deadline)
            diagnostic = ConnectionDiagnostic.NETWORK_ERROR
            return ConnectionTestResult(False, diagnostic, DIAGNOSTIC_MESSAGES[diagnostic])
        except SyncError as exc:
            classification = exc.classification
            diagnostic = classification.diagnostic if classification else ConnectionDiagnostic.UNKNOWN
            self.log.warning("Connection test for %s failed: %s", self.exchange_id, exc)
            if self.telemetry is not None:
                self.telemetry.mark_service_degraded(self.exchange_id, diagnostic.value)
            return ConnectionTestResult(False, diagnostic, DIAGNOSTIC_MESSAGES[diagnostic], code=exc.code)

        self.log.info("Connection test for %s succeeded", self.exchange_id)
        if self.telemetry is not None:
            self.telemetry.mark_service_healthy(self.exchange_id)
        return ConnectionTestResult(True, ConnectionDiagnostic.OK, DIAGNOSTIC_MESSAGES[ConnectionDiagnostic.OK])

    async def fetch_trades(
        self,
        credential: ExchangeCredential,
        symbol: Optional[str] = None,
        since: Optional[int] = None,
        until: Optional[int] = None,
        page_limit: Optional[int] = None,
        *,
        deadline: Optional[float] = None,
    ) -> SyncResult:
        """Fetch, normalize and deduplicate trades executed in ``[since, until)``.

        ``since`` and ``until`` are epoch milliseconds and default to the last
        :attr:`default_lookback_days` days. ``page_limit`` caps the page size
        requested from the exchange. ``deadline`` bounds the whole call in
        seconds; on expiry the trades gathered so far are returned together
        with a :class:`SyncDeadlineExceeded` error.
        """

        self._check_credential(credential)
        now_ms = int(self._clock() * 1000)
        until_ms = now_ms if until is None else int(until)
        since_ms = now_ms - self.default_lookback_days * MS_PER_DAY if since is None else int(since)

        run = _SyncRun(self, credential, symbol, since_ms, until_ms, page_limit)
        self.log.info(
            "Syncing %s trades from %s to %s (symbol=%s)", self.exchange_id, since_ms, until_ms, symbol or "all"
        )
        if deadline is None:
            await run.execute()
        else:
            try:
                await asyncio.wait_for(run.execute(), timeout=deadline)
            except asyncio.TimeoutError:
                run.deadline_exceeded(deadline)

        result = run.result()
        self.log.info(
            "Sync for %s finished: %d trades, %d warnings, error=%s",
            self.exchange_id,
            len(result.trades),
            len(result.warnings),
            type(result.error).__name__ if result.error else None,
        )
        if self.telemetry is not None:
            self.telemetry.record_sync(
                self.exchange_id, trades=len(result.trades), warnings=len(result.warnings), error=result.error
            )
        return result


class _SyncRun:
    """Mutable state of one ``fetch_trades`` call."""

    def __init__(
        self,
        service: TradeSyncService,
        credential: ExchangeCredential,
        symbol: Optional[str],
        since: int,
        until: int,
        page_limit: Optional[int],
    ) -> None:
        self.service = service
        self.adapter = service.adapter
        self.policy = service.policy
        self.log = service.log
        self.credential = credential
        self.symbol = symbol
        self.since = since
        self.until = until
        self.page_limit = page_limit
        self._lock = asyncio.Lock()
        self._semaphore = asyncio.Semaphore(self.policy.max_concurrency)
        self._batches: List[Tuple[PagePosition, List[CanonicalTrade]]] = []
        self._chunk_failures: Dict[str, int] = {}
        self._warnings: List[SyncWarning] = []
        self._error: Optional[SyncError] = None
        self._aborted = False
        self._probe_claimed = False
        self._probe_done = asyncio.Event()

    async def execute(self) -> None:
        tasks = [
            asyncio.ensure_future(self._run_category(index, category))
            for index, category in enumerate(self.adapter.list_categories())
        ]
        try:
            await asyncio.gather(*tasks)
        except SyncError:
            if not self._aborted:
                raise
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    def deadline_exceeded(self, deadline: float) -> None:
        message = f"Sync deadline of {deadline:.1f}s exceeded; returning trades gathered so far"
        self.log.warning("%s (%s)", message, self.adapter.exchange_id)
        self._warnings.append(SyncWarning(WarningKind.DEADLINE_EXCEEDED, message))
        if self._error is None:
            self._error = SyncDeadlineExceeded(message, exchange_id=self.adapter.exchange_id)

    def result(self) -> SyncResult:
        if self._aborted:
            return SyncResult(trades=[], warnings=list(self._warnings), error=self._error)
        # Pages are merged in plan order so the surviving duplicate does not depend on latency.
        ordered = [trade for _, batch in sorted(self._batches, key=lambda item: item[0]) for trade in batch]
        trades, conflicts = dedup(ordered)
        return SyncResult(trades=trades, warnings=list(self._warnings) + conflicts, error=self._error)

    async def _warn(self, kind: WarningKind, message: str, **context: Any) -> None:
        async with self._lock:
            self._warnings.append(SyncWarning(kind, message, **context))

    def _symbols_for(self, category: str) -> Sequence[Optional[str]]:
        if self.symbol:
            return [self.symbol]
        if self.adapter.requires_symbol:
            return list(self.adapter.settings.default_symbols)
        return [None]

    async def _run_category(self, index: int, category: str) -> None:
        async with self._semaphore:
            if self._aborted:
                return
            symbols = self._symbols_for(category)
            if not symbols:
                self.log.warning("Skipping %s %s: a symbol is required", self.adapter.exchange_id, category)
                await self._warn(
                    WarningKind.SYMBOL_REQUIRED,
                    f"{self.adapter.exchange_id} requires a symbol to list {category} trades",
                    category=category,
                )
                return
            windows = plan_windows(self.since, self.until, self.adapter.max_window(category))
            for symbol_index, symbol in enumerate(symbols):
                for window_index, window in enumerate(windows):
                    position = (index, symbol_index, window_index)
                    if not await self._run_window(category, symbol, window, position):
                        return

    async def _run_window(
        self, category: str, symbol: Optional[str], window: SyncWindow, position: PagePosition
    ) -> bool:
        """Fetch every page of one window. Returns ``False`` when the category must be skipped."""

        cursor: Optional[str] = None
        seen_cursors = set()
        pages = 0
        while True:
            try:
                page = await self._fetch_with_retry(category, symbol, window, cursor)
            except SyncError as exc:
                return await self._handle_failure(exc, category, window)
            pages += 1
            self._chunk_failures[category] = 0
            await self._accept(page, category, window, position + (pages,))
            next_cursor = page.next_cursor
            if not next_cursor:
                return True
            if next_cursor == cursor or next_cursor in seen_cursors:
                self.log.warning("Pagination for %s %s returned a repeated cursor", self.adapter.exchange_id, category)
                await self._warn(
                    WarningKind.CHUNK_FAILED,
                    f"Pagination stopped: cursor {next_cursor!r} was returned twice",
                    category=category,
                    window=window,
                )
                return True
            if pages >= self.policy.max_pages_per_window:
                self.log.warning(
                    "Page limit of %d reached for %s %s %s",
                    self.policy.max_pages_per_window,
                    self.adapter.exchange_id,
                    category,
                    window.describe(),
                )
                await self._warn(
                    WarningKind.PAGE_LIMIT_REACHED,
                    f"Stopped after {pages} pages; later trades in this window were not fetched",
                    category=category,
                    window=window,
                )
                return True
            seen_cursors.add(cursor)
            cursor = next_cursor

    async def _handle_failure(self, exc: SyncError, category: str, window: SyncWindow) -> bool:
        classification = exc.classification
        disposition = classification.disposition if classification else Disposition.FAIL_CHUNK
        if disposition is Disposition.ABORT:
            raise exc
        if disposition is Disposition.SKIP_CATEGORY:
            self.log.warning("Skipping %s %s: %s", self.adapter.exchange_id, category, exc)
            await self._warn(WarningKind.CATEGORY_SKIPPED, str(exc), category=category, code=exc.code)
            return False
        kind = WarningKind.PARSE_ERROR if isinstance(exc, ParseError) else WarningKind.CHUNK_FAILED
        self.log.warning("Chunk %s %s %s failed: %s", self.adapter.exchange_id, category, window.describe(), exc)
        await self._warn(kind, str(exc), category=category, window=window, code=exc.code)
        if not isinstance(exc, ExchangeResponseError):
            return True
        failures = self._chunk_failures.get(category, 0) + 1
        self._chunk_failures[category] = failures
        if failures < self.policy.max_chunk_failures:
            return True
        self.log.warning(
            "Skipping %s %s after %d consecutive unrecognised errors", self.adapter.exchange_id, category, failures
        )
        await self._warn(
            WarningKind.CATEGORY_SKIPPED,
            f"Skipped the rest of {category} after {failures} consecutive unrecognised exchange errors",
            category=category,
            code=exc.code,
        )
        return False

    async def _fetch_with_retry(
        self, category: str, symbol: Optional[str], window: SyncWindow, cursor: Optional[str]
    ) -> "Page":
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._guarded_request(category, symbol, window, cursor)
            except SyncError as exc:
                classification = exc.classification
                if (
                    classification is None
                    or classification.disposition is not Disposition.RETRY
                    or attempt > self.policy.max_retries
                ):
                    raise
                delay = backoff_delay(attempt, self.policy.retry_backoff, classification.retry_after)
                self.log.warning(
                    "Retrying %s %s in %.2fs (attempt %d/%d): %s",
                    self.adapter.exchange_id,
                    category,
                    delay,
                    attempt,
                    self.policy.max_retries,
                    exc,
                )
                await self.service._sleep(delay)

    async def _guarded_request(
        self, category: str, symbol: Optional[str], window: SyncWindow, cursor: Optional[str]
    ) -> "Page":
        # The first request of a sync probes the credentials; every other
        # request waits for its outcome.
        probe = False
        if not self._probe_done.is_set():
            if self._probe_claimed:
                await self._probe_done.wait()
            else:
                self._probe_claimed = True
                probe = True
        if self._aborted and self._error is not None:
            raise self._error

        try:
            return await self.service.request(
                lambda: self.adapter.fetch_page(
                    self.credential,
                    category,
                    window,
                    cursor,
                    symbol=symbol,
                    limit=self.page_limit,
                    timeout=self.policy.request_timeout,
                )
            )
        except SyncError as exc:
            if exc.classification is not None and exc.classification.disposition is Disposition.ABORT:
                if not self._aborted:
                    self.log.error("Aborting %s sync: %s", self.adapter.exchange_id, exc)
                    self._aborted = True
                    self._error = exc
            raise
        finally:
            if probe:
                self._probe_done.set()

    async def _accept(self, page: "Page", category: str, window: SyncWindow, position: PagePosition) -> None:
        trades: List[CanonicalTrade] = []
        warnings: List[SyncWarning] = []
        for reason in page.rejected:
            warnings.append(SyncWarning(WarningKind.PARSE_ERROR, reason, category=category, window=window))
        for raw in page.trades:
            try:
                trades.append(normalize(raw, self.adapter.exchange_id))
            except ParseError as exc:
                warnings.append(SyncWarning(WarningKind.PARSE_ERROR, str(exc), category=category, window=window))
        if warnings:
            self.log.warning(
                "Dropped %d malformed trade(s) from %s %s", len(warnings), self.adapter.exchange_id, category
            )
        async with self._lock:
            self._batches.append((position, trades))
            self._warnings.extend(warnings)


__all__ = ["DEFAULT_LOOKBACK_DAYS", "TradeSyncService"]
