"""Resilience settings, request metrics and exchange health tracking."""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

MAX_CONCURRENCY_CEILING = 4


@dataclass
class ResiliencePolicy:
    """Timeouts, retry budget and politeness settings for exchange calls."""

    request_timeout: float = 30.0
    connection_test_timeout: float = 15.0
    max_retries: int = 3
    retry_backoff: float = 0.5
    inter_request_delay: float = 0.1
    max_concurrency: int = MAX_CONCURRENCY_CEILING
    max_pages_per_window: int = 50
    max_chunk_failures: int = 3

    def __post_init__(self) -> None:
        if self.request_timeout <= 0 or self.connection_test_timeout <= 0:
            raise ValueError("Request timeouts must be positive")
        if self.max_retries < 0:
            raise ValueError("max_retries must be zero or positive")
        if self.retry_backoff < 0 or self.inter_request_delay < 0:
            raise ValueError("retry_backoff and inter_request_delay must not be negative")
        if not 1 <= self.max_concurrency <= MAX_CONCURRENCY_CEILING:
            raise ValueError(f"max_concurrency must be between 1 and {MAX_CONCURRENCY_CEILING}")
        if self.max_pages_per_window < 1:
            raise ValueError("max_pages_per_window must be at least 1")
        if self.max_chunk_failures < 1:
            raise ValueError("max_chunk_failures must be at least 1")

    @classmethod
    def from_mapping(cls, payload: Optional[Mapping[str, Any]]) -> "ResiliencePolicy":
        if not payload:
            return cls()
        kwargs: Dict[str, Any] = {}
        for item in fields(cls):
            if item.name not in payload:
                continue
            caster = int if item.type in ("int", int) else float
            try:
                kwargs[item.name] = caster(payload[item.name])
            except (TypeError, ValueError) as exc:
                raise TypeError(f"Resilience setting '{item.name}' must be numeric") from exc
        return cls(**kwargs)


@dataclass
class ServiceStatus:
    status: str
    reason: Optional[str] = None
    last_success: Optional[datetime] = None
    last_checked: Optional[datetime] = None
    failures: int = 0
    successes: int = 0


class Telemetry:
    """Collect request metrics and per-exchange health."""

    def __init__(self, *, policy: Optional[ResiliencePolicy] = None) -> None:
        self.policy = policy or ResiliencePolicy()
        self.metrics: Dict[str, Any] = {}
        self.service_status: Dict[str, ServiceStatus] = {}

    def mark_service_healthy(self, name: str) -> None:
        status = self.service_status.get(name)
        now = datetime.now(timezone.utc)
        if status is None:
            status = ServiceStatus(status="healthy")
            self.service_status[name] = status
        status.status = "healthy"
        status.reason = None
        status.last_success = now
        status.last_checked = now
        status.successes += 1

    def mark_service_degraded(self, name: str, reason: str) -> None:
        status = self.service_status.get(name)
        now = datetime.now(timezone.utc)
        if status is None:
            status = ServiceStatus(status="degraded")
            self.service_status[name] = status
        status.status = "degraded"
        status.reason = reason
        status.last_checked = now
        status.failures += 1

    def record_metric(self, name: str, value: Any) -> None:
        self.metrics[name] = value

    def increment(self, name: str, amount: int = 1) -> None:
        self.metrics[name] = int(self.metrics.get(name, 0)) + amount

    def record_request(self, name: str, duration_ms: float, *, ok: bool) -> None:
        """Record one outbound request to service ``name``."""

        self.record_metric(f"{name}.latency_ms", round(duration_ms, 2))
        self.increment(f"{name}.requests")
        if not ok:
            self.increment(f"{name}.failures")

    def record_sync(
        self, name: str, *, trades: int, warnings: int, error: Optional[BaseException] = None
    ) -> None:
        self.record_metric(f"{name}.last_sync_trades", trades)
        self.record_metric(f"{name}.last_sync_warnings", warnings)
        if error is not None:
            logger.warning("Sync for %s ended with %s: %s", name, type(error).__name__, error)
            self.mark_service_degraded(name, f"{type(error).__name__}: {error}")
        elif warnings:
            self.mark_service_degraded(name, f"{warnings} warning(s) during last sync")
        else:
            self.mark_service_healthy(name)

    def health_snapshot(self) -> Dict[str, Any]:
        services: Dict[str, Any] = {}
        for name, status in self.service_status.items():
            services[name] = {
                "status": status.status,
                "reason": status.reason,
                "last_success": status.last_success.isoformat() if status.last_success else None,
                "last_checked": status.last_checked.isoformat() if status.last_checked else None,
                "failures": status.failures,
                "successes": status.successes,
            }
        overall = "healthy"
        for status in self.service_status.values():
            if status.status != "healthy":
                overall = "degraded"
                break
        return {"status": overall, "services": services, "metrics": dict(self.metrics)}


__all__ = ["MAX_CONCURRENCY_CEILING", "ResiliencePolicy", "ServiceStatus", "Telemetry"]
