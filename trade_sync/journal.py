"""Journal stores receiving canonical trades."""

from __future__ import annotations

import json
import logging
import tempfile
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Tuple

from .models import CanonicalTrade

logger = logging.getLogger(__name__)

TradeKey = Tuple[str, str]


class JournalStore:
    def save_trades(self, owner: str, trades: Iterable[CanonicalTrade]) -> int:  # pragma: no cover - interface
        """Persist ``trades`` for ``owner`` and return how many were new."""
        raise NotImplementedError

    def list_trades(self, owner: str) -> List[CanonicalTrade]:  # pragma: no cover - interface
        raise NotImplementedError


class InMemoryJournalStore(JournalStore):
    """Process local store keyed by owner and ``(exchange_id, exchange_trade_id)``.

    Saving the same trade twice is a no-op, so repeated syncs over overlapping
    ranges never duplicate journal entries.
    """

    def __init__(self) -> None:
        self._records: Dict[str, Dict[TradeKey, CanonicalTrade]] = {}
        self._lock = threading.Lock()

    def save_trades(self, owner: str, trades: Iterable[CanonicalTrade]) -> int:
        inserted = 0
        with self._lock:
            bucket = self._records.setdefault(owner, {})
            for trade in trades:
                if trade.key in bucket:
                    continue
                bucket[trade.key] = trade
                inserted += 1
        logger.debug("Stored %d new trade(s) for owner %s", inserted, owner)
        return inserted

    def list_trades(self, owner: str) -> List[CanonicalTrade]:
        with self._lock:
            trades = list(self._records.get(owner, {}).values())
        return sorted(trades, key=lambda trade: trade.sort_key)


class FileJournalStore(InMemoryJournalStore):
    """JSON file backed journal, rewritten atomically after each save."""

    def __init__(self, path: Path) -> None:
        super().__init__()
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._load()

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise ValueError(f"Journal file {self._path} is unreadable: {exc}") from exc
        for owner, entries in (payload or {}).items():
            bucket = self._records.setdefault(str(owner), {})
            for entry in entries:
                entry = dict(entry)
                entry.pop("datetime", None)
                trade = CanonicalTrade(**entry)
                bucket[trade.key] = trade

    def save_trades(self, owner: str, trades: Iterable[CanonicalTrade]) -> int:
        inserted = super().save_trades(owner, trades)
        if inserted:
            with self._lock:
                payload = {
                    name: [trade.to_dict() for trade in sorted(bucket.values(), key=lambda t: t.sort_key)]
                    for name, bucket in self._records.items()
                }
            _atomic_write(self._path, json.dumps(payload, indent=2))
        return inserted


def _atomic_write(path: Path, content: str) -> None:
    tmp = tempfile.NamedTemporaryFile("w", delete=False, dir=path.parent, encoding="utf-8")
    try:
        with tmp as f:
            f.write(content)
            f.flush()
        Path(tmp.name).replace(path)
    except Exception:
        Path(tmp.name).unlink(missing_ok=True)
        raise


__all__ = ["FileJournalStore", "InMemoryJournalStore", "JournalStore"]
