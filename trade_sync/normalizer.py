"""Convert raw exchange trades into canonical records and remove duplicates."""

from __future__ import annotations

import logging
import math
from typing import Dict, Iterable, List, Tuple

from .errors import ParseError
from .models import CanonicalTrade, RawTrade, SyncWarning, WarningKind

logger = logging.getLogger(__name__)

_SIDE_ALIASES = {
    "buy": "buy",
    "b": "buy",
    "bid": "buy",
    "sell": "sell",
    "s": "sell",
    "ask": "sell",
}


def _normalise_side(raw_side: str, exec_id: str) -> str:
    side = _SIDE_ALIASES.get(str(raw_side).strip().lower())
    if side is None:
        raise ParseError(f"Trade {exec_id} has unknown side {raw_side!r}")
    return side


def _to_float(value: object, field_name: str, exec_id: str, *, allow_empty: bool = False) -> float:
    if value in (None, ""):
        if allow_empty:
            return 0.0
        raise ParseError(f"Trade {exec_id} is missing '{field_name}'")
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ParseError(f"Trade {exec_id} has non-numeric '{field_name}': {value!r}") from exc
    if not math.isfinite(number):
        raise ParseError(f"Trade {exec_id} has non-finite '{field_name}': {value!r}")
    return number


def normalize(raw: RawTrade, exchange_id: str) -> CanonicalTrade:
    if not raw.exec_id:
        raise ParseError("Trade is missing its execution id", payload=raw.payload)
    quantity = abs(_to_float(raw.size, "size", raw.exec_id))
    return CanonicalTrade(
        exchange_id=str(exchange_id),
        exchange_trade_id=str(raw.exec_id),
        symbol=str(raw.symbol),
        side=_normalise_side(raw.side, raw.exec_id),
        quantity=quantity,
        price=_to_float(raw.price, "price", raw.exec_id),
        fee=_to_float(raw.fee, "fee", raw.exec_id, allow_empty=True),
        fee_currency=str(raw.fee_currency or ""),
        executed_at=int(raw.executed_at),
        category=str(raw.category),
    )


def dedup(trades: Iterable[CanonicalTrade]) -> Tuple[List[CanonicalTrade], List[SyncWarning]]:
    """Collapse trades sharing ``(exchange_id, exchange_trade_id)``.

    The first occurrence wins. A later duplicate whose payload differs is kept
    out of the result but reported as a ``duplicate_conflict`` warning. The
    returned list is ordered by execution time, then trade id.
    """

    seen: Dict[Tuple[str, str], CanonicalTrade] = {}
    warnings: List[SyncWarning] = []
    for trade in trades:
        existing = seen.get(trade.key)
        if existing is None:
            seen[trade.key] = trade
            continue
        if existing != trade:
            logger.warning(
                "Conflicting duplicate trade %s on %s (kept category=%s, dropped category=%s)",
                trade.exchange_trade_id,
                trade.exchange_id,
                existing.category,
                trade.category,
            )
            warnings.append(
                SyncWarning(
                    kind=WarningKind.DUPLICATE_CONFLICT,
                    message=(
                        f"Trade {trade.exchange_trade_id} was returned twice with different values; "
                        f"kept the {existing.category} record"
                    ),
                    category=trade.category,
                )
            )
    ordered = sorted(seen.values(), key=lambda item: item.sort_key)
    return ordered, warnings


__all__ = ["dedup", "normalize"]
