"""Split a sync range into exchange sized request windows."""

from __future__ import annotations

from typing import List, Optional

from .models import SyncWindow


def plan_windows(since: int, until: int, max_window: Optional[int]) -> List[SyncWindow]:
    """Return contiguous windows covering ``[since, until)`` exactly once.

    Each window spans at most ``max_window`` milliseconds; ``None`` means the
    exchange imposes no limit and a single window is returned. An empty or
    inverted range yields no windows.
    """

    if max_window is not None and max_window <= 0:
        raise ValueError(f"max_window must be positive, got {max_window}")
    if until <= since:
        return []
    if max_window is None:
        return [SyncWindow(since, until)]

    windows: List[SyncWindow] = []
    start = since
    while start < until:
        end = min(start + max_window, until)
        windows.append(SyncWindow(start, end))
        start = end
    return windows


__all__ = ["plan_windows"]
