"""Small helpers shared across the dualsync package."""

from __future__ import annotations

import asyncio
import math
import sys
from collections.abc import Coroutine
from typing import TypeVar

_T = TypeVar("_T")

# eager_start is only accepted by the Task constructor on Python 3.12+
_SUPPORTS_EAGER_START = sys.version_info >= (3, 12)


def create_task(
    coro: Coroutine[None, None, _T],
    *,
    name: str | None = None,
    eager_start: bool = True,
) -> asyncio.Task[_T]:
    """Create a task on the running loop, starting it eagerly where supported.

    Args:
        coro: The coroutine to run as a task.
        name: Optional name for the task (for debugging).
        eager_start: Run the coroutine up to its first suspension immediately.

    Returns:
        The created asyncio Task.
    """
    loop = asyncio.get_running_loop()
    if _SUPPORTS_EAGER_START and eager_start:
        return asyncio.Task(coro, loop=loop, name=name, eager_start=True)
    return loop.create_task(coro, name=name)


def clamp(value: float, lower: float, upper: float) -> float:
    """Clamp ``value`` into ``[lower, upper]``. NaN is passed through."""
    return min(max(value, lower), upper)


def format_clock(seconds: float | None) -> str:
    """Format seconds as MM:SS, or HH:MM:SS past the hour."""
    if seconds is None or not math.isfinite(seconds):
        return "--:--"
    total = max(0, int(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"
