"""Process-wide, reference-counted loading of shared runtimes.

Several players in one process share a single copy of a runtime (for the
primary source, the resolved and probed media player executable). The first
:meth:`RuntimeLoader.acquire` starts the load; concurrent callers wait for
the same load instead of starting their own. The runtime is disposed when
the last holder releases it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from dualsync.utils import create_task

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


class RuntimeLoader(Generic[_T]):
    """Lazily load a runtime once and share it between holders."""

    def __init__(
        self,
        factory: Callable[[], Awaitable[_T]],
        *,
        dispose: Callable[[_T], None] | None = None,
        name: str = "runtime",
    ) -> None:
        """Initialize the loader.

        Args:
            factory: Coroutine function producing the runtime.
            dispose: Called with the runtime when the last holder releases it.
            name: Label used in log messages.
        """
        self._factory = factory
        self._dispose = dispose
        self._name = name
        self._task: asyncio.Task[_T] | None = None
        self._refcount = 0

    @property
    def refcount(self) -> int:
        """Number of holders that acquired and have not released the runtime."""
        return self._refcount

    @property
    def loaded(self) -> bool:
        """Whether a runtime is loaded and held."""
        return self._task is not None and self._task.done() and self._refcount > 0

    async def acquire(self) -> _T:
        """Return the shared runtime, loading it on first use.

        Load failures are not retried here: they propagate to every caller
        waiting on that load, and the next call starts a fresh load.

        Raises:
            Exception: Whatever the factory raised.
        """
        if self._task is None:
            logger.debug("Loading %s", self._name)
            self._task = create_task(self._load(), name=f"load-{self._name}")
        task = self._task
        try:
            # One waiter being cancelled must not cancel the shared load
            runtime = await asyncio.shield(task)
        except asyncio.CancelledError:
            raise
        except Exception:
            if self._task is task:
                self._task = None
            raise
        self._refcount += 1
        return runtime

    def release(self) -> None:
        """Give back one reference, disposing the runtime on the last one."""
        if self._refcount == 0:
            logger.warning("Release of %s without a matching acquire", self._name)
            return
        self._refcount -= 1
        if self._refcount > 0:
            return
        task = self._task
        self._task = None
        if task is not None and task.done() and not task.cancelled() and task.exception() is None:
            logger.debug("Disposing %s", self._name)
            if self._dispose is not None:
                self._dispose(task.result())

    async def _load(self) -> _T:
        return await self._factory()
