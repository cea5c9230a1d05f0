"""Capability protocols and shared plumbing for the two media sources.

A playback session is built from a primary source (remote-controlled, only
reachable through fire-and-forget commands and asynchronous notifications)
and a secondary source (local, with a clock that can be read and written
synchronously). The core only ever talks to them through the protocols in
this module, so the concrete adapters can be swapped for fakes in tests.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)


class SourceError(Exception):
    """Base class for failures reported by a media source."""


class SourceLoadError(SourceError):
    """A source could not be initialised (missing runtime, decode failure, ...)."""


class SourceCommandError(SourceError):
    """A command or clock read failed transiently."""


class PrimaryState(Enum):
    """Transport states reported by the primary source."""

    PLAYING = "playing"
    PAUSED = "paused"
    ENDED = "ended"
    OTHER = "other"


ReadyListener = Callable[[float], None]
StateListener = Callable[[PrimaryState], None]
TimeListener = Callable[[float], None]
SignalListener = Callable[[], None]
ErrorListener = Callable[[str], None]
Unsubscribe = Callable[[], None]


class PrimarySource(Protocol):
    """Remote-controlled source with an asynchronous command/event interface."""

    def load(self, media_id: str) -> None: ...

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def seek(self, time: float, allow_seek_ahead: bool) -> None: ...

    def get_current_time(self) -> float: ...

    def get_duration(self) -> float: ...

    def get_player_state(self) -> PrimaryState: ...

    def destroy(self) -> None: ...

    def add_ready_listener(self, listener: ReadyListener) -> Unsubscribe: ...

    def add_state_listener(self, listener: StateListener) -> Unsubscribe: ...


class SecondarySource(Protocol):
    """Locally-controlled source with a synchronously readable clock."""

    current_time: float

    @property
    def duration(self) -> float: ...

    @property
    def paused(self) -> bool: ...

    def set_source(self, url: str) -> None: ...

    async def load(self) -> None: ...

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def release(self) -> None: ...

    def add_loaded_metadata_listener(self, listener: SignalListener) -> Unsubscribe: ...

    def add_play_listener(self, listener: SignalListener) -> Unsubscribe: ...

    def add_pause_listener(self, listener: SignalListener) -> Unsubscribe: ...

    def add_time_update_listener(self, listener: TimeListener) -> Unsubscribe: ...


class SourceListeners:
    """Multiple listeners per notification type for a single source.

    Adapters emit each native notification once through :meth:`emit`; every
    registered listener is called in registration order. A failing listener
    is logged and does not prevent the others from running.
    """

    def __init__(self, source_name: str) -> None:
        """Initialize the registry.

        Args:
            source_name: Label used in log messages.
        """
        self._source_name = source_name
        self._listeners: dict[str, list[Callable[..., None]]] = {}

    def add(self, event: str, listener: Callable[..., None]) -> Unsubscribe:
        """Register a listener for an event. Returns unsubscribe function."""
        self._listeners.setdefault(event, []).append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(event, [])
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def emit(self, event: str, *args: object) -> None:
        """Dispatch an event to all listeners registered for it."""
        # Copy so listeners may unsubscribe while being dispatched
        for listener in list(self._listeners.get(event, ())):
            try:
                listener(*args)
            except Exception:
                logger.exception("Error in %s %s listener", self._source_name, event)

    def count(self, event: str) -> int:
        """Return how many listeners are registered for an event."""
        return len(self._listeners.get(event, ()))

    def clear(self) -> None:
        """Drop every registered listener."""
        self._listeners.clear()
