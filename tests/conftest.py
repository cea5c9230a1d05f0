"""Shared fixtures: in-memory stand-ins for the two media sources."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest

from dualsync.controller import PlaybackController, PlayerConfig
from dualsync.sources import (
    PrimaryState,
    ReadyListener,
    SignalListener,
    SourceCommandError,
    SourceListeners,
    SourceLoadError,
    StateListener,
    TimeListener,
    Unsubscribe,
)

# Tick fast so timer-driven tests finish quickly
FAST_TICK = 0.01


class FakePrimarySource:
    """Primary source whose clock and notifications are driven by the test."""

    def __init__(self) -> None:
        self.listeners = SourceListeners("fake-primary")
        self.commands: list[tuple] = []
        self.clock = 0.0
        self.duration = 0.0
        self.state = PrimaryState.OTHER
        self.fail_reads = False
        self.destroyed = False

    def load(self, media_id: str) -> None:
        self.commands.append(("load", media_id))

    def play(self) -> None:
        self.commands.append(("play",))
        self.state = PrimaryState.PLAYING

    def pause(self) -> None:
        self.commands.append(("pause",))
        self.state = PrimaryState.PAUSED

    def seek(self, time: float, allow_seek_ahead: bool) -> None:
        self.commands.append(("seek", time, allow_seek_ahead))
        self.clock = time

    def get_current_time(self) -> float:
        if self.fail_reads:
            raise SourceCommandError("clock unavailable")
        return self.clock

    def get_duration(self) -> float:
        return self.duration

    def get_player_state(self) -> PrimaryState:
        return self.state

    def destroy(self) -> None:
        self.destroyed = True
        self.commands.append(("destroy",))

    def add_ready_listener(self, listener: ReadyListener) -> Unsubscribe:
        return self.listeners.add("ready", listener)

    def add_state_listener(self, listener: StateListener) -> Unsubscribe:
        return self.listeners.add("state_changed", listener)

    # Test helpers

    def emit_ready(self, duration: float) -> None:
        self.duration = duration
        self.listeners.emit("ready", duration)

    def emit_state(self, state: PrimaryState) -> None:
        self.state = state
        self.listeners.emit("state_changed", state)

    def command_names(self) -> list[str]:
        return [command[0] for command in self.commands]


class FakeSecondarySource:
    """Secondary source with a plain settable clock."""

    def __init__(self) -> None:
        self.listeners = SourceListeners("fake-secondary")
        self.commands: list[tuple] = []
        self.time_sets: list[float] = []
        self.url: str | None = None
        self.load_error: SourceLoadError | None = None
        self.fail_writes = False
        self.released = False
        self._time = 0.0
        self._duration = 0.0
        self._paused = True

    @property
    def current_time(self) -> float:
        return self._time

    @current_time.setter
    def current_time(self, value: float) -> None:
        if self.fail_writes:
            raise SourceCommandError("seek failed")
        self.time_sets.append(value)
        self._time = value

    @property
    def duration(self) -> float:
        return self._duration

    @property
    def paused(self) -> bool:
        return self._paused

    def set_source(self, url: str) -> None:
        self.url = url

    async def load(self) -> None:
        if self.load_error is not None:
            raise self.load_error
        self.commands.append(("load", self.url))

    def play(self) -> None:
        self.commands.append(("play",))
        self._paused = False

    def pause(self) -> None:
        self.commands.append(("pause",))
        self._paused = True

    def release(self) -> None:
        self.released = True
        self.commands.append(("release",))

    def add_loaded_metadata_listener(self, listener: SignalListener) -> Unsubscribe:
        return self.listeners.add("loaded_metadata", listener)

    def add_play_listener(self, listener: SignalListener) -> Unsubscribe:
        return self.listeners.add("play", listener)

    def add_pause_listener(self, listener: SignalListener) -> Unsubscribe:
        return self.listeners.add("pause", listener)

    def add_time_update_listener(self, listener: TimeListener) -> Unsubscribe:
        return self.listeners.add("time_update", listener)

    # Test helpers

    def drift_to(self, value: float) -> None:
        """Move the clock without recording a command."""
        self._time = value

    def emit_ready(self, duration: float = 0.0) -> None:
        self._duration = duration
        self.listeners.emit("loaded_metadata")

    def emit_play(self) -> None:
        self._paused = False
        self.listeners.emit("play")

    def emit_pause(self) -> None:
        self._paused = True
        self.listeners.emit("pause")

    def emit_time_update(self, value: float) -> None:
        self._time = value
        self.listeners.emit("time_update", value)

    def command_names(self) -> list[str]:
        return [command[0] for command in self.commands]


@pytest.fixture
def primary() -> FakePrimarySource:
    return FakePrimarySource()


@pytest.fixture
def secondary() -> FakeSecondarySource:
    return FakeSecondarySource()


@pytest.fixture
def config() -> PlayerConfig:
    return PlayerConfig(tick_interval=FAST_TICK)


@pytest.fixture
def controller(
    primary: FakePrimarySource, secondary: FakeSecondarySource, config: PlayerConfig
) -> PlaybackController:
    return PlaybackController(primary, secondary, config)


@pytest.fixture
async def ready_controller(
    controller: PlaybackController,
    primary: FakePrimarySource,
    secondary: FakeSecondarySource,
) -> AsyncIterator[PlaybackController]:
    """A mounted session with both sources ready and a 200s duration."""
    await controller.mount("video-id", "audio.mp3")
    primary.emit_ready(200.0)
    secondary.emit_ready(200.0)
    primary.commands.clear()
    secondary.commands.clear()
    secondary.time_sets.clear()
    yield controller
    controller.destroy()
