"""Keyboard input handling for the dualsync player."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Callable
from enum import Enum, auto
from typing import TYPE_CHECKING

import readchar

from dualsync.utils import format_clock

if TYPE_CHECKING:
    from dualsync.controller import PlaybackController
    from dualsync.ui import PlayerUI

logger = logging.getLogger(__name__)


class FocusTarget(Enum):
    """Where keyboard focus currently is."""

    PLAYER = auto()
    TEXT_INPUT = auto()


class InputDispatcher:
    """Maps transport shortcuts to controller operations.

    Keys are only dispatched while the dispatcher is attached and focus is
    not inside a text-entry element.
    """

    def __init__(self, controller: PlaybackController, *, skip_seconds: float = 5.0) -> None:
        """Initialize the dispatcher.

        Args:
            controller: Controller receiving the operations.
            skip_seconds: Step for the arrow-key skips.
        """
        self._attached = False
        self._bindings: dict[str, tuple[str, Callable[[], None]]] = {
            " ": ("space", controller.toggle_play_pause),
            readchar.key.RIGHT: ("forward", lambda: controller.skip(skip_seconds)),
            readchar.key.LEFT: ("back", lambda: controller.skip(-skip_seconds)),
        }
        # 0-9 jump to 0%, 10%, ... 90% of the duration
        for digit in range(10):
            self._bindings[str(digit)] = (
                "jump",
                lambda digit=digit: controller.seek_to_percent(digit * 10),
            )

    @property
    def attached(self) -> bool:
        """Whether the dispatcher is registered."""
        return self._attached

    def attach(self) -> None:
        """Start dispatching keys."""
        self._attached = True

    def detach(self) -> None:
        """Stop dispatching keys."""
        self._attached = False

    def shortcut_for(self, key: str) -> str | None:
        """Return the shortcut name bound to ``key``, if any."""
        binding = self._bindings.get(key)
        return binding[0] if binding else None

    def dispatch(self, key: str, target: FocusTarget = FocusTarget.PLAYER) -> bool:
        """Run the operation bound to ``key``.

        Returns:
            True if an operation was dispatched.
        """
        if not self._attached or target is FocusTarget.TEXT_INPUT:
            return False
        binding = self._bindings.get(key)
        if binding is None:
            return False
        binding[1]()
        return True


def parse_timestamp(text: str) -> float | None:
    """Parse ``SS``, ``MM:SS`` or ``HH:MM:SS`` (seconds may be fractional).

    Returns:
        The position in seconds, or None if the text is not a timestamp.
    """
    parts = text.strip().split(":")
    if not parts or len(parts) > 3 or any(not part for part in parts):
        return None
    try:
        seconds = float(parts[-1])
        whole = [int(part) for part in parts[:-1]]
    except ValueError:
        return None
    if seconds < 0 or any(value < 0 for value in whole):
        return None
    if whole and seconds >= 60:
        return None
    minutes = 0
    for value in whole:
        minutes = minutes * 60 + value
    return seconds + minutes * 60


class TimePrompt:
    """Single-line "go to time" text entry.

    While active it owns keyboard focus: transport shortcuts are suppressed
    and keys edit the buffer instead.
    """

    _ALLOWED = frozenset("0123456789:.")

    def __init__(
        self,
        on_submit: Callable[[float], None],
        *,
        duration: Callable[[], float] | None = None,
    ) -> None:
        """Initialize the prompt.

        Args:
            on_submit: Called with the parsed position when Enter is pressed.
            duration: Returns the media duration. When it is known, positions
                past it are rejected and the prompt stays open.
        """
        self._on_submit = on_submit
        self._duration = duration
        self._active = False
        self._buffer = ""
        self._error: str | None = None

    @property
    def active(self) -> bool:
        """Whether the prompt has focus."""
        return self._active

    @property
    def text(self) -> str:
        """Current buffer contents."""
        return self._buffer

    @property
    def error(self) -> str | None:
        """Message for the last rejected input, if any."""
        return self._error

    @property
    def focus(self) -> FocusTarget:
        """Focus target implied by the prompt state."""
        return FocusTarget.TEXT_INPUT if self._active else FocusTarget.PLAYER

    def open(self) -> None:
        """Give focus to the prompt with an empty buffer."""
        self._active = True
        self._buffer = ""
        self._error = None

    def close(self) -> None:
        """Return focus to the player."""
        self._active = False
        self._buffer = ""

    def handle_key(self, key: str) -> None:
        """Edit the buffer, submit on Enter or cancel on Escape."""
        if key in (readchar.key.ENTER, readchar.key.CR, readchar.key.LF):
            position = parse_timestamp(self._buffer)
            if position is None:
                self._error = f"Not a time: {self._buffer or '(empty)'}"
                return
            duration = self._duration() if self._duration is not None else 0.0
            if duration > 0 and position > duration:
                self._error = f"Past the end ({format_clock(duration)})"
                return
            self.close()
            self._on_submit(position)
        elif key == readchar.key.ESC:
            self.close()
        elif key in (readchar.key.BACKSPACE, "\x08"):
            self._buffer = self._buffer[:-1]
        elif key in self._ALLOWED:
            self._buffer += key
            self._error = None


async def keyboard_loop(
    dispatcher: InputDispatcher,
    prompt: TimePrompt,
    ui: PlayerUI | None = None,
) -> None:
    """Read single keypresses until the user quits.

    Args:
        dispatcher: Dispatcher for transport shortcuts.
        prompt: The go-to-time prompt.
        ui: Optional UI to highlight shortcuts and show the prompt.
    """
    if not sys.stdin.isatty():
        logger.info("Running without interactive input")
        await asyncio.Event().wait()
        return

    loop = asyncio.get_running_loop()
    while True:
        try:
            # readkey blocks, keep it off the event loop
            key = await loop.run_in_executor(None, readchar.readkey)
        except (asyncio.CancelledError, KeyboardInterrupt):
            break

        if key == readchar.key.CTRL_C:
            break

        if prompt.active:
            prompt.handle_key(key)
            if ui is not None:
                ui.refresh()
            continue

        if key in ("q", "Q"):
            if ui is not None:
                ui.highlight_shortcut("quit")
            break

        if key == "/":
            prompt.open()
            if ui is not None:
                ui.highlight_shortcut("goto")
            continue

        shortcut = dispatcher.shortcut_for(key)
        if dispatcher.dispatch(key, prompt.focus) and shortcut and ui is not None:
            ui.highlight_shortcut(shortcut)
