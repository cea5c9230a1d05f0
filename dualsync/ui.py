"""Rich-based terminal UI for the dualsync player."""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Self

from rich.console import Console, ConsoleOptions, RenderResult
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from dualsync.controller import SessionPhase, SessionSnapshot
from dualsync.utils import format_clock

if TYPE_CHECKING:
    from dualsync.keyboard import TimePrompt


class _RefreshableLayout:
    """A renderable that rebuilds on each render cycle."""

    def __init__(self, ui: PlayerUI) -> None:
        self._ui = ui

    def __rich_console__(self, console: Console, options: ConsoleOptions) -> RenderResult:
        """Rebuild and yield the layout on each render."""
        yield self._ui.build_layout()


# Duration in seconds to highlight a pressed shortcut
SHORTCUT_HIGHLIGHT_DURATION = 0.15

_PHASE_STYLES: dict[SessionPhase, tuple[str, str]] = {
    SessionPhase.UNINITIALIZED: ("Starting...", "dim"),
    SessionPhase.LOADING: ("Loading...", "yellow"),
    SessionPhase.PAUSED: ("Paused", "cyan"),
    SessionPhase.PLAYING: ("Playing", "green bold"),
    SessionPhase.ENDED: ("Ended", "magenta"),
}


@dataclass
class UIState:
    """Holds UI-only state; playback state comes from the session snapshot."""

    video_label: str | None = None
    audio_label: str | None = None
    error_message: str | None = None
    highlighted_shortcut: str | None = None
    highlight_time: float = 0.0


class PlayerUI:
    """Live terminal view of a playback session."""

    def __init__(
        self,
        snapshot: Callable[[], SessionSnapshot],
        prompt: TimePrompt | None = None,
        console: Console | None = None,
        *,
        skip_seconds: float = 5.0,
    ) -> None:
        """Initialize the UI.

        Args:
            snapshot: Returns the current session state on every render.
            prompt: Go-to-time prompt shown while it has focus.
            console: Console to render to. Defaults to a new console.
            skip_seconds: Step shown next to the arrow-key shortcuts.
        """
        self._snapshot = snapshot
        self._prompt = prompt
        self._skip_label = f"{skip_seconds:g}s"
        self._console = console or Console()
        self._state = UIState()
        self._live: Live | None = None

    @property
    def state(self) -> UIState:
        """Get the UI state for external updates."""
        return self._state

    def _is_highlighted(self, shortcut: str) -> bool:
        if self._state.highlighted_shortcut != shortcut:
            return False
        return time.monotonic() - self._state.highlight_time < SHORTCUT_HIGHLIGHT_DURATION

    def _shortcut_style(self, shortcut: str) -> str:
        return "bold yellow reverse" if self._is_highlighted(shortcut) else "bold cyan"

    def highlight_shortcut(self, shortcut: str) -> None:
        """Highlight a shortcut temporarily."""
        self._state.highlighted_shortcut = shortcut
        self._state.highlight_time = time.monotonic()
        self.refresh()

    def _build_now_playing_panel(self, snapshot: SessionSnapshot) -> Panel:
        info = Table.grid(padding=(0, 1))
        info.add_column(style="dim", width=7)
        info.add_column()
        info.add_row("Video:", Text(self._state.video_label or "-", style="bold white"))
        info.add_row("Audio:", Text(self._state.audio_label or "-", style="cyan"))

        content = Table.grid()
        content.add_column()
        content.add_row(info)
        content.add_row("")

        # Controls are inert until both sources are ready
        key_style = self._shortcut_style if snapshot.is_interactive else (lambda _: "dim")
        space_label = "pause" if snapshot.is_playing else "play"
        shortcuts = Text()
        shortcuts.append("←", style=key_style("back"))
        shortcuts.append(f" -{self._skip_label}  ", style="dim")
        shortcuts.append("<space>", style=key_style("space"))
        shortcuts.append(f" {space_label}  ", style="dim")
        shortcuts.append("→", style=key_style("forward"))
        shortcuts.append(f" +{self._skip_label}  ", style="dim")
        shortcuts.append("0-9", style=key_style("jump"))
        shortcuts.append(" jump to 0-90%  ", style="dim")
        shortcuts.append("/", style=key_style("goto"))
        shortcuts.append(" go to time", style="dim")
        content.add_row(shortcuts)

        return Panel(content, title="Now Playing", border_style="blue", expand=True)

    def _build_progress_panel(self, snapshot: SessionSnapshot) -> Panel:
        time_str = f"{format_clock(snapshot.current_time)} / {format_clock(snapshot.duration)}"
        seconds_str = f"{math.floor(snapshot.current_time)}/{math.floor(snapshot.duration)}s"

        # Terminal width minus panel borders, time texts and spacing
        bar_width = max(10, self._console.width - 4 - len(time_str) - len(seconds_str) - 8)
        filled = int(bar_width * snapshot.progress_percent / 100)
        empty = bar_width - filled

        bar = Text()
        bar.append("[", style="dim")
        bar.append("=" * filled, style="green bold")
        if filled < bar_width:
            bar.append(">", style="green bold")
            bar.append("-" * max(0, empty - 1), style="dim")
        bar.append("] ", style="dim")

        times = Text()
        times.append(format_clock(snapshot.current_time), style="cyan")
        times.append(" / ", style="dim")
        times.append(format_clock(snapshot.duration), style="cyan")
        times.append(f"  {seconds_str}", style="dim")

        content = Table.grid(expand=True, padding=0)
        content.add_column()
        content.add_column(justify="right", no_wrap=True)
        content.add_row(bar, times)
        return Panel(content, title="Progress", border_style="green", expand=True)

    def _build_prompt_panel(self, prompt: TimePrompt) -> Panel:
        line = Text()
        line.append("Go to ", style="dim")
        line.append(prompt.text, style="bold white")
        line.append("_", style="blink")
        content = Table.grid()
        content.add_column()
        content.add_row(line)
        hint = Text()
        if prompt.error:
            hint.append(prompt.error, style="red")
        else:
            hint.append("SS, MM:SS or HH:MM:SS  ", style="dim")
            hint.append("<enter>", style="bold cyan")
            hint.append(" seek  ", style="dim")
            hint.append("<esc>", style="bold cyan")
            hint.append(" cancel", style="dim")
        content.add_row(hint)
        return Panel(content, title="Go to time", border_style="cyan", expand=True)

    def _build_status_line(self, snapshot: SessionSnapshot) -> Table:
        left = Text("  ")
        if self._state.error_message:
            left.append(self._state.error_message, style="red")
        else:
            label, style = _PHASE_STYLES[snapshot.phase]
            left.append(label, style=style)

        right = Text()
        right.append("q", style=self._shortcut_style("quit"))
        right.append(" quit", style="dim")

        line = Table.grid(expand=True)
        line.add_column(ratio=1)
        line.add_column(justify="right")
        line.add_column(width=2)  # Right padding to align with panel interior
        line.add_row(left, right, "")
        return line

    def build_layout(self) -> Table:
        """Build the complete UI layout from the current session state."""
        snapshot = self._snapshot()
        layout = Table.grid(expand=False)
        # Leave 1 char margin to prevent wrapping
        layout.add_column(width=self._console.width - 1)
        layout.add_row(self._build_now_playing_panel(snapshot))
        layout.add_row(self._build_progress_panel(snapshot))
        if self._prompt is not None and self._prompt.active:
            layout.add_row(self._build_prompt_panel(self._prompt))
        layout.add_row(self._build_status_line(snapshot))
        return layout

    def refresh(self) -> None:
        """Request a UI refresh."""
        if self._live is not None:
            self._live.refresh()

    def set_sources(self, video: str, audio: str) -> None:
        """Set the labels of the two sources."""
        self._state.video_label = video
        self._state.audio_label = audio
        self.refresh()

    def set_error(self, message: str | None) -> None:
        """Show (or clear with None) an error in the status line."""
        self._state.error_message = message
        self.refresh()

    def start(self) -> None:
        """Start the live display."""
        self._console.clear()
        self._live = Live(
            _RefreshableLayout(self),
            console=self._console,
            refresh_per_second=4,
            screen=True,
        )
        self._live.start()

    def stop(self) -> None:
        """Stop the live display."""
        if self._live is not None:
            self._live.stop()
            self._live = None

    def __enter__(self) -> Self:
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, *_: object) -> None:
        """Context manager exit."""
        self.stop()
