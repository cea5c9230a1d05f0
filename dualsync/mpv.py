"""Primary source backed by an mpv process controlled over JSON IPC.

mpv only exposes its state asynchronously: commands are written to the IPC
socket without waiting for a reply, and the resulting state arrives later as
``property-change`` events. The adapter keeps the last observed values and
extrapolates the playback position between updates, which gives the core a
synchronously readable (if slightly stale) primary clock.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import math
import shutil
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

from dualsync.loader import RuntimeLoader
from dualsync.sources import (
    ErrorListener,
    PrimaryState,
    ReadyListener,
    SourceListeners,
    SourceLoadError,
    StateListener,
    Unsubscribe,
)

logger = logging.getLogger(__name__)

# Properties mirrored from mpv, keyed by observer id
_OBSERVED_PROPERTIES: Final[dict[int, str]] = {
    1: "time-pos",
    2: "duration",
    3: "pause",
    4: "eof-reached",
    5: "paused-for-cache",
    6: "seeking",
}

# While any of these is true the video is frozen although pause is false
_STALL_PROPERTIES: Final[frozenset[str]] = frozenset({"paused-for-cache", "seeking"})


@dataclass(frozen=True, slots=True)
class MpvRuntime:
    """A resolved mpv executable."""

    binary: str
    version: str


async def probe_mpv(binary: str = "mpv") -> MpvRuntime:
    """Resolve the mpv executable and read its version.

    Args:
        binary: Executable name or path.

    Returns:
        The resolved runtime.

    Raises:
        SourceLoadError: If mpv cannot be found or does not run.
    """
    path = shutil.which(binary)
    if path is None:
        raise SourceLoadError(f"mpv executable not found: {binary}")
    try:
        process = await asyncio.create_subprocess_exec(
            path,
            "--version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        stdout, _ = await asyncio.wait_for(process.communicate(), timeout=5.0)
    except (OSError, TimeoutError) as e:
        raise SourceLoadError(f"Failed to run {path}: {e}") from e
    first_line = stdout.decode("utf-8", "ignore").splitlines()[:1]
    version = first_line[0].strip() if first_line else "mpv (unknown version)"
    logger.info("Using %s (%s)", path, version)
    return MpvRuntime(binary=path, version=version)


_PRIMARY_RUNTIME: RuntimeLoader[MpvRuntime] = RuntimeLoader(probe_mpv, name="mpv runtime")


async def load_primary_runtime() -> MpvRuntime:
    """Acquire the process-wide mpv runtime. Pair with :func:`release_primary_runtime`."""
    return await _PRIMARY_RUNTIME.acquire()


def release_primary_runtime() -> None:
    """Release one reference to the process-wide mpv runtime."""
    _PRIMARY_RUNTIME.release()


class MpvPrimarySource:
    """Remote-controlled video source running in its own mpv window."""

    _SOCKET_TIMEOUT: Final[float] = 5.0
    """Seconds to wait for mpv to create its IPC socket."""
    _SOCKET_POLL: Final[float] = 0.05
    DEFAULT_MAX_EXTRAPOLATION: Final[float] = 0.5

    def __init__(
        self,
        runtime: MpvRuntime,
        *,
        mute: bool = True,
        socket_dir: Path | None = None,
        max_extrapolation: float = DEFAULT_MAX_EXTRAPOLATION,
    ) -> None:
        """Initialize the source. Call :meth:`start` before use.

        Args:
            runtime: The mpv executable to launch.
            mute: Start mpv muted so only the secondary source is heard.
            socket_dir: Directory for the IPC socket. Defaults to the temp dir.
            max_extrapolation: Longest stretch, in seconds, the clock runs
                ahead of the last ``time-pos`` update.
        """
        self._runtime = runtime
        self._mute = mute
        self._max_extrapolation = max_extrapolation
        socket_dir = socket_dir or Path(tempfile.gettempdir())
        self._socket_path = socket_dir / f"dualsync-mpv-{uuid.uuid4().hex[:8]}.sock"
        self._listeners = SourceListeners("primary")
        self._process: asyncio.subprocess.Process | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._request_id = 0
        self._reset_media_state()

    def _reset_media_state(self) -> None:
        self._time_pos = 0.0
        self._time_pos_at = 0.0
        self._duration = 0.0
        self._paused = True
        self._eof = False
        self._stalled: set[str] = set()
        self._file_loaded = False
        self._ready_sent = False

    async def start(self) -> None:
        """Launch mpv and connect to its IPC socket.

        Raises:
            SourceLoadError: If mpv does not start or never opens its socket.
        """
        args = [
            self._runtime.binary,
            "--idle=yes",
            "--keep-open=yes",
            "--force-window=yes",
            "--pause",
            "--no-terminal",
            "--osd-level=0",
            f"--input-ipc-server={self._socket_path}",
        ]
        if self._mute:
            args.append("--mute=yes")
        try:
            self._process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise SourceLoadError(f"Failed to launch mpv: {e}") from e

        await self._wait_for_socket()
        try:
            reader, self._writer = await asyncio.open_unix_connection(str(self._socket_path))
        except OSError as e:
            raise SourceLoadError(f"Failed to connect to mpv IPC socket: {e}") from e

        self._reader_task = asyncio.create_task(self._read_events(reader), name="mpv-ipc-reader")
        for observer_id, name in _OBSERVED_PROPERTIES.items():
            self._command("observe_property", observer_id, name)
        logger.debug("Connected to mpv at %s", self._socket_path)

    async def _wait_for_socket(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._SOCKET_TIMEOUT
        while not self._socket_path.exists():
            if self._process is not None and self._process.returncode is not None:
                raise SourceLoadError(f"mpv exited with code {self._process.returncode}")
            if loop.time() >= deadline:
                raise SourceLoadError("mpv IPC socket did not become available")
            await asyncio.sleep(self._SOCKET_POLL)

    # PrimarySource commands

    def load(self, media_id: str) -> None:
        """Replace the current media with ``media_id`` (path, URL or site id)."""
        self._reset_media_state()
        self._command("loadfile", media_id, "replace")

    def play(self) -> None:
        self._command("set_property", "pause", False)

    def pause(self) -> None:
        self._command("set_property", "pause", True)

    def seek(self, time: float, allow_seek_ahead: bool) -> None:
        """Seek to an absolute position.

        With ``allow_seek_ahead`` the seek is frame exact, otherwise mpv may
        snap to the nearest keyframe, which is cheaper while scrubbing.
        """
        flags = "absolute+exact" if allow_seek_ahead else "absolute+keyframes"
        self._command("seek", time, flags)
        # Report the new position right away rather than after mpv confirms it
        self._set_time_pos(time)
        self._eof = False

    def get_current_time(self) -> float:
        """Last reported position, extrapolated while playing.

        The estimate never runs more than ``max_extrapolation`` seconds past
        the last ``time-pos`` update, and holds while mpv buffers or seeks.
        """
        position = self._time_pos
        if self._file_loaded and not self._paused and not self._eof and not self._stalled:
            elapsed = asyncio.get_running_loop().time() - self._time_pos_at
            position += min(elapsed, self._max_extrapolation)
        if self._duration > 0:
            position = min(position, self._duration)
        return max(0.0, position)

    def get_duration(self) -> float:
        return self._duration

    def get_player_state(self) -> PrimaryState:
        if self._eof:
            return PrimaryState.ENDED
        if not self._file_loaded:
            return PrimaryState.OTHER
        return PrimaryState.PAUSED if self._paused else PrimaryState.PLAYING

    def destroy(self) -> None:
        """Quit mpv and close the IPC connection."""
        self._listeners.clear()
        if self._writer is not None and not self._writer.is_closing():
            self._command("quit")
            self._writer.close()
        self._writer = None
        if self._reader_task is not None:
            self._reader_task.cancel()
            self._reader_task = None
        if self._process is not None and self._process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                self._process.terminate()
        self._process = None
        with contextlib.suppress(OSError):
            self._socket_path.unlink(missing_ok=True)

    def add_ready_listener(self, listener: ReadyListener) -> Unsubscribe:
        """Add a ready listener. Returns unsubscribe function."""
        return self._listeners.add("ready", listener)

    def add_state_listener(self, listener: StateListener) -> Unsubscribe:
        """Add a state change listener. Returns unsubscribe function."""
        return self._listeners.add("state_changed", listener)

    def add_error_listener(self, listener: ErrorListener) -> Unsubscribe:
        """Add a listener for media that mpv could not load. Returns unsubscribe function."""
        return self._listeners.add("error", listener)

    # IPC plumbing

    def _command(self, *args: Any) -> None:
        """Write a command without waiting for its reply."""
        if self._writer is None or self._writer.is_closing():
            logger.warning("Dropping mpv command %s, IPC not connected", args[0])
            return
        self._request_id += 1
        payload = {"command": list(args), "request_id": self._request_id}
        self._writer.write((json.dumps(payload) + "\n").encode("utf-8"))

    async def _read_events(self, reader: asyncio.StreamReader) -> None:
        try:
            while line := await reader.readline():
                self._handle_line(line)
        except (ConnectionError, OSError) as e:
            logger.warning("mpv IPC connection lost: %s", e)
        logger.debug("mpv IPC reader finished")

    def _handle_line(self, line: bytes) -> None:
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("Ignoring malformed mpv message: %r", line)
            return
        if not isinstance(message, dict):
            return

        if "request_id" in message:
            if message.get("error") not in (None, "success"):
                logger.debug("mpv command %s failed: %s", message["request_id"], message["error"])
            return

        event = message.get("event")
        if event == "property-change":
            self._handle_property(message.get("name"), message.get("data"))
        elif event == "file-loaded":
            self._file_loaded = True
            self._maybe_ready()
        elif event == "end-file" and message.get("reason") == "error":
            reason = str(message.get("file_error", "unknown error"))
            logger.warning("mpv failed to load media: %s", reason)
            self._listeners.emit("error", reason)

    def _handle_property(self, name: object, data: object) -> None:
        if name == "time-pos":
            if isinstance(data, (int, float)) and math.isfinite(data):
                self._set_time_pos(float(data))
        elif name == "duration":
            if isinstance(data, (int, float)) and data > 0:
                self._duration = float(data)
                self._maybe_ready()
        elif name == "pause":
            paused = bool(data)
            if paused != self._paused:
                # Freeze the extrapolated clock at the moment of the change
                self._set_time_pos(self.get_current_time())
                self._paused = paused
                self._emit_state()
        elif name in _STALL_PROPERTIES:
            stalled = bool(data)
            if stalled != (name in self._stalled):
                self._set_time_pos(self.get_current_time())
                if stalled:
                    self._stalled.add(name)
                else:
                    self._stalled.discard(name)
        elif name == "eof-reached":
            eof = bool(data)
            if eof != self._eof:
                self._eof = eof
                self._emit_state()

    def _set_time_pos(self, position: float) -> None:
        self._time_pos = position
        self._time_pos_at = asyncio.get_running_loop().time()

    def _maybe_ready(self) -> None:
        if self._ready_sent or not self._file_loaded or self._duration <= 0:
            return
        self._ready_sent = True
        logger.debug("mpv media ready (duration %.2fs)", self._duration)
        self._listeners.emit("ready", self._duration)
        self._emit_state()

    def _emit_state(self) -> None:
        if self._ready_sent:
            self._listeners.emit("state_changed", self.get_player_state())
