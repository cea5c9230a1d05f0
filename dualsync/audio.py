"""Secondary source: local audio playback with a synchronously readable clock.

The resource is decoded with PyAV on a worker thread, a few seconds ahead of
playback, into a bounded buffer at the output device's sample rate, and
rendered by a sounddevice output stream. The stream callback runs on the
audio thread; it reads from the buffer, which owns the frame cursor, and
hands notifications back to the event loop with ``call_soon_threadsafe``.
Reading or writing :attr:`current_time` from the loop therefore never waits
on I/O.

This module also provides device enumeration helpers for the CLI.
"""

from __future__ import annotations

import asyncio
import logging
import math
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Final, Protocol

import numpy as np
import sounddevice

from dualsync.decoder import StreamingDecoder
from dualsync.sources import (
    SignalListener,
    SourceCommandError,
    SourceListeners,
    SourceLoadError,
    TimeListener,
    Unsubscribe,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AudioDevice:
    """An audio output device.

    Attributes:
        index: Device index used for selection.
        name: Human-readable device name.
        output_channels: Number of output channels supported.
        sample_rate: Default sample rate in Hz.
        is_default: Whether this is the system default output device.
    """

    index: int
    name: str
    output_channels: int
    sample_rate: float
    is_default: bool


def query_devices() -> list[AudioDevice]:
    """Return all audio devices that have output channels."""
    devices = sounddevice.query_devices()
    default_output = int(sounddevice.default.device[1])
    return [
        AudioDevice(
            index=i,
            name=str(dev["name"]),
            output_channels=int(dev["max_output_channels"]),
            sample_rate=float(dev["default_samplerate"]),
            is_default=(i == default_output),
        )
        for i, dev in enumerate(devices)
        if dev["max_output_channels"] > 0
    ]


def resolve_audio_device(device: str | None) -> int | None:
    """Resolve an audio device by index or name prefix.

    Args:
        device: Device index (numeric string) or name prefix to match.

    Returns:
        Device index if valid, None for the default device.

    Raises:
        ValueError: If the device is invalid or not found.
    """
    if device is None:
        return None

    outputs = query_devices()
    if device.isnumeric():
        index = int(device)
        for candidate in outputs:
            if candidate.index == index:
                return index
        raise ValueError(f"Device {index} is not an audio output device")

    for candidate in outputs:
        if candidate.name.startswith(device):
            return candidate.index
    raise ValueError(f"No audio output device found matching '{device}'")


class AudioDecoder(Protocol):
    """What the secondary source needs from a decoder."""

    @property
    def duration(self) -> float: ...

    @property
    def position(self) -> int: ...

    @property
    def exhausted(self) -> bool: ...

    def open(self) -> None: ...

    def start(self) -> None: ...

    def read(self, frames: int) -> np.ndarray: ...

    def seek(self, frame: int) -> None: ...

    def close(self) -> None: ...


DecoderFactory = Callable[[str, int, int], AudioDecoder]


class SoundDeviceSecondarySource:
    """Local audio source rendered through a sounddevice output stream."""

    _CHANNELS: Final[int] = 2
    _BLOCKSIZE: Final[int] = 1024
    """Frames per callback (~23ms at 44.1kHz)."""
    _TIME_UPDATE_INTERVAL: Final[float] = 0.25
    """Seconds of played audio between time_update notifications."""

    def __init__(
        self,
        *,
        device: int | None = None,
        decoder_factory: DecoderFactory = StreamingDecoder,
    ) -> None:
        """Initialize the source.

        Args:
            device: Output device index. None for the default device.
            decoder_factory: Builds the decoder from url, sample rate and
                channel count.
        """
        self._device = device
        self._decoder_factory = decoder_factory
        self._url: str | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._listeners = SourceListeners("secondary")
        self._lock = threading.Lock()
        self._decoder: AudioDecoder | None = None
        self._sample_rate = 0
        self._paused = True
        self._frames_since_update = 0
        self._stream: sounddevice.OutputStream | None = None

    def set_source(self, url: str) -> None:
        """Select the resource loaded by the next :meth:`load`."""
        self._url = url

    async def load(self) -> None:
        """Open the selected resource and the output stream.

        Emits ``loaded_metadata`` as soon as the resource is open and its
        duration is known; decoding continues in the background.

        Raises:
            SourceLoadError: If there is nothing to load, the resource cannot
                be opened or the output device cannot be opened.
        """
        if self._url is None:
            raise SourceLoadError("No audio source selected")
        self._loop = asyncio.get_running_loop()

        try:
            info: Any = sounddevice.query_devices(self._device, "output")
        except (ValueError, sounddevice.PortAudioError) as e:
            raise SourceLoadError(f"Audio output device unavailable: {e}") from e
        sample_rate = int(info["default_samplerate"])

        decoder = self._decoder_factory(self._url, sample_rate, self._CHANNELS)
        await self._loop.run_in_executor(None, decoder.open)
        try:
            stream = sounddevice.OutputStream(
                samplerate=sample_rate,
                channels=self._CHANNELS,
                dtype="float32",
                device=self._device,
                blocksize=self._BLOCKSIZE,
                callback=self._audio_callback,
            )
        except sounddevice.PortAudioError as e:
            decoder.close()
            raise SourceLoadError(f"Failed to open audio output: {e}") from e

        decoder.start()
        with self._lock:
            self._decoder = decoder
            self._sample_rate = sample_rate
            self._paused = True
            self._frames_since_update = 0
        self._stream = stream
        logger.info("Opened %s (%.2fs at %d Hz)", self._url, decoder.duration, sample_rate)
        self._listeners.emit("loaded_metadata")

    @property
    def duration(self) -> float:
        decoder = self._decoder
        return decoder.duration if decoder is not None else 0.0

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def current_time(self) -> float:
        decoder = self._decoder
        if decoder is None or not self._sample_rate:
            return 0.0
        return decoder.position / self._sample_rate

    @current_time.setter
    def current_time(self, value: float) -> None:
        if not math.isfinite(value):
            raise SourceCommandError(f"Invalid audio position: {value}")
        with self._lock:
            decoder = self._decoder
            if decoder is None:
                raise SourceCommandError("Audio source not loaded")
            frame = max(round(value * self._sample_rate), 0)
            total = round(decoder.duration * self._sample_rate)
            if total > 0:
                frame = min(frame, total)
            decoder.seek(frame)
            self._frames_since_update = 0
            position = decoder.position / self._sample_rate
        self._notify("time_update", position)

    def play(self) -> None:
        """Start or resume output."""
        if self._stream is None:
            logger.debug("Ignoring play, audio source not loaded")
            return
        try:
            if not self._stream.active:
                self._stream.start()
        except sounddevice.PortAudioError as e:
            logger.warning("Failed to start audio output: %s", e)
            return
        with self._lock:
            self._paused = False
        self._notify("play")

    def pause(self) -> None:
        """Pause output. The stream keeps running and renders silence."""
        with self._lock:
            was_paused = self._paused
            self._paused = True
        if not was_paused:
            self._notify("pause")

    def release(self) -> None:
        """Close the output stream and stop decoding."""
        self._listeners.clear()
        stream = self._stream
        self._stream = None
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except sounddevice.PortAudioError as e:
                logger.debug("Error closing audio output: %s", e)
        with self._lock:
            decoder = self._decoder
            self._decoder = None
            self._paused = True
        if decoder is not None:
            decoder.close()

    def add_loaded_metadata_listener(self, listener: SignalListener) -> Unsubscribe:
        """Add a loaded-metadata listener. Returns unsubscribe function."""
        return self._listeners.add("loaded_metadata", listener)

    def add_play_listener(self, listener: SignalListener) -> Unsubscribe:
        """Add a play listener. Returns unsubscribe function."""
        return self._listeners.add("play", listener)

    def add_pause_listener(self, listener: SignalListener) -> Unsubscribe:
        """Add a pause listener. Returns unsubscribe function."""
        return self._listeners.add("pause", listener)

    def add_time_update_listener(self, listener: TimeListener) -> Unsubscribe:
        """Add a time update listener. Returns unsubscribe function."""
        return self._listeners.add("time_update", listener)

    def _notify(self, event: str, *args: object) -> None:
        """Emit a notification on the next loop iteration."""
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._listeners.emit, event, *args)

    def _audio_callback(
        self,
        outdata: np.ndarray,
        frames: int,
        _time: Any,
        _status: sounddevice.CallbackFlags,
    ) -> None:
        """Fill the output buffer from the decoder (audio thread)."""
        update_position: float | None = None
        finished = False
        with self._lock:
            decoder = self._decoder
            if self._paused or decoder is None:
                outdata.fill(0)
                return
            # On underrun the rest is silence and the clock does not advance
            chunk = decoder.read(frames)
            count = len(chunk)
            outdata[:count] = chunk
            outdata[count:] = 0
            self._frames_since_update += count
            if self._frames_since_update >= self._sample_rate * self._TIME_UPDATE_INTERVAL:
                self._frames_since_update = 0
                update_position = decoder.position / self._sample_rate
            if count < frames and decoder.exhausted:
                self._paused = True
                finished = True

        if update_position is not None:
            self._notify("time_update", update_position)
        if finished:
            self._notify("pause")
