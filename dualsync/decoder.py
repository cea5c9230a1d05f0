"""Chunked audio decoding into a bounded read-ahead buffer.

A worker thread decodes and resamples the resource a few seconds ahead of
the playback cursor; the audio callback reads from the buffer. Seeks that
land inside the buffered window only drop frames, anything else restarts
decoding from the new position with ``container.seek``.
"""

from __future__ import annotations

import collections
import logging
import threading
from typing import Final

import av
import numpy as np
from av.audio.stream import AudioStream
from av.container import InputContainer

from dualsync.sources import SourceLoadError

logger = logging.getLogger(__name__)


class PcmBuffer:
    """Bounded FIFO of decoded float32 frames starting at the playback cursor.

    Positions are absolute frame indices in the resource. Every seek that
    cannot be served from the buffer starts a new generation; chunks pushed
    for an older generation are dropped.
    """

    def __init__(self, channels: int, capacity: int) -> None:
        """Initialize the buffer.

        Args:
            channels: Channels per frame.
            capacity: Frames decoded ahead before the producer waits.
        """
        self._channels = channels
        self._capacity = capacity
        self._cond = threading.Condition()
        self._chunks: collections.deque[np.ndarray] = collections.deque()
        self._position = 0
        self._buffered = 0
        self._generation = 0
        self._eof = False
        self._closed = False

    @property
    def position(self) -> int:
        """Frame index of the playback cursor."""
        with self._cond:
            return self._position

    @property
    def buffered(self) -> int:
        """Frames decoded ahead of the cursor."""
        with self._cond:
            return self._buffered

    @property
    def generation(self) -> int:
        with self._cond:
            return self._generation

    @property
    def exhausted(self) -> bool:
        """Whether the end of the resource was decoded and fully read."""
        with self._cond:
            return self._eof and self._buffered == 0

    def push(self, chunk: np.ndarray, generation: int) -> bool:
        """Append decoded frames. Returns False if ``generation`` is stale."""
        with self._cond:
            if self._closed or generation != self._generation:
                return False
            if len(chunk):
                self._chunks.append(chunk)
                self._buffered += len(chunk)
            return True

    def mark_eof(self, generation: int) -> None:
        """Record that decoding for ``generation`` reached the end."""
        with self._cond:
            if generation == self._generation:
                self._eof = True
                self._cond.notify_all()

    def read(self, frames: int) -> np.ndarray:
        """Take up to ``frames`` frames from the cursor, fewer on underrun."""
        with self._cond:
            parts = self._take(frames)
        if not parts:
            return np.zeros((0, self._channels), dtype=np.float32)
        return parts[0] if len(parts) == 1 else np.concatenate(parts)

    def seek(self, frame: int) -> bool:
        """Move the cursor to ``frame``.

        Returns:
            True if the target was inside the buffered window. Otherwise the
            buffer is emptied and a new generation begins at ``frame``.
        """
        with self._cond:
            offset = frame - self._position
            if 0 <= offset <= self._buffered:
                self._take(offset)
                return True
            self._chunks.clear()
            self._buffered = 0
            self._position = frame
            self._generation += 1
            self._eof = False
            self._cond.notify_all()
            return False

    def wait_for_space(self) -> tuple[int, int] | None:
        """Block until the producer should decode more.

        Returns:
            The current generation and the frame index the next pushed chunk
            must start at, or None once the buffer is closed.
        """
        with self._cond:
            while not self._closed and (self._eof or self._buffered >= self._capacity):
                self._cond.wait()
            if self._closed:
                return None
            return self._generation, self._position + self._buffered

    def close(self) -> None:
        """Wake and stop the producer."""
        with self._cond:
            self._closed = True
            self._chunks.clear()
            self._buffered = 0
            self._cond.notify_all()

    def _take(self, frames: int) -> list[np.ndarray]:
        parts: list[np.ndarray] = []
        needed = frames
        while needed > 0 and self._chunks:
            head = self._chunks[0]
            if len(head) <= needed:
                parts.append(self._chunks.popleft())
                needed -= len(head)
            else:
                parts.append(head[:needed])
                self._chunks[0] = head[needed:]
                needed = 0
        taken = frames - needed
        if taken:
            self._position += taken
            self._buffered -= taken
            self._cond.notify_all()
        return parts


class StreamingDecoder:
    """Decodes a file or URL to float32 frames on a worker thread."""

    BUFFER_SECONDS: Final[float] = 10.0

    def __init__(
        self,
        url: str,
        sample_rate: int,
        channels: int,
        *,
        buffer_seconds: float = BUFFER_SECONDS,
    ) -> None:
        """Initialize the decoder. Call :meth:`open` then :meth:`start`.

        Args:
            url: File path or URL. PyAV opens HTTP(S) URLs as well.
            sample_rate: Output sample rate in Hz.
            channels: Output channel count (1 or 2).
            buffer_seconds: Audio decoded ahead of the cursor.
        """
        self._url = url
        self._sample_rate = sample_rate
        self._channels = channels
        self._buffer = PcmBuffer(channels, max(1, int(buffer_seconds * sample_rate)))
        self._container: InputContainer | None = None
        self._stream: AudioStream | None = None
        self._thread: threading.Thread | None = None
        self._duration = 0.0

    @property
    def duration(self) -> float:
        """Length of the resource in seconds, 0 if unknown."""
        return self._duration

    @property
    def position(self) -> int:
        return self._buffer.position

    @property
    def exhausted(self) -> bool:
        return self._buffer.exhausted

    def read(self, frames: int) -> np.ndarray:
        return self._buffer.read(frames)

    def seek(self, frame: int) -> None:
        self._buffer.seek(frame)

    def open(self) -> None:
        """Open the resource and read its duration (blocking I/O).

        Raises:
            SourceLoadError: If the resource cannot be opened or has no audio.
        """
        try:
            container = av.open(self._url)
        except (av.FFmpegError, OSError) as e:
            raise SourceLoadError(f"Failed to open {self._url}: {e}") from e
        if not container.streams.audio:
            container.close()
            raise SourceLoadError(f"No audio stream in {self._url}")
        stream = container.streams.audio[0]
        self._container = container
        self._stream = stream
        if stream.duration is not None and stream.time_base is not None:
            self._duration = float(stream.duration * stream.time_base)
        elif container.duration is not None:
            self._duration = container.duration / av.time_base

    def start(self) -> None:
        """Start decoding ahead on a worker thread."""
        self._thread = threading.Thread(target=self._run, name="audio-decoder", daemon=True)
        self._thread.start()

    def close(self) -> None:
        """Stop decoding and release the container."""
        self._buffer.close()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None
        elif self._container is not None:
            self._container.close()
        self._container = None

    def _run(self) -> None:
        container = self._container
        stream = self._stream
        assert container is not None and stream is not None
        layout = "stereo" if self._channels == 2 else "mono"
        generation = -1
        frames = None
        resampler = None
        skip = 0
        first_frame = False
        try:
            while (state := self._buffer.wait_for_space()) is not None:
                next_generation, start = state
                if next_generation != generation:
                    generation = next_generation
                    if frames is not None or start > 0:
                        container.seek(int(start / self._sample_rate * av.time_base))
                    frames = container.decode(stream)
                    resampler = av.AudioResampler(format="flt", layout=layout, rate=self._sample_rate)
                    skip = start
                    first_frame = True
                assert resampler is not None

                frame = next(frames, None)
                if frame is None:
                    # Flush samples buffered inside the resampler
                    chunk = self._to_array(resampler.resample(None))
                    self._buffer.push(chunk[min(skip, len(chunk)) :], generation)
                    self._buffer.mark_eof(generation)
                    continue

                if first_frame:
                    # Seeks land on a packet boundary at or before the target
                    first_frame = False
                    if frame.time is not None:
                        skip = max(0, skip - round(frame.time * self._sample_rate))
                    else:
                        skip = 0
                chunk = self._to_array(resampler.resample(frame))
                dropped = min(skip, len(chunk))
                skip -= dropped
                self._buffer.push(chunk[dropped:], generation)
        except (av.FFmpegError, OSError) as e:
            logger.warning("Audio decoding of %s stopped: %s", self._url, e)
            self._buffer.mark_eof(generation)
        finally:
            container.close()

    def _to_array(self, frames: list[av.AudioFrame]) -> np.ndarray:
        if not frames:
            return np.zeros((0, self._channels), dtype=np.float32)
        chunks = [frame.to_ndarray().reshape(-1, self._channels) for frame in frames]
        return np.ascontiguousarray(np.concatenate(chunks), dtype=np.float32)
