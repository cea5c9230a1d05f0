"""Tests for the sounddevice-backed audio source.

No audio device is opened: the sounddevice entry points are replaced and the
stream callback is driven directly, as the audio thread would.
"""

from __future__ import annotations

import asyncio
import math

import numpy as np
import pytest

try:
    import sounddevice
except OSError:
    pytest.skip("PortAudio library not available", allow_module_level=True)

from dualsync import audio
from dualsync.audio import SoundDeviceSecondarySource
from dualsync.sources import SourceCommandError, SourceLoadError

SAMPLE_RATE = 1000


class ArrayDecoder:
    """Decoder over an in-memory stereo ramp; the left channel is the frame index."""

    def __init__(self, url: str, sample_rate: int, channels: int, *, seconds: float = 10.0) -> None:
        self.url = url
        self.sample_rate = sample_rate
        self.channels = channels
        index = np.arange(int(seconds * sample_rate), dtype=np.float32)
        self.samples = np.column_stack([index, -index])
        self.cursor = 0
        self.opened = False
        self.started = False
        self.closed = False
        self.seeks: list[int] = []

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate

    @property
    def position(self) -> int:
        return self.cursor

    @property
    def exhausted(self) -> bool:
        return self.cursor >= len(self.samples)

    def open(self) -> None:
        self.opened = True

    def start(self) -> None:
        self.started = True

    def read(self, frames: int) -> np.ndarray:
        chunk = self.samples[self.cursor : self.cursor + frames]
        self.cursor += len(chunk)
        return chunk

    def seek(self, frame: int) -> None:
        self.seeks.append(frame)
        self.cursor = frame

    def close(self) -> None:
        self.closed = True


class FakeOutputStream:
    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs
        self.active = False
        self.closed = False

    def start(self) -> None:
        self.active = True

    def stop(self) -> None:
        self.active = False

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def streams(monkeypatch) -> list[FakeOutputStream]:
    streams: list[FakeOutputStream] = []

    def open_stream(**kwargs) -> FakeOutputStream:
        stream = FakeOutputStream(**kwargs)
        streams.append(stream)
        return stream

    monkeypatch.setattr(
        audio.sounddevice,
        "query_devices",
        lambda device=None, kind=None: {"default_samplerate": float(SAMPLE_RATE)},
    )
    monkeypatch.setattr(audio.sounddevice, "OutputStream", open_stream)
    return streams


@pytest.fixture
def decoders() -> list[ArrayDecoder]:
    return []


@pytest.fixture
def source(streams, decoders) -> SoundDeviceSecondarySource:
    def factory(url: str, sample_rate: int, channels: int) -> ArrayDecoder:
        decoder = ArrayDecoder(url, sample_rate, channels)
        decoders.append(decoder)
        return decoder

    source = SoundDeviceSecondarySource(decoder_factory=factory)
    source.set_source("audio.flac")
    return source


@pytest.fixture
def events(source) -> list[tuple]:
    events: list[tuple] = []
    source.add_loaded_metadata_listener(lambda: events.append(("loaded_metadata",)))
    source.add_play_listener(lambda: events.append(("play",)))
    source.add_pause_listener(lambda: events.append(("pause",)))
    source.add_time_update_listener(lambda value: events.append(("time_update", value)))
    return events


def render(source: SoundDeviceSecondarySource, frames: int) -> np.ndarray:
    outdata = np.full((frames, 2), 9.0, dtype=np.float32)
    source._audio_callback(outdata, frames, None, sounddevice.CallbackFlags())
    return outdata


async def deliver() -> None:
    """Let notifications posted with call_soon_threadsafe run."""
    await asyncio.sleep(0)
    await asyncio.sleep(0)


# ==================== LOAD ====================


async def test_load_opens_decoder_and_stream(source, streams, decoders, events):
    await source.load()

    decoder = decoders[0]
    assert (decoder.url, decoder.sample_rate, decoder.channels) == ("audio.flac", SAMPLE_RATE, 2)
    assert decoder.opened and decoder.started
    assert streams[0].kwargs["samplerate"] == SAMPLE_RATE
    assert streams[0].kwargs["channels"] == 2
    assert source.duration == 10.0
    assert source.current_time == 0.0
    assert source.paused
    assert events == [("loaded_metadata",)]


async def test_load_without_source_fails(streams):
    source = SoundDeviceSecondarySource(decoder_factory=ArrayDecoder)

    with pytest.raises(SourceLoadError):
        await source.load()


async def test_unavailable_device_fails_load(source, monkeypatch):
    def no_device(device=None, kind=None):
        raise ValueError("No output device matching 7")

    monkeypatch.setattr(audio.sounddevice, "query_devices", no_device)

    with pytest.raises(SourceLoadError):
        await source.load()


async def test_stream_failure_closes_decoder(source, decoders, monkeypatch):
    def broken_stream(**kwargs):
        raise sounddevice.PortAudioError("device busy")

    monkeypatch.setattr(audio.sounddevice, "OutputStream", broken_stream)

    with pytest.raises(SourceLoadError):
        await source.load()
    assert decoders[0].closed
    assert not decoders[0].started


# ==================== CLOCK ====================


async def test_setting_current_time_seeks_decoder(source, decoders, events):
    await source.load()
    events.clear()

    source.current_time = 2.5004
    await deliver()

    assert decoders[0].seeks == [2500]
    assert source.current_time == 2.5
    assert events == [("time_update", 2.5)]


async def test_current_time_is_clamped(source, decoders):
    await source.load()

    source.current_time = -3.0
    assert source.current_time == 0.0

    source.current_time = 99.0
    assert source.current_time == 10.0
    assert decoders[0].seeks == [0, 10000]


@pytest.mark.parametrize("value", [math.nan, math.inf])
async def test_non_finite_time_is_rejected(source, value):
    await source.load()

    with pytest.raises(SourceCommandError):
        source.current_time = value


def test_setting_time_before_load_fails(source):
    with pytest.raises(SourceCommandError):
        source.current_time = 1.0


# ==================== CALLBACK ====================


async def test_paused_callback_renders_silence(source, decoders):
    await source.load()

    outdata = render(source, 64)

    assert not outdata.any()
    assert decoders[0].cursor == 0


async def test_playing_callback_renders_decoded_frames(source, streams, events):
    await source.load()
    source.play()
    await deliver()

    outdata = render(source, 64)

    assert streams[0].active
    assert list(outdata[:, 0]) == list(range(64))
    assert source.current_time == 0.064
    assert events[-1] == ("play",)


async def test_time_updates_follow_played_audio(source, events):
    await source.load()
    source.play()
    await deliver()
    events.clear()

    for _ in range(5):
        render(source, 100)
    await deliver()

    # One update per quarter second of audio
    assert events == [("time_update", 0.3)]


async def test_end_of_audio_pads_and_pauses(source, events):
    await source.load()
    source.current_time = 9.95
    source.play()
    await deliver()
    events.clear()

    outdata = render(source, 100)
    await deliver()

    assert list(outdata[:50, 0]) == list(range(9950, 10000))
    assert not outdata[50:].any()
    assert source.paused
    assert events == [("pause",)]


async def test_pause_is_reported_once(source, events):
    await source.load()
    source.play()
    await deliver()
    events.clear()

    source.pause()
    source.pause()
    await deliver()

    assert events == [("pause",)]
    assert not render(source, 16).any()


# ==================== RELEASE ====================


async def test_release_closes_stream_and_decoder(source, streams, decoders):
    await source.load()
    source.play()

    source.release()

    assert streams[0].closed
    assert decoders[0].closed
    assert source.paused
    assert source.duration == 0.0
    assert not render(source, 16).any()
