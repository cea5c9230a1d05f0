"""Tests for forwarding source notifications under both sync policies."""

from __future__ import annotations

import pytest

from dualsync.bridge import EventBridge, SyncPolicy
from dualsync.controller import PlaybackController, PlayerConfig, SessionPhase
from dualsync.sources import PrimaryState


@pytest.fixture
def secondary_config() -> PlayerConfig:
    return PlayerConfig(tick_interval=0.01, policy=SyncPolicy.SECONDARY_AUTHORITATIVE)


@pytest.fixture
async def secondary_led(primary, secondary, secondary_config):
    controller = PlaybackController(primary, secondary, secondary_config)
    await controller.mount("video-id", "audio.mp3")
    primary.emit_ready(200.0)
    secondary.emit_ready(200.0)
    primary.commands.clear()
    secondary.commands.clear()
    yield controller
    controller.destroy()


# ==================== READINESS ====================


async def test_ready_notifications_open_the_gate(controller, primary, secondary):
    await controller.mount("video-id", "audio.mp3")

    secondary.emit_ready()
    assert not controller.is_interactive
    primary.emit_ready(90.0)

    assert controller.is_interactive
    assert controller.session.duration == 90.0


def test_attach_is_idempotent(controller, primary, secondary):
    bridge = EventBridge(controller, primary, secondary)

    bridge.attach()
    bridge.attach()

    assert bridge.attached
    assert primary.listeners.count("state_changed") == 1
    assert secondary.listeners.count("play") == 1


def test_detach_drops_every_subscription(controller, primary, secondary):
    bridge = EventBridge(controller, primary, secondary)
    bridge.attach()

    bridge.detach()

    assert not bridge.attached
    for event in ("ready", "state_changed"):
        assert primary.listeners.count(event) == 0
    for event in ("loaded_metadata", "play", "pause", "time_update"):
        assert secondary.listeners.count(event) == 0


# ==================== PRIMARY AUTHORITATIVE ====================


async def test_primary_play_is_mirrored_on_secondary(ready_controller, primary, secondary):
    primary.emit_state(PrimaryState.PLAYING)

    assert secondary.command_names() == ["play"]
    assert ready_controller.is_playing
    assert ready_controller.drift_corrector.running


async def test_primary_pause_is_mirrored_on_secondary(ready_controller, primary, secondary):
    primary.emit_state(PrimaryState.PLAYING)
    primary.emit_state(PrimaryState.PAUSED)

    assert secondary.command_names() == ["play", "pause"]
    assert not ready_controller.is_playing
    assert not ready_controller.drift_corrector.running


async def test_mirroring_skips_secondary_already_in_state(ready_controller, primary, secondary):
    ready_controller.toggle_play_pause()
    secondary.commands.clear()

    # The primary confirms the play command it was just given
    primary.emit_state(PrimaryState.PLAYING)

    assert secondary.commands == []
    assert ready_controller.is_playing


async def test_primary_ended_runs_end_of_media(ready_controller, primary, secondary):
    ready_controller.toggle_play_pause()
    ready_controller.seek_to(150.0)
    secondary.time_sets.clear()

    primary.emit_state(PrimaryState.ENDED)

    assert ready_controller.snapshot().phase is SessionPhase.ENDED
    assert ready_controller.session.current_time == 0.0
    assert secondary.paused
    assert secondary.time_sets == [0.0]


async def test_other_states_are_ignored(ready_controller, primary, secondary):
    ready_controller.toggle_play_pause()
    secondary.commands.clear()

    primary.emit_state(PrimaryState.OTHER)

    assert ready_controller.is_playing
    assert secondary.commands == []


async def test_primary_state_ignored_until_interactive(controller, primary, secondary):
    await controller.mount("video-id", "audio.mp3")
    primary.emit_ready(200.0)

    primary.emit_state(PrimaryState.PLAYING)

    assert not controller.is_playing
    assert secondary.commands == [("load", "audio.mp3")]


async def test_secondary_events_do_not_drive_primary(ready_controller, primary, secondary):
    secondary.emit_play()
    secondary.emit_pause()
    secondary.emit_time_update(33.0)

    assert primary.commands == []
    assert not ready_controller.is_playing
    assert ready_controller.session.current_time == 0.0


# ==================== SECONDARY AUTHORITATIVE ====================


async def test_secondary_play_is_mirrored_on_primary(secondary_led, primary, secondary):
    secondary.emit_play()

    assert primary.command_names() == ["play"]
    assert secondary_led.is_playing
    assert secondary_led.drift_corrector.running


async def test_secondary_pause_is_mirrored_on_primary(secondary_led, primary, secondary):
    secondary.emit_play()
    secondary.emit_pause()

    assert primary.command_names() == ["play", "pause"]
    assert not secondary_led.is_playing


async def test_primary_events_do_not_drive_secondary(secondary_led, primary, secondary):
    primary.emit_state(PrimaryState.PLAYING)

    assert secondary.commands == []
    assert secondary_led.is_playing


async def test_secondary_time_drives_play_head_while_paused(secondary_led, secondary):
    secondary.emit_time_update(33.0)
    assert secondary_led.session.current_time == 33.0

    secondary.emit_time_update(500.0)
    assert secondary_led.session.current_time == 200.0


async def test_secondary_time_ignored_while_playing(secondary_led, primary, secondary):
    primary.clock = 10.0
    secondary_led.toggle_play_pause()

    secondary.emit_time_update(80.0)

    assert secondary_led.session.current_time == 0.0


async def test_primary_ended_still_ends_session(secondary_led, primary):
    secondary_led.toggle_play_pause()

    primary.emit_state(PrimaryState.ENDED)

    assert secondary_led.snapshot().phase is SessionPhase.ENDED
