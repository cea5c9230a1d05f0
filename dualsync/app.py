"""Core application logic for the dualsync player."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
from dataclasses import dataclass
from pathlib import Path

from dualsync.audio import SoundDeviceSecondarySource, resolve_audio_device
from dualsync.bridge import SyncPolicy
from dualsync.controller import PlaybackController
from dualsync.keyboard import InputDispatcher, TimePrompt, keyboard_loop
from dualsync.mpv import MpvPrimarySource, load_primary_runtime, release_primary_runtime
from dualsync.settings import SettingsManager, get_settings_manager
from dualsync.sources import SourceLoadError
from dualsync.ui import PlayerUI
from dualsync.utils import create_task

logger = logging.getLogger(__name__)

# Poll interval while waiting for both sources before autoplay
_AUTOPLAY_POLL_SECONDS = 0.1


@dataclass
class AppConfig:
    """Configuration for the dualsync application.

    None means "use the stored setting".
    """

    video: str | None = None
    audio: str | None = None
    drift_threshold: float | None = None
    tick_interval: float | None = None
    skip_seconds: float | None = None
    policy: SyncPolicy | None = None
    mute_video: bool | None = None
    audio_device: str | None = None
    config_dir: Path | None = None
    log_level: str = "INFO"
    headless: bool = False
    autoplay: bool = False


class PlayerApp:
    """Mounts one synchronized session and runs it until the user quits."""

    def __init__(self, config: AppConfig) -> None:
        """Initialize the application."""
        self._config = config
        self._ui: PlayerUI | None = None
        self._controller: PlaybackController | None = None

    def _report(self, message: str) -> None:
        """Show an error to the user."""
        if self._ui is not None:
            self._ui.set_error(message)
        else:
            print(message, file=sys.stderr, flush=True)  # noqa: T201

    async def run(self) -> int:
        """Run the application."""
        config = self._config

        # Keep the live display clean unless DEBUG was requested
        interactive = sys.stdin.isatty() and not config.headless
        if interactive and config.log_level != "DEBUG":
            logging.basicConfig(level=logging.WARNING)
        else:
            logging.basicConfig(level=getattr(logging, config.log_level))

        settings_manager = await get_settings_manager(config.config_dir)
        self._apply_overrides(settings_manager)
        settings = settings_manager.settings

        video = settings.last_primary_id
        audio = settings.last_secondary_url
        if not video or not audio:
            logger.error("Both a video and an audio source are required (--video/--audio)")
            return 1

        try:
            audio_device = resolve_audio_device(config.audio_device)
        except ValueError as e:
            logger.error("Audio device error: %s", e)
            return 1

        try:
            runtime = await load_primary_runtime()
        except SourceLoadError as e:
            logger.error("Cannot start video player: %s", e)
            return 1

        try:
            primary = MpvPrimarySource(runtime, mute=settings.mute_primary)
            primary.add_error_listener(self._on_video_error)
            try:
                await primary.start()
            except SourceLoadError as e:
                logger.error("Cannot start video player: %s", e)
                primary.destroy()
                return 1

            secondary = SoundDeviceSecondarySource(device=audio_device)
            controller = PlaybackController(primary, secondary, settings.to_player_config())
            self._controller = controller
            await self._run_session(controller, video, audio)
        finally:
            release_primary_runtime()
            await settings_manager.flush()

        return 0

    def _on_video_error(self, reason: str) -> None:
        self._report(f"Failed to load video: {reason}")

    def _apply_overrides(self, settings_manager: SettingsManager) -> None:
        """Store command-line values so they become the new defaults."""
        config = self._config
        settings_manager.update(
            drift_threshold=config.drift_threshold,
            tick_interval=config.tick_interval,
            skip_seconds=config.skip_seconds,
            sync_policy=config.policy,
            mute_primary=config.mute_video,
        )
        if config.video:
            settings_manager.update(last_primary_id=config.video)
        if config.audio:
            settings_manager.update(last_secondary_url=config.audio)

    async def _run_session(self, controller: PlaybackController, video: str, audio: str) -> None:
        config = self._config
        prompt = TimePrompt(controller.seek_to, duration=lambda: controller.session.duration)
        dispatcher = InputDispatcher(controller, skip_seconds=controller.config.skip_seconds)

        if sys.stdin.isatty() and not config.headless:
            self._ui = PlayerUI(
                controller.snapshot, prompt, skip_seconds=controller.config.skip_seconds
            )
            self._ui.start()
            self._ui.set_sources(video, audio)

        mount_task = create_task(self._mount(controller, video, audio), name="mount")
        if config.headless:
            input_task = asyncio.create_task(asyncio.Event().wait())
        else:
            input_task = asyncio.create_task(keyboard_loop(dispatcher, prompt, self._ui))
        dispatcher.attach()

        loop = asyncio.get_running_loop()

        def signal_handler() -> None:
            logger.debug("Received interrupt signal, shutting down...")
            input_task.cancel()

        # Signal handlers aren't supported on this platform (e.g., Windows)
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signal.SIGINT, signal_handler)
            loop.add_signal_handler(signal.SIGTERM, signal_handler)

        try:
            await input_task
        except asyncio.CancelledError:
            logger.debug("Input loop cancelled")
        finally:
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(signal.SIGINT)
                loop.remove_signal_handler(signal.SIGTERM)
            dispatcher.detach()
            mount_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await mount_task
            controller.destroy()
            if self._ui is not None:
                self._ui.stop()
                self._ui = None

    async def _mount(self, controller: PlaybackController, video: str, audio: str) -> None:
        """Load both sources; failures stay visible while the session keeps loading."""
        try:
            await controller.mount(video, audio)
        except SourceLoadError as e:
            logger.error("Failed to load audio: %s", e)
            self._report(f"Failed to load audio: {e}")
            return

        if not self._config.autoplay:
            return
        while not controller.is_interactive:
            await asyncio.sleep(_AUTOPLAY_POLL_SECONDS)
        if not controller.is_playing:
            controller.toggle_play_pause()
