"""Command-line interface for the dualsync player."""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence
from pathlib import Path

import sounddevice

from dualsync.app import AppConfig, PlayerApp
from dualsync.audio import query_devices
from dualsync.bridge import SyncPolicy


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the dualsync player."""
    parser = argparse.ArgumentParser(
        description="Play a video and a separate audio track as one synchronized session"
    )
    parser.add_argument(
        "--video",
        default=None,
        help="Video file, URL or site id handed to mpv. Defaults to the last one played.",
    )
    parser.add_argument(
        "--audio",
        default=None,
        help="Audio file or URL played locally. Defaults to the last one played.",
    )
    parser.add_argument(
        "--drift-threshold",
        type=float,
        default=None,
        help="Largest tolerated offset between video and audio, in seconds (default 0.2)",
    )
    parser.add_argument(
        "--tick-interval",
        type=float,
        default=None,
        help="Seconds between drift checks while playing (default 0.25)",
    )
    parser.add_argument(
        "--skip-seconds",
        type=float,
        default=None,
        help="Seconds skipped by the arrow keys (default 5)",
    )
    parser.add_argument(
        "--policy",
        choices=[policy.value for policy in SyncPolicy],
        default=None,
        help="Which source's own play/pause events drive the other (default primary)",
    )
    parser.add_argument(
        "--no-mute-video",
        dest="mute_video",
        action="store_false",
        default=None,
        help="Keep the video's own audio track audible",
    )
    parser.add_argument(
        "--audio-device",
        type=str,
        default=None,
        help=(
            "Audio output device by index (e.g., 0, 1, 2) or name prefix (e.g., 'MacBook'). "
            "Use --list-audio-devices to see available devices."
        ),
    )
    parser.add_argument(
        "--list-audio-devices",
        action="store_true",
        help="List available audio output devices and exit",
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Directory for stored settings (defaults to ~/.config/dualsync)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level to use",
    )
    parser.add_argument(
        "--headless",
        action="store_true",
        help="Run without the terminal UI and keyboard controls",
    )
    parser.add_argument(
        "--autoplay",
        action="store_true",
        help="Start playing as soon as both sources are ready",
    )
    return parser.parse_args(argv)


def list_audio_devices() -> None:
    """List all available audio output devices."""
    try:
        devices = query_devices()
    except sounddevice.PortAudioError as e:
        print(f"Error listing audio devices: {e}")  # noqa: T201
        sys.exit(1)

    print("Available audio output devices:")  # noqa: T201
    print()  # noqa: T201
    for device in devices:
        default_marker = " (default)" if device.is_default else ""
        print(  # noqa: T201
            f"  [{device.index}] {device.name}{default_marker}\n"
            f"       Channels: {device.output_channels}, "
            f"Sample rate: {device.sample_rate} Hz"
        )
    if devices:
        print("\nTo select an audio device:\n  dualsync --audio-device 0")  # noqa: T201


def main() -> int:
    """Run the CLI player."""
    args = parse_args(sys.argv[1:])
    if args.list_audio_devices:
        list_audio_devices()
        return 0

    config = AppConfig(
        video=args.video,
        audio=args.audio,
        drift_threshold=args.drift_threshold,
        tick_interval=args.tick_interval,
        skip_seconds=args.skip_seconds,
        policy=SyncPolicy(args.policy) if args.policy else None,
        mute_video=args.mute_video,
        audio_device=args.audio_device,
        config_dir=args.config_dir,
        log_level=args.log_level,
        headless=args.headless,
        autoplay=args.autoplay,
    )
    app = PlayerApp(config)
    return asyncio.run(app.run())


if __name__ == "__main__":
    raise SystemExit(main())
