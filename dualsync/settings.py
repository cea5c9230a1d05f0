"""Settings persistence for the dualsync player.

Preferences and the last played source pair are stored as JSON. Changes are
saved with debouncing; :meth:`SettingsManager.flush` writes pending changes
immediately.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any

from dualsync.bridge import SyncPolicy
from dualsync.controller import PlayerConfig

logger = logging.getLogger(__name__)

# Debounce delay for saving settings
SAVE_DEBOUNCE_SECONDS = 60.0

SETTINGS_FILENAME = "settings.json"


@dataclass
class Settings:
    """All persistent settings for the dualsync player."""

    drift_threshold: float = 0.2
    tick_interval: float = 0.25
    skip_seconds: float = 5.0
    sync_policy: SyncPolicy = SyncPolicy.PRIMARY_AUTHORITATIVE
    mute_primary: bool = True
    last_primary_id: str | None = None
    last_secondary_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to a dictionary for serialization."""
        data = asdict(self)
        data["sync_policy"] = self.sync_policy.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Settings:
        """Create settings from a dictionary, ignoring unknown or invalid values."""
        defaults = cls()
        try:
            policy = SyncPolicy(data.get("sync_policy", defaults.sync_policy.value))
        except ValueError:
            logger.warning("Unknown sync policy %r, using default", data.get("sync_policy"))
            policy = defaults.sync_policy
        return cls(
            drift_threshold=_positive(data.get("drift_threshold"), defaults.drift_threshold),
            tick_interval=_positive(data.get("tick_interval"), defaults.tick_interval),
            skip_seconds=_positive(data.get("skip_seconds"), defaults.skip_seconds),
            sync_policy=policy,
            mute_primary=bool(data.get("mute_primary", defaults.mute_primary)),
            last_primary_id=data.get("last_primary_id"),
            last_secondary_url=data.get("last_secondary_url"),
        )

    def to_player_config(self) -> PlayerConfig:
        """Build the session tuning from these settings."""
        return PlayerConfig(
            drift_threshold=self.drift_threshold,
            tick_interval=self.tick_interval,
            skip_seconds=self.skip_seconds,
            policy=self.sync_policy,
            mute_primary=self.mute_primary,
        )


def _positive(value: object, default: float) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
        return float(value)
    return default


_FIELD_NAMES = frozenset(f.name for f in fields(Settings))


class SettingsManager:
    """Manages settings with debounced disk persistence."""

    def __init__(self, settings_file: Path) -> None:
        """Initialize the settings manager.

        Args:
            settings_file: Path to the settings file.
        """
        self._settings_file = settings_file
        self._settings = Settings()
        self._debounce_save_handle: asyncio.TimerHandle | None = None

    @property
    def settings(self) -> Settings:
        """A copy of the current settings."""
        return replace(self._settings)

    @property
    def settings_file(self) -> Path:
        """Location of the settings file."""
        return self._settings_file

    @property
    def save_pending(self) -> bool:
        """Whether a debounced save is scheduled."""
        return self._debounce_save_handle is not None

    async def load(self) -> None:
        """Load settings from disk."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._load)

    def update(self, **changes: Any) -> None:
        """Update settings fields. Only changed fields trigger a save.

        Args:
            **changes: Field names of :class:`Settings` and their new values.
                A value of None keeps the current value, except for the
                ``last_*`` fields where None is a valid value to store.

        Raises:
            TypeError: If a field name is unknown.
        """
        unknown = set(changes) - _FIELD_NAMES
        if unknown:
            raise TypeError(f"Unknown settings: {', '.join(sorted(unknown))}")

        changed = False
        for name, value in changes.items():
            if value is None and not name.startswith("last_"):
                continue
            if getattr(self._settings, name) != value:
                setattr(self._settings, name, value)
                changed = True

        if changed:
            self._schedule_save()

    async def flush(self) -> None:
        """Immediately save any pending changes to disk."""
        if self._debounce_save_handle is not None:
            self._debounce_save_handle.cancel()
            self._debounce_save_handle = None
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._save)

    def _schedule_save(self) -> None:
        """Schedule a debounced save operation."""
        if self._debounce_save_handle is not None:
            self._debounce_save_handle.cancel()

        loop = asyncio.get_running_loop()
        self._debounce_save_handle = loop.call_later(
            SAVE_DEBOUNCE_SECONDS, self._debounced_save, loop
        )

    def _debounced_save(self, loop: asyncio.AbstractEventLoop) -> None:
        """Called by the timer to save settings in executor."""
        self._debounce_save_handle = None
        loop.run_in_executor(None, self._save)

    def _load(self) -> None:
        """Load settings from the settings file (blocking I/O)."""
        if not self._settings_file.exists():
            logger.debug("Settings file does not exist: %s", self._settings_file)
            return

        try:
            data = json.loads(self._settings_file.read_text())
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Failed to load settings from %s: %s", self._settings_file, e)
            return
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed settings in %s", self._settings_file)
            return
        self._settings = Settings.from_dict(data)
        logger.info(
            "Loaded settings from %s: drift threshold=%.3fs, policy=%s",
            self._settings_file,
            self._settings.drift_threshold,
            self._settings.sync_policy.value,
        )

    def _save(self) -> None:
        """Save settings to the settings file (blocking I/O)."""
        try:
            self._settings_file.parent.mkdir(parents=True, exist_ok=True)
            self._settings_file.write_text(json.dumps(self._settings.to_dict(), indent=2) + "\n")
            logger.debug("Saved settings to %s", self._settings_file)
        except OSError as e:
            logger.warning("Failed to save settings to %s: %s", self._settings_file, e)


async def get_settings_manager(config_dir: Path | str | None = None) -> SettingsManager:
    """Create and load a settings manager.

    Args:
        config_dir: Directory to store settings. Defaults to ~/.config/dualsync.

    Returns:
        A new SettingsManager instance with settings loaded from disk.
    """
    if config_dir is None:
        config_dir = Path.home() / ".config" / "dualsync"
    elif isinstance(config_dir, str):
        config_dir = Path(config_dir)
    manager = SettingsManager(config_dir / SETTINGS_FILENAME)
    await manager.load()
    return manager
