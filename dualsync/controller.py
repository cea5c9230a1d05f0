"""Playback session state and transport control for a synchronized player.

The controller is the only component that mutates the session. The event
bridge and the drift corrector report what they observe through the
``handle_*`` methods and :meth:`PlaybackController.end_of_media`; the UI and
the input dispatcher call the transport operations.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum

from dualsync.bridge import EventBridge, SyncPolicy
from dualsync.drift import DriftCorrector
from dualsync.readiness import ReadinessGate
from dualsync.sources import PrimarySource, SecondarySource, SourceError
from dualsync.utils import clamp

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PlayerConfig:
    """Tuning for a single playback session."""

    drift_threshold: float = 0.2
    """Maximum tolerated offset between the two clocks, in seconds."""
    tick_interval: float = 0.25
    """Period of the drift-correction tick, in seconds."""
    skip_seconds: float = 5.0
    """Step used by the skip keyboard shortcuts."""
    policy: SyncPolicy = SyncPolicy.PRIMARY_AUTHORITATIVE
    mute_primary: bool = True


class SessionPhase(Enum):
    """Coarse lifecycle phase of a playback session."""

    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    PAUSED = "paused"
    PLAYING = "playing"
    ENDED = "ended"


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """Read-only view of the session handed to the UI."""

    is_playing: bool
    progress_percent: float
    current_time: float
    duration: float
    is_interactive: bool
    phase: SessionPhase


@dataclass
class PlaybackSession:
    """State of one mounted player.

    ``current_time`` is the presented play head and always lies within
    ``[0, duration]``.
    """

    primary: PrimarySource
    secondary: SecondarySource
    readiness: ReadinessGate = field(default_factory=ReadinessGate)
    is_playing: bool = False
    duration: float = 0.0
    current_time: float = 0.0
    mounted: bool = False
    ended: bool = False
    duration_known: bool = False

    @property
    def progress_percent(self) -> float:
        """Play head position as a percentage of the duration."""
        if self.duration <= 0:
            return 0.0
        return clamp(self.current_time / self.duration * 100, 0.0, 100.0)

    @property
    def phase(self) -> SessionPhase:
        """Derive the lifecycle phase from the session flags."""
        if not self.mounted:
            return SessionPhase.UNINITIALIZED
        if not self.readiness.is_interactive:
            return SessionPhase.LOADING
        if self.is_playing:
            return SessionPhase.PLAYING
        if self.ended:
            return SessionPhase.ENDED
        return SessionPhase.PAUSED


class PlaybackController:
    """Single point of truth for transport state of a two-source session."""

    def __init__(
        self,
        primary: PrimarySource,
        secondary: SecondarySource,
        config: PlayerConfig | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            primary: Remote-controlled source providing the reference clock.
            secondary: Local source kept in sync with the primary.
            config: Session tuning. Defaults to :class:`PlayerConfig`.
        """
        self._config = config or PlayerConfig()
        self._session = PlaybackSession(primary=primary, secondary=secondary)
        self._drift = DriftCorrector(
            self,
            interval=self._config.tick_interval,
            threshold=self._config.drift_threshold,
        )
        self._bridge = EventBridge(self, primary, secondary, policy=self._config.policy)
        self._destroyed = False

    @property
    def session(self) -> PlaybackSession:
        """The session owned by this controller. Treat as read-only."""
        return self._session

    @property
    def config(self) -> PlayerConfig:
        """Session tuning."""
        return self._config

    @property
    def drift_corrector(self) -> DriftCorrector:
        """The periodic drift-correction task owned by this session."""
        return self._drift

    @property
    def is_interactive(self) -> bool:
        """Whether both sources are ready for transport commands."""
        return self._session.readiness.is_interactive

    @property
    def is_playing(self) -> bool:
        """Whether the session is playing."""
        return self._session.is_playing

    @property
    def destroyed(self) -> bool:
        """Whether :meth:`destroy` has been called."""
        return self._destroyed

    def snapshot(self) -> SessionSnapshot:
        """Return the state the UI renders."""
        session = self._session
        return SessionSnapshot(
            is_playing=session.is_playing,
            progress_percent=session.progress_percent,
            current_time=session.current_time,
            duration=session.duration,
            is_interactive=session.readiness.is_interactive,
            phase=session.phase,
        )

    async def mount(self, primary_id: str, secondary_url: str) -> None:
        """Attach to both sources and start loading them.

        Readiness is reported later through the event bridge. A failure to
        load the secondary source propagates to the caller and leaves the
        session in the loading phase.

        Args:
            primary_id: Media identifier handed to the primary source.
            secondary_url: Location of the secondary source.

        Raises:
            SourceLoadError: If the secondary source cannot be loaded.
        """
        if self._destroyed:
            return
        session = self._session
        self._bridge.attach()
        session.mounted = True
        logger.info("Mounting session: primary=%s secondary=%s", primary_id, secondary_url)
        session.primary.load(primary_id)
        session.secondary.set_source(secondary_url)
        await session.secondary.load()

    def toggle_play_pause(self) -> None:
        """Pause both sources when playing, otherwise play both."""
        if self._destroyed:
            return
        if not self.is_interactive:
            logger.debug("Ignoring play/pause, sources not ready")
            return

        session = self._session
        if session.is_playing:
            session.primary.pause()
            session.secondary.pause()
            session.is_playing = False
            self._drift.stop()
            logger.debug("Paused at %.2fs", session.current_time)
            return

        # Restart from the beginning once the end has been reached
        primary_time = self._read_primary_time()
        at_end = primary_time is not None and 0 < session.duration <= primary_time
        if session.ended or at_end:
            self._seek_sources(0.0)
        session.primary.play()
        session.secondary.play()
        session.is_playing = True
        session.ended = False
        self._drift.start()
        logger.debug("Playing from %.2fs", session.current_time)

    def seek_to(self, time: float) -> None:
        """Move both sources and the play head to ``time`` seconds.

        Targets that are not finite or lie outside ``[0, duration]`` are
        dropped and leave the session unchanged.
        """
        if self._destroyed:
            return
        if not self.is_interactive:
            logger.debug("Ignoring seek to %s, sources not ready", time)
            return
        if not math.isfinite(time) or not 0 <= time <= self._session.duration:
            logger.debug("Dropping out-of-range seek to %s", time)
            return
        self._seek_sources(time)
        self._session.ended = False

    def skip(self, delta: float) -> None:
        """Seek ``delta`` seconds relative to the primary clock, within bounds."""
        if self._destroyed or not self.is_interactive:
            return
        primary_time = self._read_primary_time()
        if primary_time is None:
            return
        new_time = clamp(primary_time + delta, 0.0, self._session.duration)
        if math.isfinite(new_time) and 0 <= new_time <= self._session.duration:
            self.seek_to(new_time)

    def seek_to_percent(self, percent: float) -> None:
        """Seek to a position given as a percentage of the duration."""
        self.seek_to(percent / 100 * self._session.duration)

    def destroy(self) -> None:
        """Stop the tick, detach from both sources and release them."""
        if self._destroyed:
            return
        self._destroyed = True
        self._drift.stop()
        self._bridge.detach()
        session = self._session
        session.is_playing = False
        session.primary.destroy()
        session.secondary.release()
        logger.info("Session destroyed")

    # Notifications from the event bridge and the drift corrector

    def handle_primary_ready(self, duration: float) -> None:
        """Record primary readiness and its authoritative duration."""
        if self._destroyed:
            return
        session = self._session
        session.readiness.mark_primary_ready()
        if not session.duration_known and math.isfinite(duration) and duration >= 0:
            session.duration = duration
            session.duration_known = True
        logger.info("Primary source ready (duration %.2fs)", session.duration)

    def handle_secondary_ready(self) -> None:
        """Record secondary readiness."""
        if self._destroyed:
            return
        self._session.readiness.mark_secondary_ready()
        logger.info("Secondary source ready")

    def handle_transport_state(self, playing: bool) -> None:
        """Mirror a transport change reported by the authoritative source."""
        if self._destroyed or not self.is_interactive:
            return
        session = self._session
        if playing:
            session.is_playing = True
            session.ended = False
            self._drift.start()
        else:
            session.is_playing = False
            self._drift.stop()

    def end_of_media(self) -> None:
        """Transition to the ended phase and rewind the secondary source."""
        if self._destroyed:
            return
        session = self._session
        self._drift.stop()
        session.is_playing = False
        session.ended = True
        session.current_time = 0.0
        try:
            session.secondary.pause()
            session.secondary.current_time = 0.0
        except SourceError as e:
            logger.debug("Could not rewind secondary source at end of media: %s", e)
        logger.info("Reached end of media")

    def update_play_head(self, time: float) -> None:
        """Set the presented play head, clamped to ``[0, duration]``."""
        if self._destroyed or not math.isfinite(time):
            return
        self._session.current_time = clamp(time, 0.0, self._session.duration)

    def _read_primary_time(self) -> float | None:
        """Read the primary clock, or None if the read failed."""
        try:
            return self._session.primary.get_current_time()
        except SourceError as e:
            logger.debug("Primary clock unavailable: %s", e)
            return None

    def _seek_sources(self, time: float) -> None:
        session = self._session
        session.primary.seek(time, True)
        try:
            session.secondary.current_time = time
        except SourceError as e:
            logger.debug("Secondary seek to %.2fs failed: %s", time, e)
        self.update_play_head(time)
