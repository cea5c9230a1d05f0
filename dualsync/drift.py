"""Periodic drift correction between the primary and secondary clocks."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Final

from dualsync.sources import SourceError

if TYPE_CHECKING:
    from dualsync.controller import PlaybackController

logger = logging.getLogger(__name__)


class DriftCorrector:
    """Keeps the secondary clock within a threshold of the primary clock.

    While the session plays, a tick runs every ``interval`` seconds on the
    event loop. Each tick first checks for end of media, then corrects the
    secondary clock if it drifted too far, then updates the play head. The
    primary clock is never touched.

    The next tick is scheduled only after the current one has finished, so
    ticks never overlap, and the pending timer handle is the only reference
    to future work: cancelling it stops the loop synchronously.
    """

    DEFAULT_INTERVAL: Final[float] = 0.25
    DEFAULT_THRESHOLD: Final[float] = 0.2

    def __init__(
        self,
        controller: PlaybackController,
        *,
        interval: float = DEFAULT_INTERVAL,
        threshold: float = DEFAULT_THRESHOLD,
    ) -> None:
        """Initialize the drift corrector.

        Args:
            controller: Controller owning the session to correct.
            interval: Seconds between ticks.
            threshold: Largest tolerated clock offset in seconds.
        """
        self._controller = controller
        self._interval = interval
        self._threshold = threshold
        self._handle: asyncio.TimerHandle | None = None
        self._ticks = 0
        self._corrections = 0

    @property
    def running(self) -> bool:
        """Whether a tick is scheduled."""
        return self._handle is not None

    @property
    def interval(self) -> float:
        """Seconds between ticks."""
        return self._interval

    @property
    def threshold(self) -> float:
        """Largest tolerated clock offset in seconds."""
        return self._threshold

    @property
    def ticks(self) -> int:
        """Number of ticks executed so far."""
        return self._ticks

    @property
    def corrections(self) -> int:
        """Number of corrective seeks issued so far."""
        return self._corrections

    def start(self) -> None:
        """Schedule the first tick unless one is already pending."""
        if self._handle is not None or not self._controller.is_playing:
            return
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self._interval, self._run)

    def stop(self) -> None:
        """Cancel the pending tick, if any."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _run(self) -> None:
        """Timer callback: execute one tick and schedule the next."""
        self._handle = None
        try:
            self.tick()
        except Exception:
            logger.exception("Drift tick failed")
        if self._controller.is_playing and not self._controller.destroyed:
            self.start()

    def tick(self) -> None:
        """Compare both clocks once and correct the secondary if needed."""
        controller = self._controller
        if controller.destroyed or not controller.is_playing:
            return
        self._ticks += 1
        session = controller.session

        try:
            primary_time = session.primary.get_current_time()
            secondary_time = session.secondary.current_time
        except SourceError as e:
            logger.debug("Skipping drift tick, clock read failed: %s", e)
            return

        if session.duration > 0 and primary_time >= session.duration:
            controller.end_of_media()
            return

        drift = primary_time - secondary_time
        if abs(drift) > self._threshold:
            try:
                session.secondary.current_time = primary_time
            except SourceError as e:
                logger.debug("Skipping drift tick, corrective seek failed: %s", e)
                return
            self._corrections += 1
            logger.debug(
                "Corrected drift of %.0fms at %.2fs", drift * 1000, primary_time
            )

        controller.update_play_head(primary_time)
