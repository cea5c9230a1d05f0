"""Translation of native source notifications into controller calls."""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING

from dualsync.sources import PrimarySource, PrimaryState, SecondarySource, Unsubscribe

if TYPE_CHECKING:
    from dualsync.controller import PlaybackController

logger = logging.getLogger(__name__)


class SyncPolicy(Enum):
    """Which source's native play/pause notifications drive the other.

    Only one direction is ever active, so the two sources cannot command
    each other back and forth.
    """

    PRIMARY_AUTHORITATIVE = "primary"
    """Primary play/pause/end is mirrored onto the secondary source."""

    SECONDARY_AUTHORITATIVE = "secondary"
    """Secondary play/pause is mirrored onto the primary source."""


class EventBridge:
    """Subscribes to both sources and forwards their notifications.

    Session changes go through the controller. Under the active
    :class:`SyncPolicy` the bridge also commands the following source so it
    matches the authoritative one.
    """

    def __init__(
        self,
        controller: PlaybackController,
        primary: PrimarySource,
        secondary: SecondarySource,
        *,
        policy: SyncPolicy = SyncPolicy.PRIMARY_AUTHORITATIVE,
    ) -> None:
        """Initialize the bridge. Nothing is subscribed until :meth:`attach`."""
        self._controller = controller
        self._primary = primary
        self._secondary = secondary
        self._policy = policy
        self._unsubscribers: list[Unsubscribe] = []

    @property
    def policy(self) -> SyncPolicy:
        """The active sync policy."""
        return self._policy

    @property
    def attached(self) -> bool:
        """Whether the bridge is subscribed to the sources."""
        return bool(self._unsubscribers)

    def attach(self) -> None:
        """Subscribe to the native notifications of both sources."""
        if self._unsubscribers:
            return
        self._unsubscribers = [
            self._primary.add_ready_listener(self.on_primary_ready),
            self._primary.add_state_listener(self.on_primary_state_changed),
            self._secondary.add_loaded_metadata_listener(self.on_secondary_ready),
            self._secondary.add_play_listener(self.on_secondary_play),
            self._secondary.add_pause_listener(self.on_secondary_pause),
            self._secondary.add_time_update_listener(self.on_secondary_time_update),
        ]
        logger.debug("Event bridge attached (%s policy)", self._policy.value)

    def detach(self) -> None:
        """Drop every subscription made by :meth:`attach`."""
        for unsubscribe in reversed(self._unsubscribers):
            unsubscribe()
        self._unsubscribers = []

    def on_primary_ready(self, duration: float) -> None:
        self._controller.handle_primary_ready(duration)

    def on_primary_state_changed(self, state: PrimaryState) -> None:
        if state is PrimaryState.ENDED:
            self._controller.end_of_media()
            return
        if state is PrimaryState.OTHER:
            # Buffering, cueing and similar states do not change transport
            return

        playing = state is PrimaryState.PLAYING
        if self._policy is SyncPolicy.PRIMARY_AUTHORITATIVE:
            if not self._controller.is_interactive:
                return
            if playing and self._secondary.paused:
                self._secondary.play()
            elif not playing and not self._secondary.paused:
                self._secondary.pause()
        self._controller.handle_transport_state(playing)

    def on_secondary_ready(self) -> None:
        self._controller.handle_secondary_ready()

    def on_secondary_play(self) -> None:
        if self._policy is not SyncPolicy.SECONDARY_AUTHORITATIVE:
            return
        if not self._controller.is_interactive:
            return
        if self._primary.get_player_state() is not PrimaryState.PLAYING:
            self._primary.play()
        self._controller.handle_transport_state(True)

    def on_secondary_pause(self) -> None:
        if self._policy is not SyncPolicy.SECONDARY_AUTHORITATIVE:
            return
        if not self._controller.is_interactive:
            return
        if self._primary.get_player_state() is PrimaryState.PLAYING:
            self._primary.pause()
        self._controller.handle_transport_state(False)

    def on_secondary_time_update(self, time: float) -> None:
        # While playing the drift tick owns the play head
        if self._policy is SyncPolicy.SECONDARY_AUTHORITATIVE and not self._controller.is_playing:
            self._controller.update_play_head(time)
