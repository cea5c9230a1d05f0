"""Readiness tracking for the two media sources."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class ReadinessGate:
    """Independent readiness flags for the primary and secondary source.

    Flags only ever go from False to True. Transport commands that need both
    sources are dropped until :attr:`is_interactive` is True.
    """

    primary_ready: bool = False
    secondary_ready: bool = False

    def mark_primary_ready(self) -> None:
        """Record that the primary source finished loading."""
        self.primary_ready = True

    def mark_secondary_ready(self) -> None:
        """Record that the secondary source finished loading."""
        self.secondary_ready = True

    @property
    def is_interactive(self) -> bool:
        """Whether both sources are ready to accept transport commands."""
        return self.primary_ready and self.secondary_ready
