"""Port definition for persisting tracking state."""

from __future__ import annotations

from abc import ABC, abstractmethod

from milestonecontrol.domain.tracking.models import ActivityEvent, TrackingState


class TrackingRepository(ABC):
    """Abstraction over durable storage for the tracking store.

    Implementations raise :class:`~milestonecontrol.domain.tracking.models.StorageError`
    on any I/O or decoding failure.
    """

    @abstractmethod
    def load(self) -> TrackingState:
        """Return the persisted state, or an empty state when nothing is stored."""

    @abstractmethod
    def save(self, state: TrackingState) -> None:
        """Persist entity tables and id counters."""

    @abstractmethod
    def append_event(self, event: ActivityEvent) -> None:
        """Append one event to the durable activity log."""


__all__ = ["TrackingRepository"]
