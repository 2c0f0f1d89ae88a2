"""Turns local entity change events into sync tracks."""

import logging
from typing import TYPE_CHECKING

from ..storage.events import ChangeEvent, ChangeType
from .tracks import SyncTrackStore
from .types import SyncAction

if TYPE_CHECKING:
    from .coordinator import SyncCoordinator

logger = logging.getLogger(__name__)


class SyncTracker:
    """Change listener that records sync obligations for one entity kind.

    Creates and updates become uploads; deletes become deletes. When a
    coordinator is attached, each change also requests a debounced sync.
    """

    def __init__(
        self,
        tracks: SyncTrackStore,
        coordinator: "SyncCoordinator | None" = None,
    ):
        self.tracks = tracks
        self.coordinator = coordinator

    def on_change(self, event: ChangeEvent) -> None:
        action = SyncAction.DELETE if event.change == ChangeType.DELETED else SyncAction.UPLOAD
        track = self.tracks.track_change(event.entity_id, action)
        logger.debug(
            f"Tracked {event.kind.value} {event.entity_id}: "
            f"{track.action.value} ({track.status.value})"
        )

        if self.coordinator is not None:
            self.coordinator.request_sync()
