"""Timestamp-based guard for committing a completed remote write.

A push can take a while. If the entity is edited locally while the push is
in flight, the remote copy now holds stale data, and marking the track
synced would lose the newer edit. The guard compares the persisted track's
``updated_at`` against the moment the push began and refuses the commit in
that case, leaving the track pending for the next pass.

Resolution is last-writer-wins at whole-entity granularity: there is no
field-level merge.
"""

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from .types import SyncAction, TrackStatus

if TYPE_CHECKING:
    from .tracks import SyncTrackStore

logger = logging.getLogger(__name__)


class ConflictGuard:
    """Optimistic-concurrency check over one track table."""

    def __init__(self, store: "SyncTrackStore"):
        self.store = store

    def commit(
        self,
        local_id: int,
        sync_started_at: datetime,
        new_remote_id: str | None = None,
        action: SyncAction = SyncAction.UPLOAD,
    ) -> bool:
        """Mark a track synced unless it changed after the push began.

        Args:
            local_id: Entity whose push just completed.
            sync_started_at: Wall-clock time taken before the push began.
            new_remote_id: Remote id returned by the push, if any.
            action: Action the completed push carried out. A completed
                delete always resolves the track; a completed upload does
                not resolve a delete queued while it was in flight.

        Returns:
            True if the obligation is resolved, False if a newer local
            edit must be pushed on the next pass.
        """
        # Always judge against storage, never the caller's copy
        current = self.store.get_by_local_id(local_id)
        if current is None:
            logger.debug(f"{self.store.table}: track for {local_id} already resolved")
            return True

        if action == SyncAction.DELETE:
            self.store.delete(current)
            return True

        if current.action == SyncAction.DELETE or (
            current.updated_at is not None and current.updated_at > sync_started_at
        ):
            if current.remote_id is None and new_remote_id:
                # Keep the remote id so the retry reaches the same document
                self.store.set_remote_id(current, new_remote_id)
            logger.info(
                f"{self.store.table}: entity {local_id} modified during sync, will re-sync"
            )
            return False

        current.status = TrackStatus.SYNCED
        current.remote_id = new_remote_id or current.remote_id
        self.store.save(current)
        return True
