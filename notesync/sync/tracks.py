"""Persistent sync tracks: what the remote store is owed for each local entity.

Each syncable entity kind has its own table. A track is created lazily the
first time an entity changes locally and is re-armed to ``pending`` on every
later change. Delete obligations are sticky: once an entity is queued for
remote deletion it is never downgraded back to an upload.
"""

import logging
from datetime import datetime
from typing import Callable

from ..storage.database import Database
from ..storage.timestamps import utcnow
from .conflict import ConflictGuard
from .types import SyncAction, SyncTrack, TrackStatus

logger = logging.getLogger(__name__)

_COLUMNS = "id, local_id, remote_id, action, status, created_at, updated_at"


class SyncTrackStore:
    """Bookkeeping of pending remote operations for one entity kind.

    Persistence errors propagate to the caller; deciding whether to log and
    continue belongs to the sync coordinator.
    """

    def __init__(
        self,
        db: Database,
        table: str = "sync_track",
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the track store.

        Args:
            db: Shared database.
            table: Track table ("sync_track" or "label_sync_track").
            clock: Source of timestamps.
        """
        self.db = db
        self.table = table
        self._clock = clock
        self.guard = ConflictGuard(self)

    def _where(
        self,
        local_id: int | None = None,
        remote_id: str | None = None,
        action: SyncAction | None = None,
        status: TrackStatus | None = None,
        pending: bool | None = None,
    ) -> tuple[str, list]:
        clauses = []
        args: list = []

        if local_id is not None:
            clauses.append("local_id = ?")
            args.append(local_id)

        if remote_id is not None:
            clauses.append("remote_id = ?")
            args.append(remote_id)

        if action is not None:
            clauses.append("action = ?")
            args.append(action.value)

        if pending:
            clauses.append("status IN (?, ?)")
            args.extend([TrackStatus.PENDING.value, TrackStatus.FAILED.value])
        elif status is not None:
            clauses.append("status = ?")
            args.append(status.value)

        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, args

    def get(
        self,
        local_id: int | None = None,
        remote_id: str | None = None,
        action: SyncAction | None = None,
        status: TrackStatus | None = None,
        pending: bool | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[SyncTrack]:
        """Query tracks.

        Args:
            pending: If True, match tracks still owed (pending or failed);
                takes precedence over ``status``.

        Returns:
            Matching tracks, oldest first.
        """
        where, args = self._where(local_id, remote_id, action, status, pending)
        query = f"SELECT {_COLUMNS} FROM {self.table}{where} ORDER BY id ASC"

        if limit is not None:
            query += " LIMIT ?"
            args.append(limit)
            if offset is not None:
                query += " OFFSET ?"
                args.append(offset)

        cursor = self.db.conn.execute(query, args)
        return [SyncTrack.from_row(row) for row in cursor]

    def get_by_local_id(self, local_id: int) -> SyncTrack | None:
        rows = self.get(local_id=local_id, limit=1)
        return rows[0] if rows else None

    def get_by_remote_id(self, remote_id: str) -> SyncTrack | None:
        """Reverse lookup used when a remote change references a remote id."""
        rows = self.get(remote_id=remote_id, limit=1)
        return rows[0] if rows else None

    def get_or_new(self, local_id: int, action: SyncAction) -> SyncTrack:
        """Existing track for an entity, or a new unsaved one."""
        return self.get_by_local_id(local_id) or SyncTrack(local_id=local_id, action=action)

    def count(
        self,
        pending: bool | None = None,
        action: SyncAction | None = None,
        status: TrackStatus | None = None,
    ) -> int:
        where, args = self._where(action=action, status=status, pending=pending)
        cursor = self.db.conn.execute(f"SELECT COUNT(*) FROM {self.table}{where}", args)
        return cursor.fetchone()[0]

    def save(self, track: SyncTrack) -> int:
        """Insert or update a track, refreshing ``updated_at``.

        Returns:
            The track's row id.
        """
        now = self._clock()
        track.updated_at = now
        conn = self.db.conn

        if track.id is not None:
            conn.execute(
                f"""
                UPDATE {self.table}
                SET local_id = ?, remote_id = ?, action = ?, status = ?,
                    created_at = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    track.local_id,
                    track.remote_id,
                    track.action.value,
                    track.status.value,
                    track.created_at.isoformat() if track.created_at else None,
                    now.isoformat(),
                    track.id,
                ),
            )
        else:
            track.created_at = now
            cursor = conn.execute(
                f"""
                INSERT INTO {self.table} (
                    local_id, remote_id, action, status, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    track.local_id,
                    track.remote_id,
                    track.action.value,
                    track.status.value,
                    now.isoformat(),
                    now.isoformat(),
                ),
            )
            track.id = cursor.lastrowid

        conn.commit()
        return track.id

    def delete(self, track: SyncTrack) -> None:
        if track.id is None:
            return
        self.db.conn.execute(f"DELETE FROM {self.table} WHERE id = ?", (track.id,))
        self.db.conn.commit()

    def delete_by_local_id(self, local_id: int) -> None:
        self.db.conn.execute(f"DELETE FROM {self.table} WHERE local_id = ?", (local_id,))
        self.db.conn.commit()

    def set_action(self, track: SyncTrack, new_action: SyncAction) -> SyncTrack:
        """Re-arm a track for a new action.

        The persisted track is re-read first, because two in-memory copies
        can race (an update and a delete arriving back to back). A persisted
        delete is never downgraded to an upload.
        """
        current = self.get_by_local_id(track.local_id)
        if current is not None:
            if current.action == SyncAction.DELETE and new_action == SyncAction.UPLOAD:
                logger.debug(
                    f"{self.table}: ignoring upload for {track.local_id}, delete is queued"
                )
                track.action = current.action
                track.status = current.status
                return track

            track.id = current.id
            track.remote_id = current.remote_id
            track.status = current.status
            track.created_at = current.created_at
            track.updated_at = current.updated_at

        track.action = new_action
        track.status = TrackStatus.PENDING
        self.save(track)
        return track

    def track_change(self, local_id: int, action: SyncAction) -> SyncTrack:
        """Record that an entity changed locally."""
        return self.set_action(self.get_or_new(local_id, action), action)

    def mark_syncing(self, track: SyncTrack) -> None:
        """Flag a track as in flight.

        Only the status column changes: this is not a local modification
        and must not move ``updated_at``.
        """
        track.status = TrackStatus.SYNCING
        self.db.conn.execute(
            f"UPDATE {self.table} SET status = ? WHERE local_id = ? AND status IN (?, ?)",
            (
                TrackStatus.SYNCING.value,
                track.local_id,
                TrackStatus.PENDING.value,
                TrackStatus.FAILED.value,
            ),
        )
        self.db.conn.commit()

    def reset_syncing(self) -> int:
        """Return tracks stranded in ``syncing`` by an interrupted run to pending.

        Returns:
            Number of tracks reset.
        """
        cursor = self.db.conn.execute(
            f"UPDATE {self.table} SET status = ? WHERE status = ?",
            (TrackStatus.PENDING.value, TrackStatus.SYNCING.value),
        )
        self.db.conn.commit()
        if cursor.rowcount:
            logger.warning(f"{self.table}: reset {cursor.rowcount} interrupted tracks")
        return cursor.rowcount

    def set_remote_id(self, track: SyncTrack, remote_id: str) -> None:
        """Record a remote id without touching ``updated_at``."""
        track.remote_id = remote_id
        self.db.conn.execute(
            f"UPDATE {self.table} SET remote_id = ? WHERE local_id = ?",
            (remote_id, track.local_id),
        )
        self.db.conn.commit()

    def mark_synced_if_unchanged(
        self,
        track: SyncTrack,
        sync_started_at: datetime,
        new_remote_id: str | None = None,
    ) -> bool:
        """Commit a completed push through the conflict guard.

        Returns:
            False if the entity changed after ``sync_started_at``.
        """
        result = self.guard.commit(
            track.local_id, sync_started_at, new_remote_id, action=track.action
        )
        self._refresh(track)
        return result

    def mark_synced(self, track: SyncTrack, new_remote_id: str | None = None) -> None:
        """Mark synced without a conflict window; delete tracks are removed."""
        current = self.get_by_local_id(track.local_id) or track
        if current.action == SyncAction.DELETE:
            self.delete(current)
            self._refresh(track)
            return

        current.status = TrackStatus.SYNCED
        current.remote_id = new_remote_id or current.remote_id
        self.save(current)
        self._refresh(track)

    def mark_failed(self, track: SyncTrack) -> None:
        """Flag a track for retry, leaving its action and remote id alone."""
        now = self._clock()
        track.status = TrackStatus.FAILED
        self.db.conn.execute(
            f"UPDATE {self.table} SET status = ?, updated_at = ? WHERE local_id = ?",
            (TrackStatus.FAILED.value, now.isoformat(), track.local_id),
        )
        self.db.conn.commit()

    def _refresh(self, track: SyncTrack) -> None:
        current = self.get_by_local_id(track.local_id)
        if current is None:
            track.id = None
            return
        track.id = current.id
        track.action = current.action
        track.status = current.status
        track.remote_id = current.remote_id
        track.created_at = current.created_at
        track.updated_at = current.updated_at
