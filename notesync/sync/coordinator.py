"""Sync coordinator: drains local sync tracks and pulls remote changes.

A cycle pushes every pending or failed track (deletes before uploads),
commits each push through the conflict guard, then pulls remote changes
since the last watermark and applies them without re-enqueueing them.
One failing item never aborts the cycle.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Protocol

from ..storage.database import Database
from ..storage.events import EntityKind
from ..storage.timestamps import parse_timestamp, utcnow
from .remote import RemoteChange, RemoteError, RemoteStore
from .tracks import SyncTrackStore
from .types import SyncAction, SyncTrack, TrackStatus

logger = logging.getLogger(__name__)


class SyncStatus(Enum):
    """Outcome of a sync cycle."""

    SUCCESS = "success"
    PARTIAL = "partial"  # Some items failed
    FAILED = "failed"
    OFFLINE = "offline"  # Remote unavailable
    SKIPPED = "skipped"  # Another cycle was already running


@dataclass
class SyncResult:
    """Result of a sync cycle."""

    status: SyncStatus
    pushed: int = 0
    deleted: int = 0
    pulled: int = 0
    requeued: int = 0
    failed: int = 0
    error: str | None = None
    timestamp: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "status": self.status.value,
            "pushed": self.pushed,
            "deleted": self.deleted,
            "pulled": self.pulled,
            "requeued": self.requeued,
            "failed": self.failed,
            "error": self.error,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class SyncProgress:
    """Observable progress of the current or last cycle."""

    is_syncing: bool = False
    synced: int = 0
    total: int = 0
    failed_ids: set[tuple[str, int]] = field(default_factory=set)
    status_message: str = ""
    last_sync: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        failed: dict[str, list[int]] = {}
        for kind, local_id in sorted(self.failed_ids):
            failed.setdefault(kind, []).append(local_id)
        return {
            "is_syncing": self.is_syncing,
            "synced": self.synced,
            "total": self.total,
            "failed": failed,
            "status_message": self.status_message,
            "last_sync": self.last_sync.isoformat() if self.last_sync else None,
        }


class EntityStore(Protocol):
    """The parts of a note or label store the coordinator relies on."""

    def get_by_id(self, local_id: int) -> Any: ...

    def apply_remote_update(self, local_id: int | None, document: dict[str, Any]) -> Any: ...

    def delete_from_remote(self, local_id: int) -> bool: ...


@dataclass
class SyncChannel:
    """One syncable entity kind: its local store and its track table."""

    kind: EntityKind
    entities: EntityStore
    tracks: SyncTrackStore

    @property
    def name(self) -> str:
        return self.kind.value

    @property
    def watermark_key(self) -> str:
        return f"last_synced:{self.kind.value}"


class SyncCoordinator:
    """Drives sync cycles against a remote store.

    Cycles are single-flight: a cycle requested while another is running
    is skipped rather than run concurrently.
    """

    def __init__(
        self,
        remote: RemoteStore,
        channels: list[SyncChannel],
        db: Database,
        batch_size: int | None = None,
        debounce_seconds: float = 5.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the coordinator.

        Args:
            remote: Remote document store.
            channels: Entity kinds to sync, in processing order.
            db: Database holding the pull watermarks.
            batch_size: Maximum tracks of each action pushed per cycle
                and channel, or None for all.
            debounce_seconds: Default delay for request_sync().
            clock: Source of timestamps.
        """
        self.remote = remote
        self.channels = channels
        self.db = db
        self.batch_size = batch_size
        self.debounce_seconds = debounce_seconds
        self._clock = clock
        self._lock = asyncio.Lock()
        self._scheduled: asyncio.Task | None = None
        self._consecutive_failures = 0
        self.progress = SyncProgress()

    @property
    def is_syncing(self) -> bool:
        return self._lock.locked()

    @property
    def last_sync(self) -> datetime | None:
        """Get timestamp of last completed cycle."""
        return self.progress.last_sync

    def channel(self, kind: EntityKind | str) -> SyncChannel:
        name = kind.value if isinstance(kind, EntityKind) else kind
        for channel in self.channels:
            if channel.name == name:
                return channel
        raise KeyError(f"No sync channel for {name}")

    # ==================== Cycle ====================

    async def run_cycle(self) -> SyncResult:
        """Run one push + pull cycle.

        Returns:
            SyncResult; SKIPPED if a cycle was already in progress.
        """
        if self._lock.locked():
            logger.debug("Sync already in progress, skipping")
            return SyncResult(status=SyncStatus.SKIPPED, timestamp=self._clock())

        async with self._lock:
            self.progress.is_syncing = True
            self.progress.synced = 0
            self.progress.total = 0
            self.progress.failed_ids = set()
            self.progress.status_message = "Syncing..."

            result = SyncResult(status=SyncStatus.SUCCESS)
            sync_started_at = self._clock()
            offline = False

            try:
                for channel in self.channels:
                    channel.tracks.reset_syncing()
                    await self._push_channel(channel, sync_started_at, result)

                self.progress.status_message = "Getting updates..."
                for channel in self.channels:
                    offline = await self._pull_channel(channel, result) or offline
            finally:
                self.progress.is_syncing = False

            succeeded = result.pushed + result.deleted + result.pulled
            if result.failed == 0:
                result.status = SyncStatus.SUCCESS
                self.progress.status_message = "Sync Complete"
                self._consecutive_failures = 0
            else:
                if offline and succeeded == 0:
                    result.status = SyncStatus.OFFLINE
                elif succeeded > 0:
                    result.status = SyncStatus.PARTIAL
                else:
                    result.status = SyncStatus.FAILED
                self.progress.status_message = f"{result.failed} items failed to sync"
                self._consecutive_failures += 1

            result.timestamp = self._clock()
            self.progress.last_sync = result.timestamp

        logger.info(
            f"Sync: {result.status.value}, pushed={result.pushed}, "
            f"deleted={result.deleted}, pulled={result.pulled}, "
            f"requeued={result.requeued}, failed={result.failed}"
        )

        if result.requeued:
            # Edits made during the push still need to go out
            self.request_sync()

        return result

    async def _push_channel(
        self,
        channel: SyncChannel,
        sync_started_at: datetime,
        result: SyncResult,
    ) -> None:
        # Deletes first: no point uploading something that is going away
        tracks = channel.tracks.get(
            pending=True, action=SyncAction.DELETE, limit=self.batch_size
        ) + channel.tracks.get(pending=True, action=SyncAction.UPLOAD, limit=self.batch_size)
        if not tracks:
            return

        self.progress.total += len(tracks)
        logger.info(f"PUSH {channel.name}: {len(tracks)} local changes to sync")

        for track in tracks:
            try:
                channel.tracks.mark_syncing(track)

                entity = None
                if track.action == SyncAction.UPLOAD:
                    entity = channel.entities.get_by_id(track.local_id)
                    if entity is None:
                        # Deleted locally while the track still said upload
                        channel.tracks.set_action(track, SyncAction.DELETE)

                if track.action == SyncAction.DELETE:
                    await self._push_delete(channel, track, sync_started_at)
                    result.deleted += 1
                    self.progress.synced += 1
                elif await self._deleted_remotely(channel, track):
                    result.pulled += 1
                    self.progress.synced += 1
                elif await self._push_upload(channel, track, entity, sync_started_at):
                    result.pushed += 1
                    self.progress.synced += 1
                else:
                    result.requeued += 1
            except Exception as e:
                logger.error(f"PUSH {channel.name} {track.local_id} failed: {e}")
                self._record_failure(channel, track)
                result.failed += 1
                result.error = str(e)

    async def _push_delete(
        self,
        channel: SyncChannel,
        track: SyncTrack,
        sync_started_at: datetime,
    ) -> None:
        if track.remote_id is not None:
            await self.remote.delete(channel.name, track.remote_id)
            logger.info(f"PUSH {channel.name} {track.local_id}: deleted remote {track.remote_id}")
        else:
            # Never reached the remote store; only the local track goes
            logger.debug(f"PUSH {channel.name} {track.local_id}: dropped track (no remote id)")
        channel.tracks.mark_synced_if_unchanged(track, sync_started_at)

    async def _deleted_remotely(self, channel: SyncChannel, track: SyncTrack) -> bool:
        """Apply a remote tombstone found before uploading over it.

        Another device may have deleted the document since our last pull;
        a push would revive it.

        Returns:
            True if the entity was deleted locally instead of pushed.
        """
        if track.remote_id is None:
            return False

        current = await self.remote.get(channel.name, track.remote_id)
        if current is None or not current.deleted:
            return False

        channel.entities.delete_from_remote(track.local_id)
        channel.tracks.delete(track)
        logger.info(
            f"PUSH {channel.name} {track.local_id}: remote {track.remote_id} was deleted, "
            "deleted locally"
        )
        return True

    async def _push_upload(
        self,
        channel: SyncChannel,
        track: SyncTrack,
        entity: Any,
        sync_started_at: datetime,
    ) -> bool:
        remote_id = await self.remote.push(channel.name, entity.to_document(), track.remote_id)

        if channel.tracks.mark_synced_if_unchanged(track, sync_started_at, remote_id):
            logger.info(f"PUSH {channel.name} {track.local_id}: synced as {remote_id}")
            return True

        logger.info(f"PUSH {channel.name} {track.local_id}: modified during sync, will re-sync")
        return False

    def _record_failure(self, channel: SyncChannel, track: SyncTrack) -> None:
        self.progress.failed_ids.add((channel.name, track.local_id))
        try:
            channel.tracks.mark_failed(track)
        except Exception:
            logger.exception(f"Could not mark {channel.name} {track.local_id} as failed")

    async def _pull_channel(self, channel: SyncChannel, result: SyncResult) -> bool:
        """Pull and apply remote changes for one channel.

        Returns:
            True if the remote was unreachable.
        """
        raw = self.db.get_state(channel.watermark_key)
        since = parse_timestamp(raw)

        try:
            changes = await self.remote.pull_since(channel.name, since)
        except Exception as e:
            logger.error(f"PULL {channel.name} failed: {e}")
            result.failed += 1
            result.error = str(e)
            return isinstance(e, RemoteError) and e.offline

        if not changes:
            return False

        logger.info(f"PULL {channel.name}: {len(changes)} remote changes since {raw or 'beginning'}")
        self.progress.total += len(changes)

        newest = since
        failures = 0
        for change in changes:
            try:
                if self._apply_change(channel, change):
                    result.pulled += 1
                self.progress.synced += 1
            except Exception as e:
                logger.error(f"PULL {channel.name} {change.remote_id} failed: {e}")
                failures += 1
            if newest is None or change.updated_at > newest:
                newest = change.updated_at

        result.failed += failures
        if failures == 0 and newest is not None and newest != since:
            self.db.set_state(channel.watermark_key, newest.isoformat())
        elif failures:
            logger.info(f"PULL {channel.name}: {failures} failed, watermark not advanced")

        return False

    def _apply_change(self, channel: SyncChannel, change: RemoteChange) -> bool:
        """Apply one remote change locally.

        Runs without awaiting, so no local edit can interleave between the
        pending check and the write.

        Returns:
            True if local state changed.
        """
        track = channel.tracks.get_by_remote_id(change.remote_id)

        if change.deleted:
            if track is None:
                return False
            channel.entities.delete_from_remote(track.local_id)
            channel.tracks.delete(track)
            logger.info(f"PULL {channel.name} {track.local_id}: deleted from remote")
            return True

        if track is not None and track.status != TrackStatus.SYNCED:
            # Local changes not pushed yet win until they are
            logger.debug(f"PULL {channel.name} {track.local_id}: skipped, local changes pending")
            return False

        if track is not None:
            local = channel.entities.get_by_id(track.local_id)
            if (
                local is not None
                and local.updated_at is not None
                and local.updated_at >= change.updated_at
            ):
                return False

        entity = channel.entities.apply_remote_update(
            track.local_id if track else None, change.document
        )

        if track is None:
            track = SyncTrack(
                local_id=entity.id,
                action=SyncAction.UPLOAD,
                status=TrackStatus.SYNCED,
                remote_id=change.remote_id,
            )
        else:
            track.action = SyncAction.UPLOAD
            track.status = TrackStatus.SYNCED
            track.remote_id = track.remote_id or change.remote_id
        channel.tracks.save(track)

        logger.info(f"PULL {channel.name} {entity.id}: updated from remote {change.remote_id}")
        return True

    # ==================== Triggers ====================

    def request_sync(self, delay: float | None = None) -> None:
        """Schedule a cycle after a short delay, replacing any scheduled one.

        Does nothing when called outside a running event loop.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, sync request deferred to next cycle")
            return

        scheduled = self._scheduled
        if (
            scheduled is not None
            and not scheduled.done()
            and scheduled is not asyncio.current_task()
        ):
            scheduled.cancel()

        wait = self.debounce_seconds if delay is None else delay
        self._scheduled = loop.create_task(self._delayed_cycle(wait))

    async def _delayed_cycle(self, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self.run_cycle()
        except Exception as e:
            logger.error(f"Scheduled sync failed: {e}")

    async def close(self) -> None:
        """Cancel a scheduled cycle and close the remote store."""
        if self._scheduled is not None and not self._scheduled.done():
            self._scheduled.cancel()
            try:
                await self._scheduled
            except asyncio.CancelledError:
                pass
        self._scheduled = None
        await self.remote.close()

    async def sync_loop(
        self,
        interval_seconds: int = 300,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Run continuous sync loop.

        Args:
            interval_seconds: Seconds between sync attempts.
            stop_event: Event to signal loop should stop.
        """
        logger.info(f"Starting sync loop with {interval_seconds}s interval")

        while True:
            if stop_event and stop_event.is_set():
                break

            try:
                await self.run_cycle()
            except Exception as e:
                logger.error(f"Sync loop error: {e}")
                self._consecutive_failures += 1

            # Adaptive interval: back off if consecutive failures
            wait_time = interval_seconds
            if self._consecutive_failures > 0:
                wait_time = min(
                    interval_seconds * (2 ** self._consecutive_failures),
                    3600,  # Max 1 hour
                )
                logger.debug(f"Backing off sync for {wait_time}s")

            if stop_event:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=wait_time)
                    break  # Stop event was set
                except asyncio.TimeoutError:
                    pass  # Normal timeout, continue loop
            else:
                await asyncio.sleep(wait_time)

        logger.info("Sync loop stopped")

    # ==================== Status ====================

    def get_status(self) -> dict[str, Any]:
        """Get current sync status.

        Returns:
            Dictionary with per-kind track counts and progress.
        """
        counts = {}
        for channel in self.channels:
            counts[channel.name] = {
                "pending": channel.tracks.count(pending=True),
                "failed": channel.tracks.count(status=TrackStatus.FAILED),
                "synced": channel.tracks.count(status=TrackStatus.SYNCED),
            }

        return {
            "progress": self.progress.to_dict(),
            "consecutive_failures": self._consecutive_failures,
            "tracks": counts,
        }
