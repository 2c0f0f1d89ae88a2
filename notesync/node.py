"""Wires storage, encryption and sync together for one device."""

import asyncio
import logging

from .config import Config
from .crypto import LocalCrypto
from .storage import Database, EntityKind, LabelStore, NoteStore
from .sync import (
    HttpRemoteStore,
    RemoteStore,
    SyncChannel,
    SyncCoordinator,
    SyncTracker,
    SyncTrackStore,
)

logger = logging.getLogger(__name__)


class SyncNode:
    """All local components of a notesync device.

    Note and label changes made through ``notes`` and ``labels`` are
    tracked automatically. A coordinator exists only when sync is enabled
    and a remote is configured (or passed in explicitly).
    """

    def __init__(self, config: Config, remote: RemoteStore | None = None):
        """Initialize the node.

        Args:
            config: Loaded configuration.
            remote: Remote store override; built from config when None.
        """
        self.config = config
        self.db = Database(config.storage.db_path)

        self.crypto = LocalCrypto(
            key_hex=config.crypto.local_data_key,
            notes_enabled=config.crypto.notes_enabled,
            files_enabled=config.crypto.files_enabled,
        )
        if config.crypto.notes_enabled and not self.crypto.is_available:
            logger.warning("Note encryption requested but no valid key configured")

        self.notes = NoteStore(self.db, crypto=self.crypto)
        self.labels = LabelStore(self.db)
        self.note_tracks = SyncTrackStore(self.db, table="sync_track")
        self.label_tracks = SyncTrackStore(self.db, table="label_sync_track")

        if remote is None and config.sync.enabled and config.sync.remote_url:
            remote = HttpRemoteStore(
                config.sync.remote_url,
                batch_size=config.sync.batch_size,
                max_retries=config.sync.max_retries,
                timeout=config.sync.timeout,
            )

        self.coordinator: SyncCoordinator | None = None
        if remote is not None:
            self.coordinator = SyncCoordinator(
                remote=remote,
                channels=[
                    SyncChannel(EntityKind.LABEL, self.labels, self.label_tracks),
                    SyncChannel(EntityKind.NOTE, self.notes, self.note_tracks),
                ],
                db=self.db,
                batch_size=config.sync.batch_size,
                debounce_seconds=config.sync.debounce_seconds,
            )
        else:
            logger.info("No remote configured, running local-only")

        # Changes are tracked even without a remote so nothing is lost
        # once one is configured
        self.notes.add_listener(SyncTracker(self.note_tracks, self.coordinator))
        self.labels.add_listener(SyncTracker(self.label_tracks, self.coordinator))

    def open(self) -> None:
        self.db.connect()

    async def close(self) -> None:
        if self.coordinator is not None:
            await self.coordinator.close()
        self.db.close()

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        """Run the periodic sync loop until stopped."""
        if self.coordinator is None:
            raise RuntimeError("Sync is disabled or no remote_url is configured")
        await self.coordinator.sync_loop(
            interval_seconds=self.config.sync.sync_interval_seconds,
            stop_event=stop_event,
        )
