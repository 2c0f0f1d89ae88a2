"""Shared fixtures for notesync tests."""

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import pytest_asyncio

from notesync.crypto import LocalCrypto
from notesync.storage import Database, EntityKind, LabelStore, NoteStore, parse_timestamp
from notesync.sync import (
    RemoteChange,
    RemoteError,
    RemoteStore,
    SyncChannel,
    SyncCoordinator,
    SyncTracker,
    SyncTrackStore,
)

TEST_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1.0) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class FakeRemoteStore(RemoteStore):
    """In-memory remote store that records every call."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.documents: dict[str, dict[str, RemoteChange]] = {}
        self.calls: list[tuple[str, str, Any]] = []
        self.fail_local_ids: set[int] = set()
        self.offline = False
        self.on_push = None
        self.closed = False
        self._next_id = 0

    def _check(self) -> None:
        if self.offline:
            raise RemoteError("Remote unreachable", offline=True)

    def count(self, method: str) -> int:
        return sum(1 for call in self.calls if call[0] == method)

    async def push(self, kind, document, remote_id=None):
        self.calls.append(("push", kind, remote_id))
        self._check()
        if document.get("local_id") in self.fail_local_ids:
            raise RemoteError(f"Rejected {kind} {document['local_id']}")

        if remote_id is None:
            self._next_id += 1
            remote_id = f"r{self._next_id}"

        self.documents.setdefault(kind, {})[remote_id] = RemoteChange(
            remote_id=remote_id,
            document=dict(document),
            updated_at=parse_timestamp(document["updated_at"]),
        )

        if self.on_push is not None:
            self.on_push(kind, document)
        return remote_id

    async def delete(self, kind, remote_id):
        self.calls.append(("delete", kind, remote_id))
        self._check()
        self.documents.setdefault(kind, {})[remote_id] = RemoteChange(
            remote_id=remote_id,
            document={},
            updated_at=self.clock(),
            deleted=True,
        )

    async def get(self, kind, remote_id):
        self.calls.append(("get", kind, remote_id))
        self._check()
        return self.documents.get(kind, {}).get(remote_id)

    async def pull_since(self, kind, since):
        self.calls.append(("pull", kind, since))
        self._check()
        changes = [
            c for c in self.documents.get(kind, {}).values()
            if since is None or c.updated_at > since
        ]
        return sorted(changes, key=lambda c: c.updated_at)

    async def close(self):
        self.closed = True

    def put_remote(
        self,
        kind: str,
        remote_id: str,
        document: dict[str, Any],
        deleted: bool = False,
    ) -> RemoteChange:
        """Simulate a write made by another device."""
        change = RemoteChange(
            remote_id=remote_id,
            document=dict(document),
            updated_at=(
                parse_timestamp(document["updated_at"])
                if document.get("updated_at")
                else self.clock()
            ),
            deleted=deleted,
        )
        self.documents.setdefault(kind, {})[remote_id] = change
        return change


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db():
    """Create an in-memory database."""
    database = Database(":memory:")
    database.connect()
    yield database
    database.close()


@pytest.fixture
def crypto():
    return LocalCrypto(TEST_KEY, notes_enabled=True, files_enabled=True)


@pytest.fixture
def note_tracks(db, clock):
    return SyncTrackStore(db, table="sync_track", clock=clock)


@pytest.fixture
def label_tracks(db, clock):
    return SyncTrackStore(db, table="label_sync_track", clock=clock)


@pytest.fixture
def notes(db, clock):
    return NoteStore(db, clock=clock)


@pytest.fixture
def labels(db, clock):
    return LabelStore(db, clock=clock)


@pytest.fixture
def remote(clock):
    return FakeRemoteStore(clock)


@pytest_asyncio.fixture
async def coordinator(remote, db, notes, labels, note_tracks, label_tracks, clock):
    """Coordinator with note and label channels and tracking listeners."""
    coord = SyncCoordinator(
        remote=remote,
        channels=[
            SyncChannel(EntityKind.LABEL, labels, label_tracks),
            SyncChannel(EntityKind.NOTE, notes, note_tracks),
        ],
        db=db,
        debounce_seconds=60.0,
        clock=clock,
    )
    notes.add_listener(SyncTracker(note_tracks, coord))
    labels.add_listener(SyncTracker(label_tracks, coord))
    yield coord
    await coord.close()
