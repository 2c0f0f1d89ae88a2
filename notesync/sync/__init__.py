"""Sync infrastructure for notesync.

Local changes leave persistent sync tracks behind; the coordinator drains
them against a remote document store and pulls remote changes back.
"""

from .conflict import ConflictGuard
from .coordinator import SyncChannel, SyncCoordinator, SyncProgress, SyncResult, SyncStatus
from .remote import HttpRemoteStore, RemoteChange, RemoteError, RemoteStore
from .tracker import SyncTracker
from .tracks import SyncTrackStore
from .types import SyncAction, SyncTrack, TrackStatus

__all__ = [
    "ConflictGuard",
    "HttpRemoteStore",
    "RemoteChange",
    "RemoteError",
    "RemoteStore",
    "SyncAction",
    "SyncChannel",
    "SyncCoordinator",
    "SyncProgress",
    "SyncResult",
    "SyncStatus",
    "SyncTrack",
    "SyncTrackStore",
    "SyncTracker",
    "TrackStatus",
]
