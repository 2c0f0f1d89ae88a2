"""Sync track record and its enums."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from ..storage.timestamps import parse_timestamp


class SyncAction(Enum):
    """What should happen to the remote copy of an entity."""

    UPLOAD = "upload"
    DELETE = "delete"


class TrackStatus(Enum):
    """Lifecycle state of a track's current action."""

    PENDING = "pending"
    SYNCING = "syncing"
    SYNCED = "synced"
    FAILED = "failed"


@dataclass
class SyncTrack:
    """An outstanding obligation to reconcile one local entity with the remote store."""

    local_id: int
    action: SyncAction
    status: TrackStatus = TrackStatus.PENDING
    remote_id: str | None = None
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        """Pending or failed: still owed to the remote store."""
        return self.status in (TrackStatus.PENDING, TrackStatus.FAILED)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "local_id": self.local_id,
            "remote_id": self.remote_id,
            "action": self.action.value,
            "status": self.status.value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_row(cls, row) -> "SyncTrack":
        """Create from a database row."""
        return cls(
            id=row["id"],
            local_id=row["local_id"],
            remote_id=row["remote_id"],
            action=SyncAction(row["action"]),
            status=TrackStatus(row["status"]),
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )
