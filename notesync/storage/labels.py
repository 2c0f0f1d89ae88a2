"""Label entity and its local store."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from .database import Database
from .events import ChangeNotifier, ChangeType, EntityKind
from .timestamps import parse_timestamp, utcnow

logger = logging.getLogger(__name__)


@dataclass
class Label:
    id: int | None = None
    name: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_document(self) -> dict[str, Any]:
        return {
            "local_id": self.id,
            "name": self.name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_document(cls, data: dict[str, Any], label_id: int | None = None) -> "Label":
        return cls(
            id=label_id,
            name=data.get("name", ""),
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
        )


class LabelStore:
    """SQLite-backed label storage."""

    def __init__(self, db: Database, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self._clock = clock
        self.events = ChangeNotifier(EntityKind.LABEL)

    def add_listener(self, listener) -> None:
        self.events.add_listener(listener)

    def remove_listener(self, listener) -> None:
        self.events.remove_listener(listener)

    @staticmethod
    def _row_to_label(row) -> Label:
        return Label(
            id=row["id"],
            name=row["name"],
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )

    def get_by_id(self, label_id: int) -> Label | None:
        row = self.db.conn.execute(
            "SELECT * FROM labels WHERE id = ?", (label_id,)
        ).fetchone()
        return self._row_to_label(row) if row else None

    def list(self) -> list[Label]:
        cursor = self.db.conn.execute("SELECT * FROM labels ORDER BY name")
        return [self._row_to_label(row) for row in cursor]

    def _exists(self, label_id: int) -> bool:
        return (
            self.db.conn.execute("SELECT 1 FROM labels WHERE id = ?", (label_id,)).fetchone()
            is not None
        )

    def _write(self, label: Label) -> None:
        conn = self.db.conn
        if label.id is not None and self._exists(label.id):
            conn.execute(
                "UPDATE labels SET name = ?, created_at = ?, updated_at = ? WHERE id = ?",
                (
                    label.name,
                    label.created_at.isoformat(),
                    label.updated_at.isoformat(),
                    label.id,
                ),
            )
        else:
            cursor = conn.execute(
                "INSERT INTO labels (id, name, created_at, updated_at) VALUES (?, ?, ?, ?)",
                (
                    label.id,
                    label.name,
                    label.created_at.isoformat(),
                    label.updated_at.isoformat(),
                ),
            )
            label.id = cursor.lastrowid
        conn.commit()

    def save(self, label: Label, track_sync: bool = True) -> Label:
        created = label.id is None or not self._exists(label.id)
        now = self._clock()
        if label.created_at is None:
            label.created_at = now
        label.updated_at = now

        self._write(label)

        if track_sync:
            self.events.notify(label.id, ChangeType.CREATED if created else ChangeType.UPDATED)
        return label

    def create(self, label: Label) -> Label:
        label.id = None
        return self.save(label)

    def update(self, label: Label) -> Label:
        if label.id is None:
            raise ValueError("Cannot update a label without an id")
        return self.save(label)

    def delete(self, label: Label | int, track_sync: bool = True) -> bool:
        label_id = label if isinstance(label, int) else label.id
        if label_id is None:
            return False

        cursor = self.db.conn.execute("DELETE FROM labels WHERE id = ?", (label_id,))
        self.db.conn.commit()

        if cursor.rowcount and track_sync:
            self.events.notify(label_id, ChangeType.DELETED)
        return cursor.rowcount > 0

    def apply_remote_update(self, local_id: int | None, document: dict[str, Any]) -> Label:
        """Create or overwrite a label from a remote document without emitting."""
        label = Label.from_document(document, label_id=local_id)
        now = self._clock()
        label.created_at = label.created_at or now
        label.updated_at = label.updated_at or now
        self._write(label)
        return label

    def delete_from_remote(self, local_id: int) -> bool:
        return self.delete(local_id, track_sync=False)
