"""Note entity and its local store."""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from ..crypto import LocalCrypto, decrypt_with_password, encrypt_with_password
from ..crypto.local import DecryptionError
from .database import Database
from .events import ChangeNotifier, ChangeType, EntityKind
from .timestamps import parse_timestamp, utcnow

logger = logging.getLogger(__name__)


class NoteUnlockError(Exception):
    """A locked note could not be unlocked with the given password."""


@dataclass
class Note:
    """A note as held in memory.

    While a locked note is unlocked, ``content`` and ``attachments`` hold
    plaintext and ``password`` holds the key material. Neither is ever
    persisted or pushed in that form.
    """

    id: int | None = None
    title: str = ""
    content: str = ""
    attachments: list[dict[str, Any]] = field(default_factory=list)
    label_ids: list[int] = field(default_factory=list)
    pinned: bool = False
    archived: bool = False
    trashed: bool = False
    locked: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None
    password: str | None = field(default=None, repr=False, compare=False)
    unlocked: bool = field(default=False, compare=False)

    def sealed_content(self) -> str:
        """Content in its storable form (password ciphertext when locked)."""
        if self.locked and self.unlocked and self.password:
            return encrypt_with_password(self.content, self.password)
        return self.content

    def sealed_attachments(self) -> list[dict[str, Any]]:
        """Attachments in their storable form.

        Each attachment of an unlocked note is individually replaced by
        ``{"locked": True, "payload": <ciphertext>}``.
        """
        if not (self.locked and self.unlocked and self.password):
            return list(self.attachments)
        return [_seal_attachment(a, self.password) for a in self.attachments]

    def to_document(self) -> dict[str, Any]:
        """Serialize for the remote store."""
        return {
            "local_id": self.id,
            "title": self.title,
            "content": self.sealed_content(),
            "attachments": self.sealed_attachments(),
            "label_ids": list(self.label_ids),
            "pinned": self.pinned,
            "archived": self.archived,
            "trashed": self.trashed,
            "locked": self.locked,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_document(cls, data: dict[str, Any], note_id: int | None = None) -> "Note":
        """Create from a remote document."""
        return cls(
            id=note_id,
            title=data.get("title", ""),
            content=data.get("content", ""),
            attachments=list(data.get("attachments") or []),
            label_ids=list(data.get("label_ids") or []),
            pinned=bool(data.get("pinned", False)),
            archived=bool(data.get("archived", False)),
            trashed=bool(data.get("trashed", False)),
            locked=bool(data.get("locked", False)),
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
        )


def _seal_attachment(attachment: dict[str, Any], password: str) -> dict[str, Any]:
    if attachment.get("locked"):
        return attachment
    return {
        "locked": True,
        "payload": encrypt_with_password(json.dumps(attachment), password),
    }


def _unseal_attachment(attachment: dict[str, Any], password: str) -> dict[str, Any]:
    if not attachment.get("locked"):
        return attachment
    return json.loads(decrypt_with_password(attachment["payload"], password))


class NoteStore:
    """SQLite-backed note storage with transparent at-rest encryption."""

    def __init__(
        self,
        db: Database,
        crypto: LocalCrypto | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the note store.

        Args:
            db: Shared database.
            crypto: At-rest encryption; plaintext storage when None.
            clock: Source of timestamps.
        """
        self.db = db
        self.crypto = crypto or LocalCrypto()
        self._clock = clock
        self.events = ChangeNotifier(EntityKind.NOTE)

    def add_listener(self, listener) -> None:
        self.events.add_listener(listener)

    def remove_listener(self, listener) -> None:
        self.events.remove_listener(listener)

    def _row_to_note(self, row) -> Note:
        content = self.crypto.decrypt_string(row["content"])
        attachments = json.loads(self.crypto.decrypt_string(row["attachments"]) or "[]")
        return Note(
            id=row["id"],
            title=row["title"],
            content=content,
            attachments=attachments,
            label_ids=json.loads(row["label_ids"] or "[]"),
            pinned=bool(row["pinned"]),
            archived=bool(row["archived"]),
            trashed=bool(row["trashed"]),
            locked=bool(row["locked"]),
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )

    def get_by_id(self, note_id: int) -> Note | None:
        """Load a note, decrypting the at-rest layer.

        Raises:
            DecryptionError: If stored ciphertext cannot be decrypted.
        """
        row = self.db.conn.execute(
            "SELECT * FROM notes WHERE id = ?", (note_id,)
        ).fetchone()
        if row is None:
            return None
        return self._row_to_note(row)

    def list(self, include_trashed: bool = False) -> list[Note]:
        query = "SELECT * FROM notes"
        if not include_trashed:
            query += " WHERE trashed = 0"
        query += " ORDER BY pinned DESC, updated_at DESC"
        return [self._row_to_note(row) for row in self.db.conn.execute(query)]

    def _exists(self, note_id: int) -> bool:
        return (
            self.db.conn.execute("SELECT 1 FROM notes WHERE id = ?", (note_id,)).fetchone()
            is not None
        )

    def _write(self, note: Note) -> None:
        content = self.crypto.encrypt_string(note.sealed_content())
        attachments = self.crypto.encrypt_string(json.dumps(note.sealed_attachments()))
        values = (
            note.title,
            content,
            attachments,
            json.dumps(note.label_ids),
            int(note.pinned),
            int(note.archived),
            int(note.trashed),
            int(note.locked),
            note.created_at.isoformat(),
            note.updated_at.isoformat(),
        )

        conn = self.db.conn
        if note.id is not None and self._exists(note.id):
            conn.execute(
                """
                UPDATE notes SET
                    title = ?, content = ?, attachments = ?, label_ids = ?,
                    pinned = ?, archived = ?, trashed = ?, locked = ?,
                    created_at = ?, updated_at = ?
                WHERE id = ?
                """,
                (*values, note.id),
            )
        else:
            cursor = conn.execute(
                """
                INSERT INTO notes (
                    id, title, content, attachments, label_ids,
                    pinned, archived, trashed, locked, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (note.id, *values),
            )
            note.id = cursor.lastrowid
        conn.commit()

    def save(self, note: Note, track_sync: bool = True) -> Note:
        """Persist a note and announce the change.

        Args:
            note: Note to insert or update.
            track_sync: Emit a change event so the note is synced.

        Returns:
            The saved note with id and timestamps set.
        """
        created = note.id is None or not self._exists(note.id)
        now = self._clock()
        if note.created_at is None:
            note.created_at = now
        note.updated_at = now

        self._write(note)

        if track_sync:
            self.events.notify(note.id, ChangeType.CREATED if created else ChangeType.UPDATED)
        return note

    def create(self, note: Note) -> Note:
        note.id = None
        return self.save(note)

    def update(self, note: Note) -> Note:
        if note.id is None:
            raise ValueError("Cannot update a note without an id")
        return self.save(note)

    def delete(self, note: Note | int, track_sync: bool = True) -> bool:
        """Delete a note locally.

        Returns:
            True if a row was removed.
        """
        note_id = note if isinstance(note, int) else note.id
        if note_id is None:
            return False

        cursor = self.db.conn.execute("DELETE FROM notes WHERE id = ?", (note_id,))
        self.db.conn.commit()

        if cursor.rowcount and track_sync:
            self.events.notify(note_id, ChangeType.DELETED)
        return cursor.rowcount > 0

    def apply_remote_update(self, local_id: int | None, document: dict[str, Any]) -> Note:
        """Create or overwrite a note from a remote document.

        Keeps the remote timestamps and emits no change event, so the
        update is not pushed back.
        """
        note = Note.from_document(document, note_id=local_id)
        now = self._clock()
        if note.created_at is None:
            note.created_at = now
        if note.updated_at is None:
            note.updated_at = now
        self._write(note)
        logger.debug(f"Applied remote update to note {note.id}")
        return note

    def delete_from_remote(self, local_id: int) -> bool:
        """Delete a note removed on another device, without emitting."""
        return self.delete(local_id, track_sync=False)

    # ==================== Password lock ====================

    def lock(self, note: Note, password: str) -> Note:
        """Encrypt a note's content and attachments with a password and save."""
        if note.locked:
            return note
        if not password:
            raise ValueError("Password cannot be empty")

        note.locked = True
        note.unlocked = True
        note.password = password
        note.content = note.sealed_content()
        note.attachments = note.sealed_attachments()
        note.unlocked = False
        note.password = None

        return self.save(note)

    def unlock(self, note: Note, password: str) -> Note:
        """Decrypt a locked note in memory.

        The stored row keeps its ciphertext.

        Raises:
            NoteUnlockError: Wrong password or corrupted data. The note is
                left unchanged.
        """
        if not note.locked or note.unlocked:
            return note

        try:
            content = decrypt_with_password(note.content, password)
            attachments = [_unseal_attachment(a, password) for a in note.attachments]
        except (DecryptionError, ValueError, KeyError) as e:
            raise NoteUnlockError("Incorrect password or corrupted note data") from e

        note.content = content
        note.attachments = attachments
        note.unlocked = True
        note.password = password
        return note

    def remove_lock(self, note: Note, password: str) -> Note:
        """Permanently remove the lock and save the plaintext note."""
        if not note.locked:
            return note
        if not note.unlocked:
            self.unlock(note, password)

        note.locked = False
        note.unlocked = False
        note.password = None
        return self.save(note)
