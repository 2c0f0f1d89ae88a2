"""Tests for the note and label stores."""

from unittest.mock import MagicMock

import pytest

from notesync.crypto import DecryptionError, LocalCrypto
from notesync.storage import (
    ChangeEvent,
    ChangeType,
    EntityKind,
    Label,
    Note,
    NoteStore,
    NoteUnlockError,
)


class RecordingListener:
    def __init__(self):
        self.events: list[ChangeEvent] = []

    def on_change(self, event: ChangeEvent) -> None:
        self.events.append(event)


@pytest.fixture
def encrypted_notes(db, crypto, clock):
    return NoteStore(db, crypto=crypto, clock=clock)


class TestNoteStore:
    """Tests for note persistence and change events."""

    def test_create_and_get(self, notes, clock):
        note = notes.create(Note(title="Groceries", content="milk", label_ids=[1, 2]))

        loaded = notes.get_by_id(note.id)
        assert loaded == note
        assert loaded.created_at == clock.now
        assert loaded.label_ids == [1, 2]

    def test_save_with_explicit_id(self, notes):
        notes.save(Note(id=42, title="answer"))

        assert notes.get_by_id(42).title == "answer"

    def test_get_missing(self, notes):
        assert notes.get_by_id(999) is None

    def test_update_bumps_updated_at(self, notes, clock):
        note = notes.create(Note(title="v1"))
        created = note.created_at

        clock.advance(30)
        note.title = "v2"
        notes.update(note)

        loaded = notes.get_by_id(note.id)
        assert loaded.title == "v2"
        assert loaded.created_at == created
        assert loaded.updated_at == clock.now

    def test_update_requires_id(self, notes):
        with pytest.raises(ValueError):
            notes.update(Note(title="no id"))

    def test_list_hides_trashed(self, notes):
        notes.create(Note(title="keep"))
        notes.create(Note(title="bin", trashed=True))

        assert [n.title for n in notes.list()] == ["keep"]
        assert len(notes.list(include_trashed=True)) == 2

    def test_events(self, notes):
        listener = RecordingListener()
        notes.add_listener(listener)

        note = notes.create(Note(title="a"))
        notes.update(note)
        notes.delete(note)

        assert [e.change for e in listener.events] == [
            ChangeType.CREATED,
            ChangeType.UPDATED,
            ChangeType.DELETED,
        ]
        assert all(e.kind == EntityKind.NOTE and e.entity_id == note.id for e in listener.events)

    def test_untracked_changes_are_silent(self, notes):
        listener = RecordingListener()
        notes.add_listener(listener)

        note = notes.save(Note(title="quiet"), track_sync=False)
        notes.delete(note, track_sync=False)

        assert listener.events == []

    def test_remove_listener(self, notes):
        listener = RecordingListener()
        notes.add_listener(listener)
        notes.remove_listener(listener)

        notes.create(Note(title="a"))

        assert listener.events == []

    def test_listener_errors_propagate(self, notes):
        listener = MagicMock()
        listener.on_change.side_effect = RuntimeError("listener broke")
        notes.add_listener(listener)

        with pytest.raises(RuntimeError):
            notes.create(Note(title="a"))

    def test_delete_missing_returns_false(self, notes):
        listener = RecordingListener()
        notes.add_listener(listener)

        assert not notes.delete(123)
        assert listener.events == []

    def test_apply_remote_update_keeps_remote_timestamp(self, notes):
        listener = RecordingListener()
        notes.add_listener(listener)

        note = notes.apply_remote_update(
            None,
            {"title": "remote", "content": "x", "updated_at": "2023-06-01T08:00:00"},
        )

        loaded = notes.get_by_id(note.id)
        assert loaded.title == "remote"
        assert loaded.updated_at.isoformat() == "2023-06-01T08:00:00+00:00"
        assert listener.events == []

    def test_delete_from_remote_is_silent(self, notes):
        note = notes.create(Note(title="a"))
        listener = RecordingListener()
        notes.add_listener(listener)

        assert notes.delete_from_remote(note.id)
        assert notes.get_by_id(note.id) is None
        assert listener.events == []

    def test_to_document(self, notes):
        note = notes.create(Note(title="t", content="c", pinned=True))

        doc = note.to_document()

        assert doc["local_id"] == note.id
        assert doc["pinned"] is True
        assert doc["updated_at"] == note.updated_at.isoformat()
        assert Note.from_document(doc, note_id=note.id) == note


class TestAtRestEncryption:
    """Tests for transparent LocalCrypto use in the note store."""

    def test_content_encrypted_in_database(self, encrypted_notes, db):
        note = encrypted_notes.create(
            Note(title="Visible", content="secret body", attachments=[{"name": "a.png"}])
        )

        row = db.conn.execute("SELECT * FROM notes WHERE id = ?", (note.id,)).fetchone()
        assert row["title"] == "Visible"
        assert LocalCrypto.is_encrypted(row["content"])
        assert LocalCrypto.is_encrypted(row["attachments"])
        assert "secret" not in row["content"]

        loaded = encrypted_notes.get_by_id(note.id)
        assert loaded.content == "secret body"
        assert loaded.attachments == [{"name": "a.png"}]

    def test_plaintext_rows_still_readable(self, notes, encrypted_notes):
        note = notes.create(Note(title="old", content="written in plaintext"))

        assert encrypted_notes.get_by_id(note.id).content == "written in plaintext"

    def test_wrong_key_raises(self, encrypted_notes, db, clock):
        note = encrypted_notes.create(Note(title="x", content="secret"))
        other = NoteStore(db, crypto=LocalCrypto("ee" * 32, notes_enabled=True), clock=clock)

        with pytest.raises(DecryptionError):
            other.get_by_id(note.id)


class TestNoteLock:
    """Tests for password-locked notes."""

    def test_lock_encrypts_content_and_attachments(self, notes):
        note = notes.create(Note(title="Diary", content="dear diary", attachments=[{"name": "p.jpg"}]))

        notes.lock(note, "hunter2")

        loaded = notes.get_by_id(note.id)
        assert loaded.locked
        assert loaded.title == "Diary"
        assert loaded.content != "dear diary"
        assert loaded.attachments[0]["locked"] is True
        assert "p.jpg" not in loaded.attachments[0]["payload"]
        assert note.password is None
        assert not note.unlocked

    def test_lock_is_idempotent(self, notes):
        note = notes.create(Note(title="a", content="b"))
        notes.lock(note, "pw")
        content = note.content

        notes.lock(note, "other")

        assert note.content == content

    def test_lock_requires_password(self, notes):
        note = notes.create(Note(title="a", content="b"))

        with pytest.raises(ValueError):
            notes.lock(note, "")
        assert not note.locked

    def test_unlock_is_in_memory_only(self, notes):
        note = notes.create(Note(title="a", content="plain", attachments=[{"name": "x"}]))
        notes.lock(note, "pw")
        loaded = notes.get_by_id(note.id)

        notes.unlock(loaded, "pw")

        assert loaded.unlocked
        assert loaded.content == "plain"
        assert loaded.attachments == [{"name": "x"}]
        assert notes.get_by_id(note.id).content != "plain"

    def test_unlock_wrong_password(self, notes):
        note = notes.create(Note(title="a", content="plain"))
        notes.lock(note, "pw")
        loaded = notes.get_by_id(note.id)
        ciphertext = loaded.content

        with pytest.raises(NoteUnlockError):
            notes.unlock(loaded, "wrong")

        assert not loaded.unlocked
        assert loaded.content == ciphertext

    def test_unlocked_note_saves_ciphertext(self, notes):
        note = notes.create(Note(title="a", content="plain"))
        notes.lock(note, "pw")
        loaded = notes.unlock(notes.get_by_id(note.id), "pw")

        loaded.content = "edited"
        notes.update(loaded)

        stored = notes.get_by_id(note.id)
        assert stored.locked
        assert stored.content != "edited"
        assert notes.unlock(stored, "pw").content == "edited"

    def test_remove_lock(self, notes):
        note = notes.create(Note(title="a", content="plain"))
        notes.lock(note, "pw")

        notes.remove_lock(notes.get_by_id(note.id), "pw")

        stored = notes.get_by_id(note.id)
        assert not stored.locked
        assert stored.content == "plain"

    def test_lock_with_at_rest_encryption(self, encrypted_notes):
        note = encrypted_notes.create(Note(title="a", content="double"))
        encrypted_notes.lock(note, "pw")

        loaded = encrypted_notes.get_by_id(note.id)
        assert encrypted_notes.unlock(loaded, "pw").content == "double"


class TestLabelStore:
    """Tests for label persistence."""

    def test_crud(self, labels, clock):
        listener = RecordingListener()
        labels.add_listener(listener)

        label = labels.create(Label(name="work"))
        clock.advance(1)
        label.name = "office"
        labels.update(label)

        loaded = labels.get_by_id(label.id)
        assert loaded.name == "office"
        assert loaded.updated_at == clock.now

        assert labels.delete(label)
        assert labels.get_by_id(label.id) is None
        assert [e.change for e in listener.events] == [
            ChangeType.CREATED,
            ChangeType.UPDATED,
            ChangeType.DELETED,
        ]
        assert listener.events[0].kind == EntityKind.LABEL

    def test_list_sorted_by_name(self, labels):
        labels.create(Label(name="zeta"))
        labels.create(Label(name="alpha"))

        assert [label.name for label in labels.list()] == ["alpha", "zeta"]

    def test_remote_update_is_silent(self, labels):
        listener = RecordingListener()
        labels.add_listener(listener)

        label = labels.apply_remote_update(None, {"name": "shared"})
        assert labels.delete_from_remote(label.id)

        assert listener.events == []
