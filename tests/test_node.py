"""Tests for device wiring and the CLI."""

import json
import sys
from unittest.mock import patch

import pytest

from notesync.__main__ import JSONFormatter, main
from notesync.config import Config, CryptoConfig, StorageConfig, SyncConfig
from notesync.node import SyncNode
from notesync.storage import Note
from notesync.sync import HttpRemoteStore, TrackStatus

TEST_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"


@pytest.fixture
def config(tmp_path):
    return Config(storage=StorageConfig(db_path=str(tmp_path / "data" / "notes.db")))


class TestSyncNode:
    """Tests for SyncNode wiring."""

    def test_local_only(self, config):
        node = SyncNode(config)
        node.open()

        note = node.notes.create(Note(title="offline"))

        assert node.coordinator is None
        assert node.note_tracks.get_by_local_id(note.id).status == TrackStatus.PENDING
        node.db.close()

    def test_builds_http_remote(self, config):
        config.sync = SyncConfig(remote_url="http://notes.local:8080", batch_size=10)

        node = SyncNode(config)

        assert isinstance(node.coordinator.remote, HttpRemoteStore)
        assert node.coordinator.remote.batch_size == 10
        assert node.coordinator.batch_size == 10

    def test_sync_disabled(self, config):
        config.sync = SyncConfig(enabled=False, remote_url="http://notes.local:8080")

        assert SyncNode(config).coordinator is None

    def test_encryption_from_config(self, config):
        config.crypto = CryptoConfig(local_data_key=TEST_KEY, notes_enabled=True)

        node = SyncNode(config)
        node.open()
        note = node.notes.create(Note(title="t", content="secret"))

        row = node.db.conn.execute("SELECT content FROM notes WHERE id = ?", (note.id,)).fetchone()
        assert row["content"].startswith("ENC:")
        node.db.close()

    @pytest.mark.asyncio
    async def test_sync_through_node(self, config, remote):
        node = SyncNode(config, remote=remote)
        node.open()

        note = node.notes.create(Note(title="via node"))
        result = await node.coordinator.run_cycle()
        await node.close()

        assert result.pushed == 1
        assert remote.closed
        assert remote.documents["note"]["r1"].document["local_id"] == note.id

    @pytest.mark.asyncio
    async def test_run_requires_remote(self, config):
        node = SyncNode(config)

        with pytest.raises(RuntimeError):
            await node.run()


class TestCli:
    """Tests for the command line interface."""

    @pytest.fixture(autouse=True)
    def env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("NOTESYNC_DB_PATH", str(tmp_path / "cli.db"))
        monkeypatch.delenv("NOTESYNC_SYNC_REMOTE_URL", raising=False)

    def run_cli(self, *args: str) -> int:
        with patch.object(sys, "argv", ["notesync", *args]):
            return main()

    def test_note_commands(self, capsys):
        assert self.run_cli("note", "add", "Groceries", "milk") == 0
        assert "Created note 1" in capsys.readouterr().out

        assert self.run_cli("note", "edit", "1", "--title", "Shopping") == 0
        assert self.run_cli("note", "list", "--json") == 0
        [doc] = json.loads(capsys.readouterr().out.split("\n", 1)[1])
        assert doc["title"] == "Shopping"
        assert doc["content"] == "milk"

        assert self.run_cli("note", "delete", "1") == 0
        assert self.run_cli("note", "delete", "1") == 1

    def test_lock_and_unlock(self, capsys):
        self.run_cli("note", "add", "Diary", "dear diary")
        assert self.run_cli("note", "lock", "1", "--password", "pw") == 0
        capsys.readouterr()

        assert self.run_cli("note", "unlock", "1", "--password", "wrong") == 1
        assert self.run_cli("note", "unlock", "1", "--password", "pw") == 0
        assert capsys.readouterr().out.strip().endswith("dear diary")

    def test_status_json(self, capsys):
        self.run_cli("note", "add", "a")
        capsys.readouterr()

        assert self.run_cli("status", "--json") == 0

        data = json.loads(capsys.readouterr().out)
        assert data["tracks"]["note"]["pending"] == 1
        assert data["sync"]["remote_url"] is None

    def test_sync_without_remote(self):
        assert self.run_cli("sync") == 1

    def test_no_command(self):
        assert self.run_cli() == 1


class TestJSONFormatter:
    """Tests for structured log output."""

    def test_format(self):
        import logging

        record = logging.LogRecord(
            "notesync.sync.coordinator", logging.INFO, __file__, 1, "PUSH note %d", (42,), None
        )

        data = json.loads(JSONFormatter().format(record))

        assert data["level"] == "INFO"
        assert data["component"] == "notesync.sync.coordinator"
        assert data["message"] == "PUSH note 42"
