"""CLI entry point for notesync."""

import argparse
import asyncio
import getpass
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .config import load_config
from .node import SyncNode
from .storage import Note, NoteUnlockError
from .sync import SyncStatus, TrackStatus


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        # Safe JSON serialization
        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            # Fallback for non-serializable objects
            log_data["message"] = str(log_data["message"])
            if "exception" in log_data:
                log_data["exception"] = str(log_data["exception"])
            return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler],
    )


def _open_node(args: argparse.Namespace) -> SyncNode:
    node = SyncNode(load_config(args.config))
    node.open()
    return node


def _track_counts(node: SyncNode) -> dict[str, dict[str, int]]:
    counts = {}
    for kind, tracks in (("note", node.note_tracks), ("label", node.label_tracks)):
        counts[kind] = {
            "pending": tracks.count(pending=True),
            "failed": tracks.count(status=TrackStatus.FAILED),
            "synced": tracks.count(status=TrackStatus.SYNCED),
        }
    return counts


async def cmd_status(args: argparse.Namespace) -> int:
    """Show local sync state."""
    node = _open_node(args)
    config = node.config

    try:
        status_data = {
            "timestamp": datetime.now().isoformat(),
            "node": {"name": config.node.name},
            "sync": {
                "enabled": config.sync.enabled,
                "remote_url": config.sync.remote_url or None,
                "watermarks": {
                    kind: node.db.get_state(f"last_synced:{kind}")
                    for kind in ("note", "label")
                },
            },
            "encryption": {
                "key_configured": node.crypto.is_available,
                "notes": node.crypto.notes_enabled,
                "files": node.crypto.files_enabled,
            },
            "tracks": _track_counts(node),
        }
    finally:
        await node.close()

    if args.status_json:
        print(json.dumps(status_data, indent=2))
        return 0

    print("notesync Status")
    print("===============")
    print(f"Node: {status_data['node']['name']}")
    print()

    sync = status_data["sync"]
    print(f"Sync ({sync['remote_url'] or 'no remote configured'}):")
    print(f"  Enabled: {'Yes' if sync['enabled'] else 'No'}")
    for kind, watermark in sync["watermarks"].items():
        print(f"  Last pulled {kind}s: {watermark or 'never'}")
    print()

    enc = status_data["encryption"]
    print("Encryption:")
    print(f"  Key configured: {'Yes' if enc['key_configured'] else 'No'}")
    print(f"  Notes: {'On' if enc['notes'] else 'Off'}")
    print(f"  Files: {'On' if enc['files'] else 'Off'}")
    print()

    print("Tracks:")
    for kind, counts in status_data["tracks"].items():
        print(
            f"  {kind}: {counts['pending']} pending, "
            f"{counts['failed']} failed, {counts['synced']} synced"
        )

    return 0


async def cmd_sync(args: argparse.Namespace) -> int:
    """Run one sync cycle."""
    node = _open_node(args)

    try:
        if node.coordinator is None:
            print("Sync is disabled or no remote_url is configured", file=sys.stderr)
            return 1

        result = await node.coordinator.run_cycle()
    finally:
        await node.close()

    print(
        f"Sync {result.status.value}: pushed {result.pushed}, deleted {result.deleted}, "
        f"pulled {result.pulled}, requeued {result.requeued}, failed {result.failed}"
    )
    if result.error:
        print(f"Last error: {result.error}", file=sys.stderr)

    return 0 if result.status in (SyncStatus.SUCCESS, SyncStatus.SKIPPED) else 1


async def cmd_run(args: argparse.Namespace) -> int:
    """Run the sync loop until interrupted."""
    node = _open_node(args)
    config = node.config

    print(f"Starting notesync node: {config.node.name}")
    print(f"Remote: {config.sync.remote_url or 'none'}")
    print(f"Interval: {config.sync.sync_interval_seconds}s")

    try:
        await node.run()
    except KeyboardInterrupt:
        print("\nShutting down...")
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await node.close()

    return 0


async def cmd_dashboard(args: argparse.Namespace) -> int:
    """Start the web dashboard."""
    from .dashboard import create_app

    import uvicorn

    node = _open_node(args)
    config = node.config
    host = args.host or config.dashboard.host
    port = args.port or config.dashboard.port

    print("Starting notesync Dashboard")
    print(f"Node: {config.node.name}")
    print(f"URL: http://{host}:{port}")

    app = create_app(config, coordinator=node.coordinator, notes=node.notes)

    try:
        verbose = getattr(args, "verbose", False)
        config_uvicorn = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_level="info" if verbose else "warning",
        )
        server = uvicorn.Server(config_uvicorn)
        await server.serve()
    finally:
        await node.close()

    return 0


def _read_password(args: argparse.Namespace) -> str:
    return args.password or getpass.getpass("Password: ")


async def cmd_note_add(args: argparse.Namespace) -> int:
    """Create a note."""
    node = _open_node(args)
    try:
        note = node.notes.create(Note(title=args.title, content=args.content or ""))
    finally:
        await node.close()

    print(f"Created note {note.id}")
    return 0


async def cmd_note_edit(args: argparse.Namespace) -> int:
    """Edit a note's title or content."""
    node = _open_node(args)
    try:
        note = node.notes.get_by_id(args.id)
        if note is None:
            print(f"Note {args.id} not found", file=sys.stderr)
            return 1
        if note.locked and args.content is not None:
            print(f"Note {args.id} is locked, unlock it first", file=sys.stderr)
            return 1

        if args.title is not None:
            note.title = args.title
        if args.content is not None:
            note.content = args.content
        node.notes.update(note)
    finally:
        await node.close()

    print(f"Updated note {args.id}")
    return 0


async def cmd_note_delete(args: argparse.Namespace) -> int:
    """Delete a note."""
    node = _open_node(args)
    try:
        deleted = node.notes.delete(args.id)
    finally:
        await node.close()

    if not deleted:
        print(f"Note {args.id} not found", file=sys.stderr)
        return 1

    print(f"Deleted note {args.id}")
    return 0


async def cmd_note_list(args: argparse.Namespace) -> int:
    """List notes."""
    node = _open_node(args)
    try:
        notes = node.notes.list(include_trashed=args.all)
    finally:
        await node.close()

    if args.note_json:
        print(json.dumps([n.to_document() for n in notes], indent=2))
        return 0

    for note in notes:
        flags = "".join([
            "P" if note.pinned else "-",
            "L" if note.locked else "-",
            "T" if note.trashed else "-",
        ])
        updated = note.updated_at.strftime("%Y-%m-%d %H:%M") if note.updated_at else ""
        print(f"{note.id:>5}  {flags}  {updated}  {note.title}")

    return 0


async def cmd_note_lock(args: argparse.Namespace) -> int:
    """Lock a note with a password."""
    node = _open_node(args)
    try:
        note = node.notes.get_by_id(args.id)
        if note is None:
            print(f"Note {args.id} not found", file=sys.stderr)
            return 1
        if note.locked:
            print(f"Note {args.id} is already locked")
            return 0

        node.notes.lock(note, _read_password(args))
    finally:
        await node.close()

    print(f"Locked note {args.id}")
    return 0


async def cmd_note_unlock(args: argparse.Namespace) -> int:
    """Show a locked note's content, or remove its lock."""
    node = _open_node(args)
    try:
        note = node.notes.get_by_id(args.id)
        if note is None:
            print(f"Note {args.id} not found", file=sys.stderr)
            return 1

        try:
            if args.remove:
                node.notes.remove_lock(note, _read_password(args))
                print(f"Removed lock from note {args.id}")
                return 0
            node.notes.unlock(note, _read_password(args))
        except NoteUnlockError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
    finally:
        await node.close()

    print(note.content)
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="notesync",
        description="Offline-first note storage with encrypted local data and remote sync",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: none, built-in defaults)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Status command
    status_parser = subparsers.add_parser("status", help="Show local sync state")
    status_parser.add_argument(
        "--json",
        dest="status_json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    # Sync command
    sync_parser = subparsers.add_parser("sync", help="Run one sync cycle")
    sync_parser.set_defaults(func=cmd_sync)

    # Run command
    run_parser = subparsers.add_parser("run", help="Sync periodically until interrupted")
    run_parser.set_defaults(func=cmd_run)

    # Dashboard command
    dashboard_parser = subparsers.add_parser("dashboard", help="Start the web dashboard")
    dashboard_parser.add_argument(
        "-p", "--port",
        type=int,
        default=None,
        help="Port to run dashboard on (default: from config, 8080)",
    )
    dashboard_parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind dashboard to (default: from config, 127.0.0.1)",
    )
    dashboard_parser.set_defaults(func=cmd_dashboard)

    # Note commands
    note_parser = subparsers.add_parser("note", help="Manage local notes")
    note_subparsers = note_parser.add_subparsers(dest="note_command", help="Note commands")

    # note add
    note_add = note_subparsers.add_parser("add", help="Create a note")
    note_add.add_argument("title", help="Note title")
    note_add.add_argument("content", nargs="?", default=None, help="Note content")
    note_add.set_defaults(func=cmd_note_add)

    # note edit
    note_edit = note_subparsers.add_parser("edit", help="Edit a note")
    note_edit.add_argument("id", type=int, help="Note id")
    note_edit.add_argument("--title", default=None, help="New title")
    note_edit.add_argument("--content", default=None, help="New content")
    note_edit.set_defaults(func=cmd_note_edit)

    # note delete
    note_delete = note_subparsers.add_parser("delete", help="Delete a note")
    note_delete.add_argument("id", type=int, help="Note id")
    note_delete.set_defaults(func=cmd_note_delete)

    # note list
    note_list = note_subparsers.add_parser("list", help="List notes")
    note_list.add_argument(
        "-a", "--all",
        action="store_true",
        help="Include trashed notes",
    )
    note_list.add_argument(
        "--json",
        dest="note_json",
        action="store_true",
        help="Output notes as JSON",
    )
    note_list.set_defaults(func=cmd_note_list)

    # note lock
    note_lock = note_subparsers.add_parser("lock", help="Lock a note with a password")
    note_lock.add_argument("id", type=int, help="Note id")
    note_lock.add_argument("--password", default=None, help="Password (prompted if omitted)")
    note_lock.set_defaults(func=cmd_note_lock)

    # note unlock
    note_unlock = note_subparsers.add_parser("unlock", help="Show a locked note")
    note_unlock.add_argument("id", type=int, help="Note id")
    note_unlock.add_argument("--password", default=None, help="Password (prompted if omitted)")
    note_unlock.add_argument(
        "--remove",
        action="store_true",
        help="Remove the lock permanently",
    )
    note_unlock.set_defaults(func=cmd_note_unlock)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json)

    if not args.command:
        parser.print_help()
        return 1

    # Handle note subcommand requiring its own subcommand
    if args.command == "note" and not args.note_command:
        note_parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        logging.getLogger(__name__).debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
