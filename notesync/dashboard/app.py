"""FastAPI web dashboard application."""

import logging
from datetime import datetime
from typing import Any

from fastapi import FastAPI, HTTPException

from ..config import Config
from ..storage import NoteStore
from ..sync import SyncCoordinator, TrackStatus

logger = logging.getLogger(__name__)


def create_app(
    config: Config,
    coordinator: SyncCoordinator | None = None,
    notes: NoteStore | None = None,
) -> FastAPI:
    """Create the FastAPI dashboard application.

    Args:
        config: Application configuration.
        coordinator: Optional SyncCoordinator; sync routes report an
            error without one.
        notes: Optional NoteStore for health details.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="notesync Dashboard",
        description="Local sync monitoring for notesync devices",
        version="0.1.0",
    )

    # Store references for route handlers
    app.state.config = config
    app.state.coordinator = coordinator
    app.state.notes = notes

    @app.get("/api/sync/status")
    async def api_sync_status() -> dict[str, Any]:
        """Get sync progress and per-kind track counts."""
        if not coordinator:
            return {"error": "Sync is not configured", "node_name": config.node.name}

        status = coordinator.get_status()
        status["node_name"] = config.node.name
        status["remote_url"] = config.sync.remote_url
        return status

    @app.post("/api/sync/run")
    async def api_sync_run() -> dict[str, Any]:
        """Run one sync cycle and return its result."""
        if not coordinator:
            raise HTTPException(status_code=503, detail="Sync is not configured")

        result = await coordinator.run_cycle()
        return result.to_dict()

    @app.get("/api/tracks/{kind}")
    async def api_tracks(
        kind: str,
        status: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> dict[str, Any]:
        """List sync tracks of one entity kind."""
        if not coordinator:
            raise HTTPException(status_code=503, detail="Sync is not configured")

        try:
            channel = coordinator.channel(kind)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Unknown entity kind: {kind}")

        try:
            track_status = TrackStatus(status) if status else None
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown track status: {status}")

        tracks = channel.tracks.get(status=track_status, limit=limit, offset=offset)
        return {
            "kind": kind,
            "count": len(tracks),
            "tracks": [t.to_dict() for t in tracks],
        }

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Health check endpoint for monitoring.

        Always returns 200 OK even if components are unavailable.
        """
        health = {
            "status": "ok",
            "timestamp": datetime.now().isoformat(),
            "node_name": config.node.name,
            "components": {
                "sync": coordinator is not None,
                "notes": notes is not None,
            },
        }

        if coordinator:
            health["components"]["syncing"] = coordinator.is_syncing
            last_sync = coordinator.last_sync
            health["components"]["last_sync"] = last_sync.isoformat() if last_sync else None

        if notes:
            try:
                health["components"]["note_count"] = len(notes.list(include_trashed=True))
            except Exception as e:
                health["components"]["notes_error"] = str(e)

        return health

    return app
