"""Web dashboard for notesync devices.

Provides a local JSON API for watching sync progress, inspecting sync
tracks, and triggering a sync cycle, using FastAPI.
"""

from .app import create_app

__all__ = ["create_app"]
