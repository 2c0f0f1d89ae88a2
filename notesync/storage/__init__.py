"""Local storage for notesync.

Provides the SQLite database plus note and label stores that announce
local changes through typed change events.
"""

from .database import Database
from .events import ChangeEvent, ChangeListener, ChangeType, EntityKind
from .labels import Label, LabelStore
from .notes import Note, NoteStore, NoteUnlockError
from .timestamps import parse_timestamp, utcnow

__all__ = [
    "ChangeEvent",
    "ChangeListener",
    "ChangeType",
    "Database",
    "EntityKind",
    "Label",
    "LabelStore",
    "Note",
    "NoteStore",
    "NoteUnlockError",
    "parse_timestamp",
    "utcnow",
]
