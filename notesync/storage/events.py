"""Typed change notifications emitted by the entity stores."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)


class EntityKind(Enum):
    """Syncable entity types."""

    NOTE = "note"
    LABEL = "label"


class ChangeType(Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(frozen=True)
class ChangeEvent:
    """A local change to a single entity."""

    kind: EntityKind
    entity_id: int
    change: ChangeType


class ChangeListener(Protocol):
    """Receives change events from an entity store."""

    def on_change(self, event: ChangeEvent) -> None: ...


class ChangeNotifier:
    """Listener registry owned by one entity store."""

    def __init__(self, kind: EntityKind):
        self.kind = kind
        self._listeners: list[ChangeListener] = []

    def add_listener(self, listener: ChangeListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def notify(self, entity_id: int, change: ChangeType) -> None:
        """Deliver an event to every listener.

        Listener errors propagate to the caller that made the change.
        """
        event = ChangeEvent(kind=self.kind, entity_id=entity_id, change=change)
        logger.debug(f"{self.kind.value} {entity_id} {change.value}")
        for listener in list(self._listeners):
            listener.on_change(event)
