from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class WatchState(Enum):
    IDLE = "idle"
    WATCHING = "watching"
    DEBOUNCING = "debouncing"
    TRIGGERING = "triggering"


class EventKind(Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True)
class FsEvent:
    kind: EventKind
    path: Path
