from .controller import WatchController, WatchSession
from .subscription import PollingSubscription
from .types import EventKind, FsEvent, WatchState

__all__ = [
    "WatchController",
    "WatchSession",
    "PollingSubscription",
    "EventKind",
    "FsEvent",
    "WatchState",
]
