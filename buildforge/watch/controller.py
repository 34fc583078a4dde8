from __future__ import annotations

import fnmatch
import threading
import time
from pathlib import Path
from typing import Callable, Iterable, Protocol

from buildforge.executor import RunReport, Scheduler
from buildforge.graph import TaskGraph
from buildforge.log import get_logger

from .subscription import PollingSubscription
from .types import FsEvent, WatchState

log = get_logger("buildforge.watch")


class Subscription(Protocol):
    def start(self) -> None: ...

    def stop(self) -> None: ...


SubscriptionFactory = Callable[
    [Callable[[FsEvent], object], Callable[[BaseException], None]], Subscription
]


class WatchSession:
    """State of one watch run: subscription, debounce timer and reports.

    Each session owns its `cancel` event. `parent` is the run-wide event that
    tool adapters observe; setting it also ends the session.
    """

    def __init__(
        self,
        subset: tuple[str, ...],
        subscription: Subscription,
        parent: threading.Event | None = None,
    ):
        self.subset = subset
        self.subscription = subscription
        self.cancel = threading.Event()
        self.parent = parent
        self.pending = False
        self.last_event_at = 0.0
        self.events: list[FsEvent] = []
        self.reports: list[RunReport] = []
        self.error: BaseException | None = None

    @property
    def active(self) -> bool:
        if self.parent is not None and self.parent.is_set():
            return False
        return not self.cancel.is_set()


class WatchController:
    """Re-runs a subset of the graph when watched files change.

    Events are debounced: the subset runs once the quiet window has passed
    without new events. Events that arrive while a run is in flight are
    coalesced into the next debounce phase, never into a concurrent run.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        graph: TaskGraph,
        subset: Iterable[str],
        *,
        root: str | Path,
        paths: Iterable[str],
        exclude: Iterable[str] = (),
        quiet_window: float = 0.1,
        poll_interval: float = 0.1,
        on_report: Callable[[RunReport], None] | None = None,
        cancel: threading.Event | None = None,
        subscription_factory: SubscriptionFactory | None = None,
    ):
        self.scheduler = scheduler
        self.graph = graph
        self.subset = tuple(subset)
        self.root = Path(root)
        self.paths = list(paths)
        self.exclude = list(exclude)
        self.quiet_window = quiet_window
        self.poll_interval = poll_interval
        self.on_report = on_report
        self.session: WatchSession | None = None
        self._cancel = cancel if cancel is not None else threading.Event()
        self._subscription_factory = subscription_factory or self._polling
        self._subgraph = graph.subset(self.subset)
        self._plan = self._subgraph.compute_plan()
        self._cond = threading.Condition()
        self._state = WatchState.IDLE

    @property
    def state(self) -> WatchState:
        with self._cond:
            return self._state

    def _polling(
        self,
        callback: Callable[[FsEvent], object],
        on_error: Callable[[BaseException], None],
    ) -> Subscription:
        return PollingSubscription(
            self.root,
            self.paths,
            callback,
            interval=self.poll_interval,
            on_error=on_error,
        )

    def is_excluded(self, path: str | Path) -> bool:
        rel = self._relative(path)
        return any(_matches(rel, self._relative(p)) for p in self.exclude)

    def is_monitored(self, path: str | Path) -> bool:
        rel = self._relative(path)
        return any(_matches(rel, pattern) for pattern in self.paths)

    def _relative(self, path: str | Path) -> str:
        p = Path(path)
        if p.is_absolute():
            try:
                p = p.resolve().relative_to(self.root.resolve())
            except ValueError:
                pass
        return p.as_posix()

    def start(self, *, initial_run: bool = False) -> WatchSession:
        with self._cond:
            if self.session is not None and self.session.active:
                raise RuntimeError("watch session already running")

            self._cancel.clear()
            subscription = self._subscription_factory(
                self.notify, self._subscription_failed
            )
            session = WatchSession(self.subset, subscription, self._cancel)
            self.session = session
            self._state = WatchState.WATCHING

            if initial_run:
                session.pending = True
                session.last_event_at = time.monotonic() - self.quiet_window
                self._state = WatchState.DEBOUNCING

        subscription.start()
        log.info("watch subset: %s", " ".join(self.subset))
        return session

    def stop(self) -> None:
        with self._cond:
            session = self.session
            if session is None:
                return
            session.cancel.set()
            # abort tools still running for this session
            self._cancel.set()
            self._state = WatchState.IDLE
            self._cond.notify_all()

        session.subscription.stop()

    def notify(self, event: FsEvent) -> bool:
        """Record a filesystem event; returns False when it is ignored."""
        if self.is_excluded(event.path) or not self.is_monitored(event.path):
            log.debug("ignored %s %s", event.kind.value, event.path)
            return False

        with self._cond:
            session = self.session
            if session is None or not session.active:
                return False

            session.pending = True
            session.last_event_at = time.monotonic()
            session.events.append(event)
            if self._state is WatchState.WATCHING:
                self._state = WatchState.DEBOUNCING
            self._cond.notify_all()

        log.debug("%s %s", event.kind.value, event.path)
        return True

    def run_forever(self, *, initial_run: bool = False) -> None:
        session = self.session
        if session is None or not session.active:
            session = self.start(initial_run=initial_run)

        while self._cycle(session):
            pass

        if session.error is not None:
            raise session.error

    def _subscription_failed(self, exc: BaseException) -> None:
        with self._cond:
            if self.session is not None:
                self.session.error = exc
        self.stop()

    def _cycle(self, session: WatchSession) -> bool:
        with self._cond:
            while not session.pending and session.active:
                self._cond.wait()

            while session.active:
                deadline = session.last_event_at + self.quiet_window
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._cond.wait(remaining)

            if not session.active:
                return False

            events = session.events
            session.events = []
            session.pending = False
            self._state = WatchState.TRIGGERING

        log.info("rebuilding after %d change(s)", len(events))
        try:
            report = self.scheduler.run(
                self._subgraph, self._plan, cancel=self._cancel
            )
        finally:
            with self._cond:
                if not session.active:
                    self._state = WatchState.IDLE
                elif session.pending:
                    self._state = WatchState.DEBOUNCING
                else:
                    self._state = WatchState.WATCHING

        session.reports.append(report)
        if self.on_report is not None:
            self.on_report(report)
        return True


def _matches(rel: str, pattern: str) -> bool:
    if fnmatch.fnmatch(rel, pattern):
        return True
    # "src/**/*.js" should also match files directly inside src
    return "**/" in pattern and fnmatch.fnmatch(rel, pattern.replace("**/", ""))
