from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable

from buildforge.log import get_logger

from .types import EventKind, FsEvent

log = get_logger("buildforge.watch")

_Snapshot = dict[Path, tuple[int, int]]


class PollingSubscription:
    """Polls files matching glob patterns and reports what changed.

    A snapshot maps each matching file to its (mtime_ns, size); two
    consecutive snapshots are diffed into created/modified/deleted events.
    """

    def __init__(
        self,
        root: str | Path,
        patterns: list[str],
        callback: Callable[[FsEvent], object],
        *,
        interval: float = 0.1,
        on_error: Callable[[BaseException], None] | None = None,
    ):
        self.root = Path(root)
        self.patterns = list(patterns)
        self.callback = callback
        self.interval = interval
        self.on_error = on_error
        self._last: _Snapshot = {}
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def snapshot(self) -> _Snapshot:
        files: _Snapshot = {}
        for pattern in self.patterns:
            for path in sorted(self.root.glob(pattern)):
                try:
                    if not path.is_file():
                        continue
                    st = path.stat()
                except FileNotFoundError:
                    # removed between glob and stat
                    continue
                files[path] = (st.st_mtime_ns, st.st_size)
        return files

    def poll(self) -> list[FsEvent]:
        current = self.snapshot()
        events: list[FsEvent] = []

        for path in sorted(current.keys() - self._last.keys()):
            events.append(FsEvent(EventKind.CREATED, path))
        for path in sorted(current.keys() & self._last.keys()):
            if current[path] != self._last[path]:
                events.append(FsEvent(EventKind.MODIFIED, path))
        for path in sorted(self._last.keys() - current.keys()):
            events.append(FsEvent(EventKind.DELETED, path))

        self._last = current
        return events

    def start(self) -> None:
        self._last = self.snapshot()
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, name="buildforge-watch", daemon=True
        )
        self._thread.start()
        log.info("watching %s under %s", ", ".join(self.patterns), self.root)

    def stop(self) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        self._thread = None

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                events = self.poll()
            except OSError as exc:
                log.error("watch subscription failed: %s", exc)
                if self.on_error is not None:
                    self.on_error(exc)
                return

            for event in events:
                self.callback(event)
