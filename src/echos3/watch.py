"""Watch source boundary and the watchdog-backed implementation."""
from __future__ import annotations

import logging
import os
import queue
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Protocol, Union

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from .events import EventKind, RawEvent

logger = logging.getLogger(__name__)


class WatchError(Exception):
    """Reported by the watch source; never fatal once the loop is running."""


@dataclass(frozen=True)
class StreamClosed:
    """Marker posted when the watch source stops producing items."""


CLOSED = StreamClosed()

WatchItem = Union[RawEvent, WatchError, StreamClosed]


class WatchSource(Protocol):
    """Something that can be told which directories to watch."""

    def register(self, path: Path) -> bool:
        """Start watching ``path``; return ``False`` if it was already watched."""
        ...

    def forget(self, path: Path) -> int:
        """Stop watching ``path`` and its subdirectories if they no longer exist."""
        ...

    def close(self) -> None:
        ...


SourceFactory = Callable[["queue.Queue[WatchItem]"], WatchSource]

_KIND_BY_EVENT_TYPE = {
    EVENT_TYPE_CREATED: EventKind.CREATE,
    EVENT_TYPE_MODIFIED: EventKind.WRITE,
    EVENT_TYPE_DELETED: EventKind.REMOVE,
}


def convert_event(event: FileSystemEvent) -> List[RawEvent]:
    """Translate one watchdog event into raw events.

    A move becomes a rename of the old path followed by a create of the new
    one. Modifications of a directory only describe its contents and are
    reported as :attr:`EventKind.OTHER`.
    """

    src_path = Path(os.fsdecode(event.src_path))
    if event.event_type == EVENT_TYPE_MOVED:
        dest_path = Path(os.fsdecode(event.dest_path))
        return [RawEvent(src_path, EventKind.RENAME), RawEvent(dest_path, EventKind.CREATE)]
    if event.is_directory and event.event_type == EVENT_TYPE_MODIFIED:
        return [RawEvent(src_path, EventKind.OTHER)]
    return [RawEvent(src_path, _KIND_BY_EVENT_TYPE.get(event.event_type, EventKind.OTHER))]


class _InboxHandler(FileSystemEventHandler):
    """Forwards watchdog notifications from the observer thread to the inbox."""

    def __init__(self, inbox: "queue.Queue[WatchItem]"):
        super().__init__()
        self._inbox = inbox

    def on_any_event(self, event: FileSystemEvent) -> None:
        try:
            raw_events = convert_event(event)
        except (TypeError, ValueError) as exc:
            self._inbox.put(WatchError(f"Could not interpret {event!r}: {exc}"))
            return
        for raw in raw_events:
            self._inbox.put(raw)


class WatchdogSource:
    """Non-recursive per-directory watches on a single watchdog observer."""

    def __init__(
        self,
        inbox: "queue.Queue[WatchItem]",
        *,
        observer_factory: Callable[[], Any] = Observer,
    ):
        self._inbox = inbox
        self._handler = _InboxHandler(inbox)
        self._watches: Dict[Path, Any] = {}
        self._closed = False
        try:
            self._observer = observer_factory()
            self._observer.start()
        except OSError as exc:
            raise WatchError(f"Could not create file watcher: {exc}") from exc

    @property
    def watched_paths(self) -> List[Path]:
        return list(self._watches)

    def register(self, path: Path) -> bool:
        watch = self._watches.get(path)
        if watch is not None:
            if self._is_live(watch):
                return False
            # watchdog stops an inotify emitter once its directory is deleted,
            # so a recreated directory needs a fresh watch.
            logger.debug("Watch on %s has stopped; rescheduling", path)
            self._unschedule(path)
        try:
            watch = self._observer.schedule(self._handler, os.fspath(path), recursive=False)
        except OSError as exc:
            raise WatchError(f"Failed to add path to watcher {path}: {exc}") from exc
        self._watches[path] = watch
        logger.debug("Watching %s", path)
        return True

    def forget(self, path: Path) -> int:
        """Drop watches on ``path`` and below it whose directories are gone."""

        stale = [
            watched
            for watched in self._watches
            if (watched == path or path in watched.parents) and not watched.is_dir()
        ]
        for watched in stale:
            self._unschedule(watched)
        return len(stale)

    def _is_live(self, watch: Any) -> bool:
        for emitter in list(self._observer.emitters):
            if emitter.watch == watch:
                return emitter.is_alive() and emitter.should_keep_running()
        return False

    def _unschedule(self, path: Path) -> None:
        watch = self._watches.pop(path)
        try:
            self._observer.unschedule(watch)
        except KeyError:
            logger.debug("Observer already dropped the watch on %s", path)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._observer.stop()
        self._observer.join()
        self._inbox.put(CLOSED)
