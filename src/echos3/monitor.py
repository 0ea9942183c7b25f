"""Event dispatch loop mirroring local changes to the object store."""
from __future__ import annotations

import logging
import os
import queue
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .actions import ActionExecutor, Outcome
from .classifier import SleepFn, StatFn, classify
from .config import DEFAULT_SETTLE_DELAY, Settings, WatchMode, WatchTarget
from .events import Delete, Ignore, RawEvent, RegisterDir, ResolvedAction, Upload
from .store import ObjectStore, S3ObjectStore
from .watch import SourceFactory, StreamClosed, WatchdogSource, WatchError, WatchItem, WatchSource

logger = logging.getLogger(__name__)

# Upper bound on how long a stop request waits for the next inbox item.
STOP_CHECK_INTERVAL = 0.5


@dataclass
class MonitorStats:
    """Counters emitted by the monitor for observability."""

    events: int = 0
    uploads: int = 0
    deletes: int = 0
    skipped: int = 0
    failures: int = 0
    watch_errors: int = 0
    directories: int = 0

    def record(self, outcome: Outcome, *, is_upload: bool) -> None:
        if outcome is Outcome.DONE:
            if is_upload:
                self.uploads += 1
            else:
                self.deletes += 1
        elif outcome is Outcome.SKIPPED:
            self.skipped += 1
        else:
            self.failures += 1


class MirrorMonitor:
    """Receives watch events and executes one remote action per event.

    Everything runs on the thread that calls :meth:`run`. The watch backend
    only feeds the inbox; classification, the settle delay and remote calls
    happen here in delivery order.
    """

    def __init__(
        self,
        target: WatchTarget,
        executor: ActionExecutor,
        source_factory: SourceFactory,
        *,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
        stat: StatFn = os.stat,
        sleep: SleepFn = time.sleep,
        stop_check_interval: float = STOP_CHECK_INTERVAL,
    ):
        self._target = target
        self._executor = executor
        self._source_factory = source_factory
        self._settle_delay = settle_delay
        self._stat = stat
        self._sleep = sleep
        self._stop_check_interval = stop_check_interval
        self._inbox: "queue.Queue[WatchItem]" = queue.Queue()
        self._stop_event = threading.Event()
        self._source: Optional[WatchSource] = None
        self._stats = MonitorStats()

    @property
    def stats(self) -> MonitorStats:
        return self._stats

    def run(self) -> None:
        """Bootstrap the watches and process events until stopped.

        Startup failures (creating the source, walking the tree, registering
        the initial directories) propagate to the caller.
        """

        source = self._source_factory(self._inbox)
        self._source = source
        try:
            self._bootstrap(source)
            self._loop()
        except KeyboardInterrupt:
            logger.info("Monitor interrupted by user")
        finally:
            source.close()
            logger.info(
                "Monitor stopped after %s events: %s uploads, %s deletes, %s skipped, "
                "%s failures, %s watcher errors",
                self._stats.events,
                self._stats.uploads,
                self._stats.deletes,
                self._stats.skipped,
                self._stats.failures,
                self._stats.watch_errors,
            )

    def stop(self) -> None:
        """Ask the loop to exit after the current event.

        Only sets a flag, so it is safe to call from a signal handler.
        """

        self._stop_event.set()

    def handle_event(self, event: RawEvent) -> ResolvedAction:
        """Classify ``event`` and execute the resulting action."""

        self._stats.events += 1
        action = classify(
            self._target,
            event,
            stat=self._stat,
            settle_delay=self._settle_delay,
            sleep=self._sleep,
        )
        if isinstance(action, Delete):
            self._forget_removed_directory(event.path)
        self._execute(action)
        return action

    def _bootstrap(self, source: WatchSource) -> None:
        root = self._target.root_path
        if self._target.mode is WatchMode.DIRECTORY_TREE:
            logger.info("Performing initial scan of directory %s...", root)
            for directory in _walk_directories(root):
                if source.register(directory):
                    self._stats.directories += 1
            logger.info(
                "Watching %s directories for changes. Uploading to %s",
                self._stats.directories,
                self._target.remote_uri,
            )
        else:
            parent = root.parent
            logger.info("Watching single file %s in directory %s", root.name, parent)
            try:
                source.register(parent)
            except WatchError as exc:
                raise WatchError(
                    f"Failed to watch directory {parent} for file changes: {exc}"
                ) from exc
            self._stats.directories += 1

    def _loop(self) -> None:
        while True:
            try:
                item = self._inbox.get(timeout=self._stop_check_interval)
            except queue.Empty:
                item = None
            if self._stop_event.is_set():
                logger.info("Stop requested; dropping %s buffered items", self._inbox.qsize())
                return
            if item is None:
                continue
            if isinstance(item, StreamClosed):
                logger.info("Watch source closed")
                return
            if isinstance(item, WatchError):
                self._stats.watch_errors += 1
                logger.error("Watcher error: %s", item)
                continue
            self.handle_event(item)

    def _execute(self, action: ResolvedAction) -> None:
        if isinstance(action, Upload):
            outcome = self._executor.execute_upload(action.path, action.key)
            self._stats.record(outcome, is_upload=True)
        elif isinstance(action, Delete):
            outcome = self._executor.execute_delete(action.key)
            self._stats.record(outcome, is_upload=False)
        elif isinstance(action, RegisterDir):
            self._register_new_directory(action.path)
        elif isinstance(action, Ignore):
            logger.debug("Ignoring event: %s", action.reason)
        else:
            raise TypeError(f"Unhandled action {action!r}")

    def _register_new_directory(self, path: Path) -> None:
        # Subdirectories created together with ``path`` (mkdir -p) produce no
        # events of their own once ``path`` is watched, so pick them up here.
        if self._source is None:
            raise RuntimeError("Monitor has no watch source; call run() first")
        try:
            for directory in _walk_directories(path):
                if self._source.register(directory):
                    self._stats.directories += 1
                    logger.info("Watching new directory: %s", directory)
        except WatchError as exc:
            logger.error("Failed to add new directory to watcher %s: %s", path, exc)

    def _forget_removed_directory(self, path: Path) -> None:
        if self._source is None or self._target.mode is not WatchMode.DIRECTORY_TREE:
            return
        if self._source.forget(path):
            logger.info("Stopped watching removed directory: %s", path)


def _walk_directories(root: Path):
    """Yield ``root`` and every directory below it; walk errors raise WatchError."""

    def _raise(exc: OSError) -> None:
        raise WatchError(f"Error during directory scan of {root}: {exc}") from exc

    for dirpath, _dirnames, _filenames in os.walk(root, onerror=_raise):
        yield Path(dirpath)


def create_monitor(
    target: WatchTarget,
    settings: Settings,
    *,
    store_factory: Callable[[], ObjectStore] = S3ObjectStore.from_environment,
    source_factory: SourceFactory = WatchdogSource,
) -> MirrorMonitor:
    """Wire the store, executor and watch source for ``target``."""

    store = store_factory()
    executor = ActionExecutor(target, store)
    return MirrorMonitor(
        target,
        executor,
        source_factory,
        settle_delay=settings.settle_delay,
    )
