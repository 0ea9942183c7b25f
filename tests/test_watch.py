"""Tests for the watchdog-backed watch source."""

import queue
import shutil
import sys
import threading
import time
from pathlib import Path
from unittest.mock import Mock

import pytest
from watchdog.events import (
    DirCreatedEvent,
    DirModifiedEvent,
    FileClosedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from echos3.actions import ActionExecutor
from echos3.events import EventKind, RawEvent
from echos3.monitor import MirrorMonitor
from echos3.watch import CLOSED, WatchdogSource, WatchError, convert_event

from conftest import RecordingStore


def _emitter(watch, alive=True):
    emitter = Mock(watch=watch)
    emitter.is_alive.return_value = alive
    emitter.should_keep_running.return_value = alive
    return emitter


def _wait_for(predicate, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


class TestConvertEvent:
    @pytest.mark.parametrize(
        "event, kind",
        [
            (FileCreatedEvent("/w/a.txt"), EventKind.CREATE),
            (FileModifiedEvent("/w/a.txt"), EventKind.WRITE),
            (FileDeletedEvent("/w/a.txt"), EventKind.REMOVE),
            (FileClosedEvent("/w/a.txt"), EventKind.OTHER),
        ],
    )
    def test_file_events(self, event, kind):
        assert convert_event(event) == [RawEvent(Path("/w/a.txt"), kind)]

    def test_move_is_rename_plus_create(self):
        events = convert_event(FileMovedEvent("/w/old.txt", "/w/new.txt"))

        assert events == [
            RawEvent(Path("/w/old.txt"), EventKind.RENAME),
            RawEvent(Path("/w/new.txt"), EventKind.CREATE),
        ]

    def test_directory_created_is_create(self):
        assert convert_event(DirCreatedEvent("/w/sub")) == [RawEvent(Path("/w/sub"), EventKind.CREATE)]

    def test_directory_modified_is_other(self):
        assert convert_event(DirModifiedEvent("/w")) == [RawEvent(Path("/w"), EventKind.OTHER)]


class TestWatchdogSource:
    @pytest.fixture
    def observer(self):
        observer = Mock()
        observer.emitters = []

        def schedule(handler, path, recursive):
            watch = Mock(path=path)
            observer.emitters.append(_emitter(watch))
            return watch

        def unschedule(watch):
            observer.emitters[:] = [e for e in observer.emitters if e.watch is not watch]

        observer.schedule.side_effect = schedule
        observer.unschedule.side_effect = unschedule
        return observer

    @pytest.fixture
    def inbox(self):
        return queue.Queue()

    @pytest.fixture
    def source(self, inbox, observer):
        return WatchdogSource(inbox, observer_factory=lambda: observer)

    def test_observer_is_started(self, source, observer):
        observer.start.assert_called_once_with()

    def test_register_schedules_non_recursive_watch(self, source, observer, tmp_path):
        assert source.register(tmp_path) is True

        args, kwargs = observer.schedule.call_args
        assert args[1] == str(tmp_path)
        assert kwargs == {"recursive": False}
        assert source.watched_paths == [tmp_path]

    def test_register_is_idempotent(self, source, observer, tmp_path):
        source.register(tmp_path)

        assert source.register(tmp_path) is False
        assert observer.schedule.call_count == 1

    def test_register_failure_raises_watch_error(self, source, observer, tmp_path):
        observer.schedule.side_effect = OSError("inotify watch limit reached")

        with pytest.raises(WatchError, match="inotify watch limit"):
            source.register(tmp_path)

    def test_observer_start_failure_raises_watch_error(self, inbox):
        observer = Mock()
        observer.start.side_effect = OSError("too many open files")

        with pytest.raises(WatchError, match="Could not create file watcher"):
            WatchdogSource(inbox, observer_factory=lambda: observer)

    def test_handler_forwards_events_to_inbox(self, source, observer, inbox, tmp_path):
        source.register(tmp_path)
        handler = observer.schedule.call_args[0][0]

        handler.dispatch(FileMovedEvent(str(tmp_path / "a"), str(tmp_path / "b")))

        assert inbox.get_nowait() == RawEvent(tmp_path / "a", EventKind.RENAME)
        assert inbox.get_nowait() == RawEvent(tmp_path / "b", EventKind.CREATE)
        assert inbox.empty()

    def test_close_stops_observer_and_posts_closed(self, source, observer, inbox):
        source.close()
        source.close()

        observer.stop.assert_called_once_with()
        observer.join.assert_called_once_with()
        assert inbox.get_nowait() is CLOSED
        assert inbox.empty()

    def test_register_reschedules_stopped_watch(self, source, observer, tmp_path):
        source.register(tmp_path)
        observer.emitters[0].is_alive.return_value = False

        assert source.register(tmp_path) is True
        assert observer.schedule.call_count == 2
        observer.unschedule.assert_called_once()
        assert source.watched_paths == [tmp_path]

    def test_register_reschedules_when_observer_dropped_emitter(self, source, observer, tmp_path):
        source.register(tmp_path)
        observer.emitters.clear()
        observer.unschedule.side_effect = KeyError("gone")

        assert source.register(tmp_path) is True
        assert observer.schedule.call_count == 2

    def test_forget_drops_only_missing_directories(self, source, observer, tmp_path):
        kept = tmp_path / "kept"
        gone = tmp_path / "gone"
        nested = gone / "nested"
        kept.mkdir()
        nested.mkdir(parents=True)
        for path in (tmp_path, kept, gone, nested):
            source.register(path)
        shutil.rmtree(gone)

        assert source.forget(gone) == 2
        assert source.watched_paths == [tmp_path, kept]
        assert observer.unschedule.call_count == 2

    def test_forget_ignores_existing_directory(self, source, observer, tmp_path):
        source.register(tmp_path)

        assert source.forget(tmp_path) == 0
        observer.unschedule.assert_not_called()


@pytest.mark.skipif(not sys.platform.startswith("linux"), reason="relies on inotify")
class TestWatchdogSourceWithObserver:
    def test_recreated_directory_is_watched_again(self, tree_target):
        store = RecordingStore()
        monitor = MirrorMonitor(
            tree_target,
            ActionExecutor(tree_target, store),
            WatchdogSource,
            settle_delay=0.1,
            stop_check_interval=0.05,
        )
        runner = threading.Thread(target=monitor.run)
        runner.start()
        directory = tree_target.root_path / "a"

        def uploaded(key):
            return any(put[1] == key for put in store.puts)

        try:
            assert _wait_for(lambda: monitor.stats.directories == 2)
            (directory / "x.txt").write_text("first")
            assert _wait_for(lambda: uploaded("pfx/a/x.txt"))

            shutil.rmtree(directory)
            assert _wait_for(lambda: ("bucket", "pfx/a") in store.deletes)
            directory.mkdir()
            assert _wait_for(lambda: monitor.stats.directories >= 3)

            def write_and_check():
                (directory / "y.txt").write_text("second")
                return _wait_for(lambda: uploaded("pfx/a/y.txt"), timeout=0.5)

            assert _wait_for(write_and_check)
        finally:
            monitor.stop()
            runner.join(timeout=5)
        assert not runner.is_alive()
