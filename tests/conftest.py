"""Shared fixtures and test doubles."""

from pathlib import Path
from typing import Callable, List, Optional, Set, Tuple

import pytest

from echos3.config import StorageClass, WatchMode, WatchTarget
from echos3.store import StoreError
from echos3.watch import CLOSED, WatchError


class RecordingStore:
    """In-memory object store that records every call."""

    def __init__(self, fail_keys: Optional[Set[str]] = None, on_put: Optional[Callable[[str], None]] = None):
        self.fail_keys = fail_keys or set()
        self.on_put = on_put
        self.puts: List[Tuple[str, str, bytes, str]] = []
        self.deletes: List[Tuple[str, str]] = []

    def put(self, bucket, key, body, storage_class):
        if key in self.fail_keys:
            raise StoreError(f"simulated failure for {key}")
        self.puts.append((bucket, key, body.read(), storage_class))
        if self.on_put is not None:
            self.on_put(key)

    def delete(self, bucket, key):
        if key in self.fail_keys:
            raise StoreError(f"simulated failure for {key}")
        self.deletes.append((bucket, key))


class ScriptedSource:
    """Watch source that replays scripted items into the monitor's inbox."""

    def __init__(self, inbox, items=(), fail_paths: Optional[Set[Path]] = None):
        self.inbox = inbox
        self.registered: List[Path] = []
        self.fail_paths = fail_paths or set()
        self.forgotten: List[Path] = []
        self.closed = False
        for item in items:
            inbox.put(item)

    def register(self, path):
        if path in self.fail_paths:
            raise WatchError(f"cannot watch {path}")
        if path in self.registered:
            return False
        self.registered.append(path)
        return True

    def forget(self, path):
        gone = [p for p in self.registered if (p == path or path in p.parents) and not p.is_dir()]
        for p in gone:
            self.registered.remove(p)
        self.forgotten.extend(gone)
        return len(gone)

    def close(self):
        self.closed = True


def scripted(items=(), *, end=True, fail_paths=None):
    """Return a source factory and a holder exposing the created source."""

    holder = {}
    script = list(items) + ([CLOSED] if end else [])

    def factory(inbox):
        holder["source"] = ScriptedSource(inbox, script, fail_paths=fail_paths)
        return holder["source"]

    return factory, holder


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def tree_root(tmp_path):
    root = tmp_path / "w"
    (root / "a").mkdir(parents=True)
    return root


@pytest.fixture
def tree_target(tree_root):
    return WatchTarget(
        root_path=tree_root,
        mode=WatchMode.DIRECTORY_TREE,
        bucket="bucket",
        key_prefix="pfx",
        delete_enabled=True,
        storage_class=StorageClass.STANDARD,
    )


@pytest.fixture
def file_target(tree_root):
    watched = tree_root / "f.txt"
    watched.write_text("watched")
    return WatchTarget(
        root_path=watched,
        mode=WatchMode.SINGLE_FILE,
        bucket="bucket",
        key_prefix="pfx/key",
        delete_enabled=True,
    )
