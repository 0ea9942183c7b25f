"""Decide what a raw filesystem event means for the remote mirror."""
from __future__ import annotations

import logging
import os
import stat as stat_module
import time
from pathlib import Path
from typing import Callable

from .config import DEFAULT_SETTLE_DELAY, WatchMode, WatchTarget
from .events import Delete, EventKind, Ignore, RawEvent, RegisterDir, ResolvedAction, Upload
from .keys import KeyResolutionError, resolve_key

logger = logging.getLogger(__name__)

StatFn = Callable[[Path], os.stat_result]
SleepFn = Callable[[float], None]

_CHANGE_KINDS = frozenset({EventKind.CREATE, EventKind.WRITE, EventKind.RENAME})


def classify(
    target: WatchTarget,
    event: RawEvent,
    *,
    stat: StatFn = os.stat,
    settle_delay: float = DEFAULT_SETTLE_DELAY,
    sleep: SleepFn = time.sleep,
) -> ResolvedAction:
    """Map ``event`` to exactly one action.

    Creates, writes and renames all mean "something changed at this path".
    After ``settle_delay`` the path is stat-ed: a regular file is uploaded, a
    new directory is registered with the watch source, and a path that has
    already vanished is treated as deleted. That last case is a heuristic for
    files created and removed faster than they can be processed; it also
    fires for short-lived editor swap files.
    """

    if target.mode is WatchMode.SINGLE_FILE and event.path != target.root_path:
        return Ignore("outside watch scope")

    if event.kind is EventKind.REMOVE:
        return _delete_for(target, event.path)

    if event.kind not in _CHANGE_KINDS:
        return Ignore(f"unsupported event kind {event.kind.value}")

    if settle_delay > 0:
        sleep(settle_delay)

    try:
        info = stat(event.path)
    except FileNotFoundError:
        logger.debug("%s vanished before it could be inspected; treating as removed", event.path)
        return _delete_for(target, event.path)
    except OSError as exc:
        logger.error("Could not stat %s: %s", event.path, exc)
        return Ignore("stat failed")

    if stat_module.S_ISDIR(info.st_mode):
        if target.mode is WatchMode.DIRECTORY_TREE:
            return RegisterDir(event.path)
        return Ignore("directory in single-file mode")

    if not stat_module.S_ISREG(info.st_mode):
        logger.debug("Skipping special file %s", event.path)
        return Ignore("not a regular file")

    try:
        key = resolve_key(target, event.path)
    except KeyResolutionError as exc:
        logger.error("Could not determine object key: %s", exc)
        return Ignore("no key")
    return Upload(event.path, key)


def _delete_for(target: WatchTarget, path: Path) -> ResolvedAction:
    try:
        return Delete(resolve_key(target, path))
    except KeyResolutionError as exc:
        logger.error("Could not determine object key: %s", exc)
        return Ignore("no key")
