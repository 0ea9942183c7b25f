"""Mapping of local paths to remote object keys."""
from __future__ import annotations

import os
import posixpath
from pathlib import Path
from typing import Union

from .config import WatchMode, WatchTarget


class KeyResolutionError(ValueError):
    """Raised when a path cannot be mapped to a key under the watch root."""


def resolve_key(target: WatchTarget, event_path: Union[str, Path]) -> str:
    """Return the object key for ``event_path``.

    A watched single file always maps to the key prefix itself. Inside a
    directory tree the key is the prefix joined with the path relative to the
    tree root, using forward slashes whatever the host separator is.
    """

    if target.mode is WatchMode.SINGLE_FILE:
        return target.key_prefix

    try:
        relative = os.path.relpath(os.fspath(event_path), os.fspath(target.root_path))
    except ValueError as exc:
        # Windows raises when the paths live on different drives.
        raise KeyResolutionError(f"{event_path} is not under {target.root_path}") from exc

    if relative == os.curdir or relative == os.pardir or relative.startswith(os.pardir + os.sep):
        raise KeyResolutionError(f"{event_path} is not under {target.root_path}")

    relative = relative.replace(os.sep, "/")
    if not target.key_prefix:
        return relative
    return posixpath.normpath(posixpath.join(target.key_prefix, relative))
