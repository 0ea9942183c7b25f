"""Event and action models shared across monitor components."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Union


class EventKind(str, Enum):
    """Kinds of filesystem notifications delivered by the watch source."""

    CREATE = "create"
    WRITE = "write"
    REMOVE = "remove"
    RENAME = "rename"
    OTHER = "other"


@dataclass(frozen=True)
class RawEvent:
    """A single notification for an absolute path."""

    path: Path
    kind: EventKind


@dataclass(frozen=True)
class Upload:
    path: Path
    key: str


@dataclass(frozen=True)
class Delete:
    key: str


@dataclass(frozen=True)
class RegisterDir:
    path: Path


@dataclass(frozen=True)
class Ignore:
    reason: str = ""


ResolvedAction = Union[Upload, Delete, RegisterDir, Ignore]
