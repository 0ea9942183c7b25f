"""Configuration loading utilities for the S3 mirror."""
from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Tuple

import yaml  # type: ignore


logger = logging.getLogger(__name__)

S3_SCHEME = "s3://"
DEFAULT_SETTLE_DELAY = 0.1


class ConfigError(Exception):
    """Raised when the command line or settings file is missing or invalid."""


class WatchMode(str, Enum):
    """How the local path is watched."""

    SINGLE_FILE = "single_file"
    DIRECTORY_TREE = "directory_tree"


class StorageClass(str, Enum):
    """S3 storage classes accepted for uploads."""

    STANDARD = "STANDARD"
    REDUCED_REDUNDANCY = "REDUCED_REDUNDANCY"
    STANDARD_IA = "STANDARD_IA"
    ONEZONE_IA = "ONEZONE_IA"
    INTELLIGENT_TIERING = "INTELLIGENT_TIERING"
    GLACIER = "GLACIER"
    DEEP_ARCHIVE = "DEEP_ARCHIVE"
    OUTPOSTS = "OUTPOSTS"
    GLACIER_IR = "GLACIER_IR"
    SNOW = "SNOW"
    EXPRESS_ONEZONE = "EXPRESS_ONEZONE"


@dataclass(frozen=True)
class WatchTarget:
    """Immutable description of what is mirrored and where it goes."""

    root_path: Path
    mode: WatchMode
    bucket: str
    key_prefix: str = ""
    delete_enabled: bool = False
    storage_class: StorageClass = StorageClass.INTELLIGENT_TIERING

    @property
    def remote_uri(self) -> str:
        if self.key_prefix:
            return f"{S3_SCHEME}{self.bucket}/{self.key_prefix}"
        return f"{S3_SCHEME}{self.bucket}"


@dataclass(frozen=True)
class Settings:
    """Defaults that may come from a YAML settings file."""

    delete: bool = False
    storage_class: StorageClass = StorageClass.INTELLIGENT_TIERING
    settle_delay: float = DEFAULT_SETTLE_DELAY
    log_level: str = "INFO"


def parse_remote_uri(uri: str) -> Tuple[str, str]:
    """Split ``s3://bucket/key/prefix`` into ``(bucket, key_prefix)``.

    Everything after the first slash following the bucket is kept verbatim as
    the prefix, including further slashes. The prefix may be empty.
    """

    if not uri.startswith(S3_SCHEME):
        raise ConfigError(f"Remote URI must start with {S3_SCHEME}: {uri!r}")

    bucket, _, key_prefix = uri[len(S3_SCHEME):].partition("/")
    if not bucket:
        raise ConfigError(f"Remote URI is missing a bucket name: {uri!r}")
    return bucket, key_prefix


def parse_storage_class(value: Any, *, field_name: str = "storage_class") -> StorageClass:
    if isinstance(value, StorageClass):
        return value
    try:
        return StorageClass(str(value).strip().upper())
    except ValueError as exc:
        allowed = ", ".join(option.value for option in StorageClass)
        raise ConfigError(f"{field_name} must be one of: {allowed}") from exc


def build_watch_target(
    local_path: Path,
    remote_uri: str,
    *,
    delete: bool = False,
    storage_class: Any = StorageClass.INTELLIGENT_TIERING,
) -> WatchTarget:
    """Resolve the local path and remote URI into a :class:`WatchTarget`."""

    bucket, key_prefix = parse_remote_uri(remote_uri)
    storage = parse_storage_class(storage_class)

    root_path = Path(os.path.abspath(local_path))
    try:
        info = root_path.stat()
    except OSError as exc:
        raise ConfigError(f"Could not access path {root_path}: {exc}") from exc

    mode = WatchMode.DIRECTORY_TREE if stat.S_ISDIR(info.st_mode) else WatchMode.SINGLE_FILE
    if mode is WatchMode.SINGLE_FILE and not key_prefix:
        logger.warning(
            "Remote URI %s names no object key; uploads of %s will be rejected by S3",
            remote_uri,
            root_path,
        )

    target = WatchTarget(
        root_path=root_path,
        mode=mode,
        bucket=bucket,
        key_prefix=key_prefix,
        delete_enabled=delete,
        storage_class=storage,
    )
    logger.debug("Resolved watch target %s", target)
    return target


def load_settings(path: Optional[Path]) -> Settings:
    """Load the optional YAML settings file; ``None`` yields the defaults."""

    if path is None:
        return Settings()

    if not path.exists():
        raise ConfigError(f"Settings file not found: {path}")

    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse YAML settings: {exc}") from exc

    if data is None:
        return Settings()
    if not isinstance(data, dict):
        raise ConfigError("Settings root must be a mapping")

    unknown = sorted(set(data) - {"delete", "storage_class", "settle_delay", "log_level"})
    if unknown:
        logger.warning("Ignoring unknown settings in %s: %s", path, ", ".join(map(str, unknown)))

    delete_flag = data.get("delete", False)
    if not isinstance(delete_flag, bool):
        raise ConfigError("delete must be a boolean")

    storage_class = parse_storage_class(
        data.get("storage_class", StorageClass.INTELLIGENT_TIERING.value)
    )
    settle_delay = parse_settle_delay(data.get("settle_delay", DEFAULT_SETTLE_DELAY))

    log_level = data.get("log_level", "INFO")
    if not isinstance(log_level, str):
        raise ConfigError("log_level must be a string")

    return Settings(
        delete=delete_flag,
        storage_class=storage_class,
        settle_delay=settle_delay,
        log_level=log_level.upper(),
    )


def parse_settle_delay(value: Any, *, field_name: str = "settle_delay") -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{field_name} must be numeric")
    try:
        delay = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{field_name} must be numeric") from exc
    if delay < 0:
        raise ConfigError(f"{field_name} must not be negative")
    return delay
