"""Upload and delete executors for resolved actions."""
from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path

from .config import WatchTarget
from .store import ObjectStore, StoreError

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    """Result of a single executed action, used for bookkeeping only."""

    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"


class ActionExecutor:
    """Performs remote calls for one watch target on a best-effort basis.

    Every local or remote failure ends the action it belongs to and is only
    logged. Nothing is retried and nothing is raised to the caller.
    """

    def __init__(self, target: WatchTarget, store: ObjectStore):
        self._target = target
        self._store = store

    @property
    def target(self) -> WatchTarget:
        return self._target

    def object_uri(self, key: str) -> str:
        return f"s3://{self._target.bucket}/{key}"

    def execute_upload(self, local_path: Path, key: str) -> Outcome:
        """Stream ``local_path`` to ``key`` with the target's storage class."""

        try:
            handle = open(local_path, "rb")
        except OSError as exc:
            logger.error("Could not open file for upload %s: %s", local_path, exc)
            return Outcome.SKIPPED

        with handle:
            logger.info("UPLOAD: %s -> %s", local_path.name, self.object_uri(key))
            try:
                self._store.put(
                    self._target.bucket,
                    key,
                    handle,
                    self._target.storage_class.value,
                )
            except (StoreError, OSError) as exc:
                logger.error("Failed to upload %s: %s", local_path, exc)
                return Outcome.FAILED
        return Outcome.DONE

    def execute_delete(self, key: str) -> Outcome:
        """Delete ``key`` remotely, or log and skip when deletion is disabled."""

        if not self._target.delete_enabled:
            logger.info("File removed locally but --delete is not set. Ignoring: %s", key)
            return Outcome.SKIPPED

        logger.info("DELETE: %s", self.object_uri(key))
        try:
            self._store.delete(self._target.bucket, key)
        except (StoreError, OSError) as exc:
            logger.error("Failed to delete %s from S3: %s", key, exc)
            return Outcome.FAILED
        return Outcome.DONE
