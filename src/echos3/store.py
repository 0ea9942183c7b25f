"""Remote object store boundary and its boto3 implementation."""
from __future__ import annotations

import logging
from typing import Any, BinaryIO, Optional, Protocol

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

S3_CONNECT_TIMEOUT = 10
S3_READ_TIMEOUT = 60


class StoreError(Exception):
    """Raised when the remote store rejects or fails an operation."""


class ObjectStore(Protocol):
    """Minimal object store interface used by the action executors."""

    def put(self, bucket: str, key: str, body: BinaryIO, storage_class: str) -> None:
        ...

    def delete(self, bucket: str, key: str) -> None:
        ...


class S3ObjectStore:
    """:class:`ObjectStore` backed by a boto3 S3 client."""

    def __init__(self, client: Any):
        self._client = client

    @classmethod
    def from_environment(cls, *, region_name: Optional[str] = None) -> "S3ObjectStore":
        """Build a client from the default AWS credential and region chain.

        botocore retries are disabled so that every failed call surfaces once.
        """

        boto_config = BotoConfig(
            connect_timeout=S3_CONNECT_TIMEOUT,
            read_timeout=S3_READ_TIMEOUT,
            retries={"max_attempts": 1, "mode": "standard"},
        )
        try:
            client = boto3.client("s3", region_name=region_name, config=boto_config)
        except BotoCoreError as exc:
            raise StoreError(f"Unable to create S3 client: {exc}") from exc
        return cls(client)

    def put(self, bucket: str, key: str, body: BinaryIO, storage_class: str) -> None:
        logger.debug("PutObject bucket=%s key=%s storage_class=%s", bucket, key, storage_class)
        try:
            self._client.put_object(
                Bucket=bucket,
                Key=key,
                Body=body,
                StorageClass=storage_class,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StoreError(f"put s3://{bucket}/{key} failed: {exc}") from exc

    def delete(self, bucket: str, key: str) -> None:
        logger.debug("DeleteObject bucket=%s key=%s", bucket, key)
        try:
            self._client.delete_object(Bucket=bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StoreError(f"delete s3://{bucket}/{key} failed: {exc}") from exc
