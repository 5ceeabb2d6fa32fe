from __future__ import annotations

import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from pocket_ledger.core.config import Settings, settings
from pocket_ledger.core.logging import get_logger, log_event, log_exception, monotonic_ms

logger = get_logger(__name__)

Visibility = Literal["public", "private"]


class StorageFailure(RuntimeError):
    kind = "storage_failure"

    def __init__(self, message: str, *, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key


@dataclass(frozen=True)
class StoredObject:
    key: str
    byte_size: int


class ObjectStorage:
    def put(
        self, *, key: str, body: bytes, visibility: Visibility = "private"
    ) -> StoredObject:  # pragma: no cover
        raise NotImplementedError

    def get(self, *, key: str) -> bytes:  # pragma: no cover
        raise NotImplementedError

    def delete(self, *, key: str) -> None:  # pragma: no cover
        raise NotImplementedError

    def exists(self, *, key: str) -> bool:  # pragma: no cover
        raise NotImplementedError


class LocalObjectStorage(ObjectStorage):
    """Filesystem-backed store; visibility is accepted but has no effect on disk."""

    def __init__(self, root: Path):
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if self._root.resolve() not in path.parents:
            raise StorageFailure(f"Key escapes storage root: {key}", key=key)
        return path

    def put(self, *, key: str, body: bytes, visibility: Visibility = "private") -> StoredObject:
        start = time.monotonic()
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(body)
        except OSError as e:
            log_exception(
                logger,
                "storage.put.failure",
                backend="local",
                storage_key=key,
                byte_size=len(body),
            )
            raise StorageFailure(f"Could not write object: {key}", key=key) from e
        log_event(
            logger,
            "storage.put.success",
            backend="local",
            storage_key=key,
            byte_size=len(body),
            visibility=visibility,
            duration_ms=monotonic_ms(start),
        )
        return StoredObject(key=key, byte_size=len(body))

    def get(self, *, key: str) -> bytes:
        start = time.monotonic()
        path = self._path(key)
        if not path.exists():
            log_event(
                logger,
                "storage.get.failure",
                backend="local",
                storage_key=key,
                duration_ms=monotonic_ms(start),
            )
            raise StorageFailure(f"Object not found: {key}", key=key)
        try:
            return path.read_bytes()
        except OSError as e:
            log_exception(logger, "storage.get.failure", backend="local", storage_key=key)
            raise StorageFailure(f"Could not read object: {key}", key=key) from e

    def delete(self, *, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            log_exception(logger, "storage.delete.failure", backend="local", storage_key=key)
            raise StorageFailure(f"Could not delete object: {key}", key=key) from e
        log_event(logger, "storage.delete.success", backend="local", storage_key=key)

    def exists(self, *, key: str) -> bool:
        return self._path(key).is_file()


class S3ObjectStorage(ObjectStorage):
    """S3-compatible store. Each operation is a single attempt; failures surface as StorageFailure."""

    def __init__(self, cfg: Settings) -> None:
        region = cfg.s3_region
        if not region or region.lower() == "auto":
            region = "us-east-1"

        session = boto3.session.Session(
            aws_access_key_id=cfg.s3_access_key_id,
            aws_secret_access_key=cfg.s3_secret_access_key,
            region_name=region,
        )
        config = Config(
            s3={"addressing_style": "virtual"},
            retries={"total_max_attempts": 1, "mode": "standard"},
            connect_timeout=cfg.s3_timeout_seconds,
            read_timeout=cfg.s3_timeout_seconds,
        )
        self._client = session.client("s3", endpoint_url=cfg.s3_endpoint_url or None, config=config)
        self._bucket = cfg.s3_bucket

    def put(self, *, key: str, body: bytes, visibility: Visibility = "private") -> StoredObject:
        start = time.monotonic()
        extra: dict[str, str] = {"ACL": "public-read"} if visibility == "public" else {}
        try:
            self._client.put_object(Bucket=self._bucket, Key=key, Body=body, **extra)
        except (BotoCoreError, ClientError) as e:
            log_exception(
                logger,
                "storage.put.failure",
                backend="s3",
                storage_key=key,
                byte_size=len(body),
                error_code=_error_code(e),
            )
            raise StorageFailure(f"Could not write object: {key}", key=key) from e
        log_event(
            logger,
            "storage.put.success",
            backend="s3",
            storage_key=key,
            byte_size=len(body),
            visibility=visibility,
            duration_ms=monotonic_ms(start),
        )
        return StoredObject(key=key, byte_size=len(body))

    def get(self, *, key: str) -> bytes:
        start = time.monotonic()
        try:
            resp = self._client.get_object(Bucket=self._bucket, Key=key)
            return resp["Body"].read()
        except (BotoCoreError, ClientError) as e:
            log_exception(
                logger,
                "storage.get.failure",
                backend="s3",
                storage_key=key,
                error_code=_error_code(e),
                duration_ms=monotonic_ms(start),
            )
            raise StorageFailure(f"Object not found: {key}", key=key) from e

    def delete(self, *, key: str) -> None:
        # S3 DeleteObject succeeds for missing keys.
        try:
            self._client.delete_object(Bucket=self._bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            log_exception(
                logger,
                "storage.delete.failure",
                backend="s3",
                storage_key=key,
                error_code=_error_code(e),
            )
            raise StorageFailure(f"Could not delete object: {key}", key=key) from e
        log_event(logger, "storage.delete.success", backend="s3", storage_key=key)

    def exists(self, *, key: str) -> bool:
        try:
            self._client.head_object(Bucket=self._bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in {"404", "NoSuchKey", "NotFound"}:
                return False
            raise StorageFailure(f"Could not stat object: {key}", key=key) from e
        except BotoCoreError as e:
            raise StorageFailure(f"Could not stat object: {key}", key=key) from e
        return True


def _error_code(error: Exception) -> str | None:
    if isinstance(error, ClientError):
        return (error.response.get("Error") or {}).get("Code")
    return None


def build_storage(cfg: Settings) -> ObjectStorage:
    if cfg.storage_backend == "s3":
        return S3ObjectStorage(cfg)
    root = cfg.local_storage_path
    if not root.is_absolute():
        root = Path(os.getcwd()) / root
    return LocalObjectStorage(root)


_storage: ObjectStorage | None = None


def get_storage() -> ObjectStorage:
    global _storage  # noqa: PLW0603
    if _storage is None:
        _storage = build_storage(settings)
    return _storage
