"""Storage backends for uploaded statement files."""

from __future__ import annotations

import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from statement_ledger.config import settings
from statement_ledger.logger import get_logger

logger = get_logger(__name__)


class StorageError(Exception):
    """Raised when storage operations fail."""


class Storage(Protocol):
    def upload_bytes(self, *, key: str, content: bytes, content_type: str | None = None) -> None: ...

    def get_object(self, key: str) -> bytes: ...

    def delete_object(self, key: str) -> None: ...


class StorageService:
    """S3/MinIO backend; statement objects live under ``statements/<owner>/<hash>.<ext>``."""

    _verified_buckets: set[str] = set()
    _verify_lock = threading.Lock()

    def __init__(self, bucket: str | None = None) -> None:
        self.bucket = bucket or settings.s3_bucket
        self.client = boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint,
            aws_access_key_id=settings.s3_access_key,
            aws_secret_access_key=settings.s3_secret_key,
            region_name=settings.s3_region,
            config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
        )

    def _call(self, action: str, key: str, operation: Callable[..., Any], **kwargs: Any) -> Any:
        try:
            return operation(Bucket=self.bucket, Key=key, **kwargs)
        except (BotoCoreError, ClientError) as exc:
            logger.error("Object storage call failed", action=action, bucket=self.bucket, key=key, error=str(exc))
            raise StorageError(f"Failed to {action} {key} in {self.bucket}") from exc

    def _create_bucket(self) -> None:
        options: dict[str, Any] = {}
        if settings.s3_region and settings.s3_region != "us-east-1":
            options["CreateBucketConfiguration"] = {"LocationConstraint": settings.s3_region}
        self.client.create_bucket(Bucket=self.bucket, **options)
        logger.info("Created statement bucket", bucket=self.bucket)

    def _ensure_bucket(self) -> None:
        with self._verify_lock:
            if self.bucket in self._verified_buckets:
                return
            try:
                self.client.head_bucket(Bucket=self.bucket)
            except ClientError as exc:
                if exc.response.get("Error", {}).get("Code") not in ("404", "NoSuchBucket", "NotFound"):
                    raise StorageError(f"Bucket {self.bucket} is not accessible") from exc
                try:
                    self._create_bucket()
                except (BotoCoreError, ClientError) as create_exc:
                    raise StorageError(f"Bucket {self.bucket} could not be created") from create_exc
            except BotoCoreError as exc:
                raise StorageError(f"Bucket {self.bucket} is not accessible") from exc
            self._verified_buckets.add(self.bucket)

    def upload_bytes(self, *, key: str, content: bytes, content_type: str | None = None) -> None:
        self._ensure_bucket()
        extra = {"ContentType": content_type} if content_type else {}
        self._call("upload", key, self.client.put_object, Body=content, **extra)

    def get_object(self, key: str) -> bytes:
        return self._call("read", key, self.client.get_object)["Body"].read()

    def delete_object(self, key: str) -> None:
        self._call("delete", key, self.client.delete_object)


class LocalStorageService:
    """Filesystem storage rooted at a directory, for local runs and tests."""

    def __init__(self, root: str | Path | None = None) -> None:
        self.root = Path(root or settings.local_storage_root).resolve()

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if not path.is_relative_to(self.root):
            raise StorageError(f"Storage key escapes root: {key}")
        return path

    def upload_bytes(self, *, key: str, content: bytes, content_type: str | None = None) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
        except OSError as exc:
            logger.error("Failed to write local object", key=key, error=str(exc))
            raise StorageError(f"Failed to store {key}") from exc

    def get_object(self, key: str) -> bytes:
        try:
            return self._path(key).read_bytes()
        except OSError as exc:
            raise StorageError(f"Failed to read {key}") from exc

    def delete_object(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to delete {key}") from exc


def get_storage() -> Storage:
    """Storage backend selected by settings.storage_backend."""
    if settings.storage_backend == "local":
        return LocalStorageService()
    return StorageService()
