# docpipeline/app/core/storage.py

import threading
from dataclasses import dataclass
from io import BytesIO
from typing import BinaryIO, Dict, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from docpipeline.app.config import Settings, settings as default_settings
from docpipeline.app.core.errors import DocumentTooLargeError, ObjectNotFoundError, StorageError

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


@dataclass
class StorageObject:
    key: str
    size: int
    content_type: str
    etag: str = ""


class Storage:
    """Object store keyed by string. ``download`` returns a readable stream."""

    def upload(self, key: str, data: BinaryIO, size: int, content_type: str) -> StorageObject:
        raise NotImplementedError

    def download(self, key: str) -> BinaryIO:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def get_presigned_url(self, key: str, ttl_seconds: int) -> str:
        raise NotImplementedError


class InMemoryStorage(Storage):
    """Process-local store for tests and local runs."""

    def __init__(self):
        self._lock = threading.Lock()
        self._objects: Dict[str, Tuple[bytes, str]] = {}

    def upload(self, key: str, data: BinaryIO, size: int, content_type: str) -> StorageObject:
        body = data.read()
        with self._lock:
            self._objects[key] = (body, content_type)
        return StorageObject(key=key, size=len(body), content_type=content_type, etag=f"mem-{len(body)}")

    def put_bytes(self, key: str, body: bytes, content_type: str = "application/octet-stream") -> StorageObject:
        return self.upload(key, BytesIO(body), len(body), content_type)

    def download(self, key: str) -> BinaryIO:
        with self._lock:
            obj = self._objects.get(key)
        if obj is None:
            raise ObjectNotFoundError(key)
        return BytesIO(obj[0])

    def delete(self, key: str) -> None:
        with self._lock:
            self._objects.pop(key, None)

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._objects

    def get_presigned_url(self, key: str, ttl_seconds: int) -> str:
        if not self.exists(key):
            raise ObjectNotFoundError(key)
        return f"memory://{key}?expires={ttl_seconds}"


class S3Storage(Storage):
    """S3 / MinIO bucket via boto3."""

    def __init__(self, bucket: str, client=None):
        self.bucket = bucket
        self.client = client or boto3.client("s3")

    @classmethod
    def from_settings(cls, cfg: Settings = default_settings) -> "S3Storage":
        client = boto3.client(
            "s3",
            endpoint_url=cfg.STORAGE_ENDPOINT_URL or None,
            aws_access_key_id=cfg.STORAGE_ACCESS_KEY or None,
            aws_secret_access_key=cfg.STORAGE_SECRET_KEY or None,
            region_name=cfg.STORAGE_REGION,
        )
        return cls(cfg.STORAGE_BUCKET, client=client)

    def _error(self, action: str, key: str, exc: Exception) -> StorageError:
        if isinstance(exc, ClientError):
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND_CODES:
                return ObjectNotFoundError(key)
        return StorageError(f"failed to {action} {key}: {exc}")

    def upload(self, key: str, data: BinaryIO, size: int, content_type: str) -> StorageObject:
        try:
            resp = self.client.put_object(
                Bucket=self.bucket, Key=key, Body=data, ContentLength=size, ContentType=content_type
            )
        except (ClientError, BotoCoreError) as exc:
            raise self._error("upload", key, exc) from exc
        return StorageObject(key=key, size=size, content_type=content_type, etag=resp.get("ETag", "").strip('"'))

    def download(self, key: str) -> BinaryIO:
        try:
            resp = self.client.get_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise self._error("download", key, exc) from exc
        return resp["Body"]

    def delete(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise self._error("delete", key, exc) from exc

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            err = self._error("stat", key, exc)
            if isinstance(err, ObjectNotFoundError):
                return False
            raise err from exc
        return True

    def get_presigned_url(self, key: str, ttl_seconds: int) -> str:
        try:
            return self.client.generate_presigned_url(
                "get_object", Params={"Bucket": self.bucket, "Key": key}, ExpiresIn=ttl_seconds
            )
        except (ClientError, BotoCoreError) as exc:
            raise self._error("presign", key, exc) from exc


def read_bounded(stream: BinaryIO, key: str, max_bytes: Optional[int]) -> bytes:
    """Read a download stream, refusing anything larger than ``max_bytes``."""
    try:
        if max_bytes is None:
            return stream.read()
        data = stream.read(max_bytes + 1)
    except (OSError, BotoCoreError) as exc:
        raise StorageError(f"failed to read {key}: {exc}") from exc
    finally:
        close = getattr(stream, "close", None)
        if close is not None:
            close()
    if len(data) > max_bytes:
        raise DocumentTooLargeError(key, max_bytes)
    return data
