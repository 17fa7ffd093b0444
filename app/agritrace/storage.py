from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from app.agritrace.errors import StorageError

logger = logging.getLogger(__name__)


class Storage:
    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        raise NotImplementedError

    def open(self, key: str) -> BinaryIO:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def public_url(self, key: str) -> str:
        raise NotImplementedError

    def list_keys(self, prefix: str) -> Iterator[str]:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def resolve_url(self, key: str) -> str:
        """
        Second step after an upload: confirm the object landed and return its
        durable URL. Raises StorageError rather than returning an unresolved URL.
        """
        if not self.exists(key):
            raise StorageError(f"Uploaded object not found: {key}", details={"key": key})
        url = self.public_url(key)
        if not url:
            raise StorageError(f"Could not resolve URL for {key}", details={"key": key})
        return url


@dataclass(frozen=True)
class LocalStorage(Storage):
    root: Path
    base_url: str = "/media"

    def _path(self, key: str) -> Path:
        safe_key = key.lstrip("/").replace("\\", "/")
        p = (self.root / safe_key).resolve()
        if self.root.resolve() not in p.parents and p != self.root.resolve():
            raise StorageError(f"Storage key escapes storage root: {key}", details={"key": key})
        return p

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        p = self._path(key)
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Upload failed for {key}: {e}", details={"key": key}) from e

    def open(self, key: str) -> BinaryIO:
        p = self._path(key)
        try:
            return p.open("rb")
        except OSError as e:
            raise StorageError(f"Cannot open {key}: {e}", details={"key": key}) from e

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def public_url(self, key: str) -> str:
        return f"{self.base_url.rstrip('/')}/{key.lstrip('/')}"

    def list_keys(self, prefix: str) -> Iterator[str]:
        base = self._path(prefix) if prefix else self.root
        if not base.exists():
            return
        for p in sorted(base.rglob("*")):
            if p.is_file():
                yield p.relative_to(self.root).as_posix()

    def delete(self, key: str) -> None:
        p = self._path(key)
        try:
            p.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageError(f"Delete failed for {key}: {e}", details={"key": key}) from e


@dataclass(frozen=True)
class S3Storage(Storage):
    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str
    public_base_url: str = ""
    timeout_seconds: float = 30.0

    def _client(self):
        try:
            import boto3  # type: ignore
            from botocore.config import Config  # type: ignore
        except Exception as e:  # pragma: no cover
            raise StorageError("boto3 required for S3 storage. Install boto3.") from e
        # Bounded timeouts, no silent retries: the caller owns retry policy.
        cfg = Config(
            connect_timeout=self.timeout_seconds,
            read_timeout=self.timeout_seconds,
            retries={"max_attempts": 1, "mode": "standard"},
        )
        return boto3.client(
            "s3",
            endpoint_url=f"https://{self.endpoint}" if self.endpoint else None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=cfg,
        )

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        from botocore.exceptions import BotoCoreError, ClientError  # type: ignore

        extra: dict[str, object] = {"ACL": "public-read"}
        if content_type:
            extra["ContentType"] = content_type
        try:
            self._client().put_object(Bucket=self.bucket, Key=key, Body=data, **extra)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Upload failed for {key}: {e}", details={"key": key}) from e

    def open(self, key: str) -> BinaryIO:
        from botocore.exceptions import BotoCoreError, ClientError  # type: ignore

        try:
            obj = self._client().get_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Cannot open {key}: {e}", details={"key": key}) from e
        return obj["Body"]  # type: ignore[return-value]

    def exists(self, key: str) -> bool:
        from botocore.exceptions import BotoCoreError, ClientError  # type: ignore

        try:
            self._client().head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            if status == 404:
                return False
            raise StorageError(f"Cannot check {key}: {e}", details={"key": key}) from e
        except BotoCoreError as e:
            raise StorageError(f"Cannot check {key}: {e}", details={"key": key}) from e

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{key}"
        if self.endpoint:
            return f"https://{self.bucket}.{self.endpoint}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def list_keys(self, prefix: str) -> Iterator[str]:
        from botocore.exceptions import BotoCoreError, ClientError  # type: ignore

        paginator = self._client().get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    yield obj["Key"]
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Listing {prefix!r} failed: {e}", details={"prefix": prefix}) from e

    def delete(self, key: str) -> None:
        from botocore.exceptions import BotoCoreError, ClientError  # type: ignore

        try:
            self._client().delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Delete failed for {key}: {e}", details={"key": key}) from e


def storage_from_config(config: dict) -> Storage:
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    if backend == "s3":
        return S3Storage(
            endpoint=(config.get("S3_ENDPOINT") or "").strip(),
            region=(config.get("S3_REGION") or "nyc3").strip(),
            bucket=(config.get("S3_BUCKET") or "").strip(),
            access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
            secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
            public_base_url=(config.get("S3_PUBLIC_BASE_URL") or "").strip(),
            timeout_seconds=float(config.get("STORAGE_TIMEOUT_SECONDS") or 30.0),
        )
    # default local
    root = Path(config.get("LOCAL_STORAGE_ROOT") or (Path(os.getcwd()) / "storage"))
    return LocalStorage(root=root, base_url=(config.get("PUBLIC_MEDIA_BASE_URL") or "/media"))
