"""Durable media storage.

Objects are addressed by ``<folder>/<name>`` with fixed names, so publishing
the same page twice overwrites instead of duplicating. Folder layout:

- ``covers/<title_id>.jpg``
- ``<title_id>/chapter-<n>/<NNN>.jpg``
"""

import logging
import shutil
from pathlib import Path

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from . import settings
from .errors import PublishFailure, StorageError
from .utils import natural_key

logger = logging.getLogger("mangaverse.storage")


class BlobStore:
    def upload(self, folder: str, name: str, data: bytes, content_type: str = "image/jpeg") -> str:
        """Writes (or overwrites) one object and returns its public URL."""
        raise NotImplementedError

    def delete(self, folder: str, name: str):
        raise NotImplementedError

    def delete_folder(self, folder: str):
        raise NotImplementedError

    def list_folder(self, folder: str) -> list[tuple[str, str]]:
        """(name, url) pairs directly under the folder, in natural name order."""
        raise NotImplementedError


class LocalBlobStore(BlobStore):
    def __init__(self, root: Path = settings.STORAGE_ROOT, public_url: str = settings.STORAGE_PUBLIC_URL):
        self.root = Path(root)
        self.public_url = public_url.rstrip("/")

    def _url(self, path: Path) -> str:
        if self.public_url:
            return f"{self.public_url}/{path.relative_to(self.root).as_posix()}"
        return path.resolve().as_uri()

    def upload(self, folder: str, name: str, data: bytes, content_type: str = "image/jpeg") -> str:
        path = self.root / folder.strip("/") / name
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise PublishFailure(f"Could not write {path}: {e}") from e
        return self._url(path)

    def delete(self, folder: str, name: str):
        path = self.root / folder.strip("/") / name
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Could not delete {path}: {e}") from e

    def delete_folder(self, folder: str):
        path = self.root / folder.strip("/")
        if not path.exists():
            return
        logger.info("[Storage] Deleting folder %s", path)
        try:
            shutil.rmtree(path)
        except OSError as e:
            raise StorageError(f"Could not delete {path}: {e}") from e

    def list_folder(self, folder: str) -> list[tuple[str, str]]:
        path = self.root / folder.strip("/")
        if not path.is_dir():
            return []
        files = sorted((f for f in path.iterdir() if f.is_file()), key=lambda f: natural_key(f.name))
        return [(f.name, self._url(f)) for f in files]


class S3BlobStore(BlobStore):
    def __init__(
        self,
        bucket: str = settings.S3_BUCKET,
        *,
        prefix: str = settings.S3_PREFIX,
        region: str = settings.AWS_REGION,
        public_url: str = settings.STORAGE_PUBLIC_URL,
        client=None,
    ):
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.region = region
        self.public_url = public_url.rstrip("/")
        if client is None:
            cfg = BotoConfig(retries={"max_attempts": 8, "mode": "standard"})
            session_args = {"region_name": region} if region else {}
            client = boto3.client("s3", config=cfg, **session_args)
        self.s3 = client

    def _key(self, folder: str, name: str = "") -> str:
        parts = [p for p in (self.prefix, folder.strip("/"), name) if p]
        return "/".join(parts)

    def _url(self, key: str) -> str:
        if self.public_url:
            return f"{self.public_url}/{key}"
        if self.region:
            return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"
        return f"https://{self.bucket}.s3.amazonaws.com/{key}"

    def _iter_keys(self, folder: str):
        prefix = self._key(folder) + "/"
        paginator = self.s3.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                yield obj["Key"]

    def upload(self, folder: str, name: str, data: bytes, content_type: str = "image/jpeg") -> str:
        key = self._key(folder, name)
        try:
            self.s3.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except (ClientError, BotoCoreError) as e:
            raise PublishFailure(f"Could not upload s3://{self.bucket}/{key}: {e}") from e
        return self._url(key)

    def delete(self, folder: str, name: str):
        key = self._key(folder, name)
        try:
            self.s3.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Could not delete s3://{self.bucket}/{key}: {e}") from e

    def delete_folder(self, folder: str):
        logger.info("[Storage] Deleting s3://%s/%s/", self.bucket, self._key(folder))
        try:
            keys = list(self._iter_keys(folder))
            # delete_objects accepts at most 1000 keys per call
            for i in range(0, len(keys), 1000):
                chunk = [{"Key": k} for k in keys[i : i + 1000]]
                self.s3.delete_objects(Bucket=self.bucket, Delete={"Objects": chunk, "Quiet": True})
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Could not delete folder {folder}: {e}") from e

    def list_folder(self, folder: str) -> list[tuple[str, str]]:
        prefix = self._key(folder) + "/"
        try:
            keys = [k for k in self._iter_keys(folder) if "/" not in k[len(prefix) :]]
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Could not list folder {folder}: {e}") from e
        keys.sort(key=lambda k: natural_key(k.rsplit("/", 1)[-1]))
        return [(k.rsplit("/", 1)[-1], self._url(k)) for k in keys]


def build_blob_store() -> BlobStore:
    if settings.STORAGE_BACKEND == "s3":
        if not settings.S3_BUCKET:
            raise StorageError("S3_BUCKET must be set when STORAGE_BACKEND=s3")
        return S3BlobStore()
    return LocalBlobStore()
