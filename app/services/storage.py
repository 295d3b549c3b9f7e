"""
Blob storage for uploaded study materials.

Two backends share one interface:
- LocalBlobStore: files under LOCAL_STORAGE_ROOT (development, tests)
- S3BlobStore: S3 or any S3-compatible endpoint (R2, MinIO)

Select with STORAGE_BACKEND=local|s3.
"""

import os
import logging
from pathlib import Path
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.services.errors import StorageError

logger = logging.getLogger(__name__)

STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "local")
LOCAL_STORAGE_ROOT = os.getenv("LOCAL_STORAGE_ROOT", "./storage/study-materials")

AWS_S3_BUCKET = os.getenv("AWS_S3_BUCKET", "study-materials")
AWS_S3_ENDPOINT = os.getenv("AWS_S3_ENDPOINT")  # For R2/MinIO
AWS_REGION = os.getenv("AWS_REGION", "us-east-1")


class BlobStore:
    """Interface: download(path) -> bytes, upload(path, data) -> path, delete(path)."""

    def download(self, path: str) -> bytes:
        raise NotImplementedError

    def upload(self, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        raise NotImplementedError

    def delete(self, path: str) -> None:
        """Remove an object. Deleting a missing object is not an error."""
        raise NotImplementedError


class LocalBlobStore(BlobStore):

    def __init__(self, root: str = LOCAL_STORAGE_ROOT):
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        # Keep every object inside the storage root
        if self.root not in target.parents:
            raise StorageError(f"Invalid storage path: {path}")
        return target

    def download(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return target.read_bytes()
        except OSError as e:
            logger.error(f"Local download failed for {path}: {e}")
            raise StorageError(f"Failed to download file: {e}") from e

    def upload(self, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            logger.error(f"Local upload failed for {path}: {e}")
            raise StorageError(f"Failed to upload file: {e}") from e
        return path

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            target.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Local delete failed for {path}: {e}")
            raise StorageError(f"Failed to delete file: {e}") from e


class S3BlobStore(BlobStore):

    def __init__(
        self,
        bucket: str = AWS_S3_BUCKET,
        endpoint_url: Optional[str] = AWS_S3_ENDPOINT,
        region: str = AWS_REGION,
        client=None
    ):
        self.bucket = bucket
        self.client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region,
            config=Config(
                retries={"max_attempts": 3, "mode": "standard"},
                connect_timeout=10,
                read_timeout=60,
            ),
        )

    def download(self, path: str) -> bytes:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=path)
            return response["Body"].read()
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 download failed for s3://{self.bucket}/{path}: {e}")
            raise StorageError(f"Failed to download file: {e}") from e

    def upload(self, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        extra = {"ContentType": content_type} if content_type else {}
        try:
            self.client.put_object(Bucket=self.bucket, Key=path, Body=data, **extra)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 upload failed for s3://{self.bucket}/{path}: {e}")
            raise StorageError(f"Failed to upload file: {e}") from e
        return path

    def delete(self, path: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=path)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 delete failed for s3://{self.bucket}/{path}: {e}")
            raise StorageError(f"Failed to delete file: {e}") from e


_store: Optional[BlobStore] = None


def get_blob_store() -> BlobStore:
    """Get the configured blob store (lazily created). Also a FastAPI dependency."""
    global _store

    if _store is None:
        if STORAGE_BACKEND == "s3":
            _store = S3BlobStore()
            logger.info(f"Using S3 blob store (bucket={AWS_S3_BUCKET})")
        else:
            _store = LocalBlobStore()
            logger.info(f"Using local blob store at {LOCAL_STORAGE_ROOT}")

    return _store


def reset_blob_store() -> None:
    """Reset the cached store (useful for testing)."""
    global _store
    _store = None
