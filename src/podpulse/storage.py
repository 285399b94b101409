"""
Blob Storage

Range-capable blob stores for episode audio: a local filesystem store and an
S3-compatible bucket store (R2, DigitalOcean Spaces, AWS).
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, Optional, Tuple

import boto3
from botocore.exceptions import ClientError

from .config import Settings, settings

logger = logging.getLogger(__name__)

# Inclusive-exclusive byte range: (start, end)
ByteRange = Tuple[int, int]


class BlobNotFoundError(Exception):
    """Raised when a blob key does not exist."""
    pass


class BlobStore(ABC):
    """
    Abstract interface for blob storage.

    Keys are slash-separated paths such as
    ``podcasts/<podcast_id>/episodes/<episode_id>.mp3``.
    """

    @abstractmethod
    def put(self, key: str, chunks: Iterable[bytes]) -> int:
        """
        Store a blob from an iterable of byte chunks.

        Args:
            key: Blob key
            chunks: Byte chunks written in order (e.g. a streamed HTTP body)

        Returns:
            Number of bytes written
        """

    @abstractmethod
    def get(self, key: str, byte_range: Optional[ByteRange] = None) -> bytes:
        """
        Read a blob, or only ``[start, end)`` of it when a range is given.

        Raises:
            BlobNotFoundError: If the key does not exist.
        """

    @abstractmethod
    def head(self, key: str) -> Optional[int]:
        """Return the blob size in bytes, or None if absent."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete a blob. Missing keys are ignored."""


class LocalBlobStore(BlobStore):
    """Blob store backed by a directory on the local filesystem."""

    def __init__(self, root: Optional[Path] = None):
        self.root = Path(root or settings.storage_path / "blobs")

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Invalid blob key: {key}")
        return path

    def put(self, key: str, chunks: Iterable[bytes]) -> int:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        partial = path.with_name(path.name + ".part")

        written = 0
        try:
            with open(partial, "wb") as f:
                for chunk in chunks:
                    f.write(chunk)
                    written += len(chunk)
            partial.replace(path)
        except Exception:
            if partial.exists():
                partial.unlink()
            raise

        logger.debug(f"Stored blob {key} ({written} bytes)")
        return written

    def get(self, key: str, byte_range: Optional[ByteRange] = None) -> bytes:
        path = self._path(key)
        if not path.is_file():
            raise BlobNotFoundError(f"Blob not found: {key}")

        with open(path, "rb") as f:
            if byte_range is None:
                return f.read()
            start, end = byte_range
            f.seek(start)
            return f.read(max(0, end - start))

    def head(self, key: str) -> Optional[int]:
        path = self._path(key)
        if not path.is_file():
            return None
        return path.stat().st_size

    def delete(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()


class S3BlobStore(BlobStore):
    """A client for S3-compatible object storage (R2, Spaces, AWS)."""

    def __init__(self, config: Optional[Settings] = None, client=None):
        config = config or settings
        if not config.bucket_name:
            raise ValueError("bucket_name is required for S3 blob storage")

        self.bucket_name = config.bucket_name
        if client is None:
            if not config.bucket_endpoint or not config.bucket_key_id or not config.bucket_access_key:
                raise ValueError(
                    "Missing bucket credentials. Please ensure BUCKET_ENDPOINT, "
                    "BUCKET_KEY_ID and BUCKET_ACCESS_KEY are set."
                )
            session = boto3.session.Session()
            client = session.client(
                "s3",
                region_name=config.bucket_region,
                endpoint_url=config.bucket_endpoint,
                aws_access_key_id=config.bucket_key_id,
                aws_secret_access_key=config.bucket_access_key,
            )
        self.client = client

    def put(self, key: str, chunks: Iterable[bytes]) -> int:
        # Multipart upload keeps one part in memory at a time
        upload = self.client.create_multipart_upload(
            Bucket=self.bucket_name, Key=key, ContentType="audio/mpeg"
        )
        upload_id = upload["UploadId"]
        parts = []
        buffer = bytearray()
        written = 0
        part_size = 8 * 1024 * 1024  # S3 minimum is 5 MiB except for the last part

        def flush():
            part_number = len(parts) + 1
            response = self.client.upload_part(
                Bucket=self.bucket_name,
                Key=key,
                UploadId=upload_id,
                PartNumber=part_number,
                Body=bytes(buffer),
            )
            parts.append({"ETag": response["ETag"], "PartNumber": part_number})
            buffer.clear()

        try:
            for chunk in chunks:
                buffer.extend(chunk)
                written += len(chunk)
                if len(buffer) >= part_size:
                    flush()
            if buffer or not parts:
                flush()
            self.client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )
        except Exception:
            self.client.abort_multipart_upload(
                Bucket=self.bucket_name, Key=key, UploadId=upload_id
            )
            raise

        logger.debug(f"Uploaded blob {key} ({written} bytes)")
        return written

    def get(self, key: str, byte_range: Optional[ByteRange] = None) -> bytes:
        kwargs = {"Bucket": self.bucket_name, "Key": key}
        if byte_range is not None:
            start, end = byte_range
            kwargs["Range"] = f"bytes={start}-{end - 1}"
        try:
            response = self.client.get_object(**kwargs)
        except ClientError as e:
            if e.response["Error"]["Code"] in ("NoSuchKey", "404"):
                raise BlobNotFoundError(f"Blob not found: {key}") from e
            raise
        return response["Body"].read()

    def head(self, key: str) -> Optional[int]:
        try:
            response = self.client.head_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            if e.response["Error"]["Code"] in ("NoSuchKey", "404"):
                return None
            raise
        return int(response["ContentLength"])

    def delete(self, key: str) -> None:
        self.client.delete_object(Bucket=self.bucket_name, Key=key)


def create_blob_store(config: Optional[Settings] = None) -> BlobStore:
    """Build the blob store selected by ``blob_backend``."""
    config = config or settings
    if config.blob_backend == "s3":
        return S3BlobStore(config)
    return LocalBlobStore(config.storage_path / "blobs")
