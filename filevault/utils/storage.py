"""
Adapter over the S3-compatible blob store.

:class:`StorageBroker` issues pre-signed capability URLs scoped to exactly one
object key and one operation, and never for longer than ``max_expiry``.  It
also exposes the handful of object reads/writes the processing tasks need.
The broker keeps no state besides its boto3 client.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterator, Optional

import boto3
from botocore.config import Config

from filevault.config import settings

logger = logging.getLogger(__name__)

CHUNK_SIZE = 65536


@dataclass(frozen=True)
class PresignedUrl:
    url: str
    expires_at: datetime


class StorageBroker:
    def __init__(
        self,
        client: Any,
        bucket: str,
        upload_expiry: int = 3600,
        download_expiry: int = 3600,
        max_expiry: int = 86400,
    ) -> None:
        self.client = client
        self.bucket = bucket
        self.upload_expiry = upload_expiry
        self.download_expiry = download_expiry
        self.max_expiry = max_expiry

    # ------------------------------------------------------------------
    # Capability URLs
    # ------------------------------------------------------------------

    def create_upload_url(
        self,
        key: str,
        content_type: str,
        content_length: Optional[int] = None,
        expires_in: Optional[int] = None,
    ) -> PresignedUrl:
        """Pre-signed PUT for a single object; the signature pins content type (and length)."""
        self._check_key(key)
        params: dict[str, Any] = {"Bucket": self.bucket, "Key": key, "ContentType": content_type}
        if content_length is not None:
            params["ContentLength"] = int(content_length)
        return self._presign("put_object", params, expires_in or self.upload_expiry)

    def create_download_url(
        self, key: str, filename: Optional[str] = None, expires_in: Optional[int] = None
    ) -> PresignedUrl:
        """Pre-signed GET for a single object, optionally forcing an attachment filename."""
        self._check_key(key)
        params: dict[str, Any] = {"Bucket": self.bucket, "Key": key}
        if filename:
            safe_name = filename.replace('"', "").replace("\r", "").replace("\n", "")
            params["ResponseContentDisposition"] = f'attachment; filename="{safe_name}"'
        return self._presign("get_object", params, expires_in or self.download_expiry)

    # ------------------------------------------------------------------
    # Object access for workers
    # ------------------------------------------------------------------

    def head_object(self, key: str, bucket: Optional[str] = None) -> dict[str, Any]:
        return self.client.head_object(Bucket=bucket or self.bucket, Key=key)

    def iter_object_chunks(self, key: str, bucket: Optional[str] = None, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
        response = self.client.get_object(Bucket=bucket or self.bucket, Key=key)
        body = response["Body"]
        try:
            while True:
                chunk = body.read(chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            body.close()

    def read_object(self, key: str, bucket: Optional[str] = None) -> bytes:
        return b"".join(self.iter_object_chunks(key, bucket=bucket))

    def put_object(self, key: str, data: bytes, content_type: str, bucket: Optional[str] = None) -> None:
        self.client.put_object(Bucket=bucket or self.bucket, Key=key, Body=data, ContentType=content_type)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check_key(key: str) -> None:
        if not key or not key.strip() or "*" in key or key.endswith("/"):
            raise ValueError(f"Refusing to sign a URL for non-object key {key!r}")

    def _presign(self, operation: str, params: dict[str, Any], expires_in: int) -> PresignedUrl:
        expires_in = min(int(expires_in), self.max_expiry)
        if expires_in <= 0:
            raise ValueError("Pre-signed URL lifetime must be positive")
        url = self.client.generate_presigned_url(operation, Params=params, ExpiresIn=expires_in)
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
        logger.debug(f"Signed {operation} for s3://{params['Bucket']}/{params['Key']} ({expires_in}s)")
        return PresignedUrl(url=url, expires_at=expires_at)


_storage: Optional[StorageBroker] = None


def build_s3_client():
    return boto3.client(
        "s3",
        aws_access_key_id=settings.aws_access_key_id,
        aws_secret_access_key=settings.aws_secret_access_key,
        region_name=settings.aws_region,
        endpoint_url=settings.s3_endpoint_url,
        config=Config(signature_version="s3v4", s3={"addressing_style": "path" if settings.s3_endpoint_url else "auto"}),
    )


def get_storage() -> StorageBroker:
    """Process-wide broker, created on first use."""
    global _storage
    if _storage is None:
        _storage = StorageBroker(
            build_s3_client(),
            bucket=settings.s3_bucket_name,
            upload_expiry=settings.upload_url_expiry,
            download_expiry=settings.download_url_expiry,
            max_expiry=settings.max_url_expiry,
        )
    return _storage


def reset_storage() -> None:
    global _storage
    _storage = None
