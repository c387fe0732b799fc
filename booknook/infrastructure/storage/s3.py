"""S3-compatible storage service implementation.

Talks to any S3-compatible object store (AWS S3, **MinIO**, LocalStack) through
``boto3``. Downloads are served through presigned GET URLs.
"""

import asyncio
import io
import logging
import mimetypes
import uuid
from pathlib import Path
from typing import Any, Optional

import boto3
from botocore.exceptions import ClientError

from booknook.domain.entities import FileReference
from booknook.domain.repositories import IStorageService, ProgressCallback

logger = logging.getLogger(__name__)


class S3StorageService(IStorageService):
    """S3-compatible object-store implementation of :class:`IStorageService`.

    Parameters
    ----------
    bucket_name : str
        Target bucket (created automatically if it does not exist).
    region : str
        AWS region (default ``us-east-1``).
    endpoint_url : str | None
        Custom S3 endpoint for MinIO / LocalStack.  ``None`` = real AWS.
    url_expiry_seconds : int
        Lifetime of the presigned download URLs.
    """

    def __init__(
        self,
        bucket_name: str = "booknook-books",
        region: str = "us-east-1",
        endpoint_url: Optional[str] = None,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        url_expiry_seconds: int = 7 * 24 * 3600,
    ):
        self.bucket_name = bucket_name
        self.region = region
        self.endpoint_url = endpoint_url
        self.url_expiry_seconds = url_expiry_seconds
        self._client = self._build_client(aws_access_key_id, aws_secret_access_key)
        self._ensure_bucket()

    # ------------------------------------------------------------------
    # Client initialisation
    # ------------------------------------------------------------------
    def _build_client(self, access_key: Optional[str], secret_key: Optional[str]) -> Any:
        kwargs: dict[str, Any] = {"region_name": self.region}
        if self.endpoint_url:
            kwargs["endpoint_url"] = self.endpoint_url
        if access_key and secret_key:
            kwargs["aws_access_key_id"] = access_key
            kwargs["aws_secret_access_key"] = secret_key
        client = boto3.client("s3", **kwargs)
        logger.info(
            "S3 client initialised (endpoint=%s, bucket=%s)",
            self.endpoint_url or "AWS",
            self.bucket_name,
        )
        return client

    def _ensure_bucket(self) -> None:
        """Create the target bucket if it does not already exist."""
        try:
            self._client.head_bucket(Bucket=self.bucket_name)
            logger.debug("Bucket '%s' already exists", self.bucket_name)
        except ClientError:
            try:
                self._client.create_bucket(Bucket=self.bucket_name)
                logger.info("Created bucket '%s'", self.bucket_name)
            except ClientError as exc:
                logger.warning("Could not create bucket '%s': %s", self.bucket_name, exc)

    def _presign(self, key: str) -> str:
        return self._client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket_name, "Key": key},
            ExpiresIn=self.url_expiry_seconds,
        )

    # ------------------------------------------------------------------
    # Interface implementation
    # ------------------------------------------------------------------
    async def save_file(
        self,
        file_content: bytes,
        filename: str,
        owner_id: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> FileReference:
        """Upload *file_content* and return its reference with a presigned URL."""
        extension = Path(filename).suffix.lower() or ".epub"
        key = f"books/{owner_id}/{uuid.uuid4()}{extension}"
        mime_type = mimetypes.guess_type(filename)[0] or "application/epub+zip"
        total = len(file_content) or 1
        sent = 0

        def _callback(bytes_amount: int) -> None:
            nonlocal sent
            sent += bytes_amount
            if on_progress:
                on_progress(min(sent / total * 100, 100.0))

        await asyncio.to_thread(
            self._client.upload_fileobj,
            io.BytesIO(file_content),
            self.bucket_name,
            key,
            ExtraArgs={"ContentType": mime_type},
            Callback=_callback,
        )
        logger.info("S3: uploaded %s (%d bytes)", key, len(file_content))
        return FileReference(
            path=key,
            download_url=self._presign(key),
            size=len(file_content),
            mime_type=mime_type,
            file_name=filename,
        )

    async def get_file(self, file_path: str) -> bytes:
        """Download a file from S3/MinIO by its object key."""
        response = await asyncio.to_thread(
            self._client.get_object, Bucket=self.bucket_name, Key=file_path
        )
        body: bytes = response["Body"].read()
        logger.debug("S3: retrieved %s (%d bytes)", file_path, len(body))
        return body

    async def delete_file(self, file_path: str) -> bool:
        """Delete an object from S3/MinIO."""
        await asyncio.to_thread(
            self._client.delete_object, Bucket=self.bucket_name, Key=file_path
        )
        logger.info("S3: deleted %s", file_path)
        return True

    async def save_cover(self, content: bytes, media_type: str, owner_id: str) -> str:
        extension = mimetypes.guess_extension(media_type or "") or ".jpg"
        key = f"covers/{owner_id}/{uuid.uuid4()}{extension}"
        await asyncio.to_thread(
            self._client.put_object,
            Bucket=self.bucket_name,
            Key=key,
            Body=content,
            ContentType=media_type or "image/jpeg",
        )
        logger.info("S3: uploaded cover %s", key)
        return self._presign(key)
