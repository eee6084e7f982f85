"""Cloudflare R2 storage for generated media.

Durable home for narration audio and migrated cover images, using the
S3-compatible API. boto3 is blocking, so async callers go through
upload(), which runs the transfer in a worker thread.
"""

import asyncio
import logging
import mimetypes
import time
import uuid
from io import BytesIO
from pathlib import Path
from typing import BinaryIO, Dict, Optional, Union

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

_EXTENSION_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".wav": "audio/wav",
    ".mp3": "audio/mpeg",
}

_TYPE_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/mpeg": "mp3",
}


class R2StorageError(Exception):
    """Error from R2 storage."""

    pass


def extension_for_content_type(content_type: Optional[str], default: str = "bin") -> str:
    """Map a MIME type (parameters ignored) to a file extension."""
    if not content_type:
        return default
    base = content_type.split(";")[0].strip().lower()
    return _TYPE_EXTENSIONS.get(base, default)


def build_object_key(prefix: str, extension: str) -> str:
    """Unique key like images/1718000000000-<hex>.png."""
    return f"{prefix.strip('/')}/{int(time.time() * 1000)}-{uuid.uuid4().hex}.{extension}"


class R2Storage:
    """Cloudflare R2 object storage service.

    Uses boto3 with S3-compatible API to interact with Cloudflare R2.
    """

    def __init__(
        self,
        account_id: str,
        access_key_id: str,
        secret_access_key: str,
        bucket_name: str = "vesper-media",
        public_url: Optional[str] = None,
    ):
        """Initialize R2 storage.

        Args:
            account_id: Cloudflare account ID
            access_key_id: R2 API access key ID
            secret_access_key: R2 API secret access key
            bucket_name: R2 bucket name
            public_url: Optional public URL base for files (CDN URL)
        """
        self.account_id = account_id
        self.bucket_name = bucket_name
        self.public_url = public_url

        self._client = boto3.client(
            "s3",
            endpoint_url=f"https://{account_id}.r2.cloudflarestorage.com",
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            config=Config(
                signature_version="s3v4",
                retries={"max_attempts": 3, "mode": "adaptive"},
            ),
        )

        logger.info(f"R2 storage initialized for bucket: {bucket_name}")

    def get_public_url(self, key: str) -> str:
        """Public URL for a key, or an s3:// URL when no CDN base is configured."""
        if self.public_url:
            return f"{self.public_url.rstrip('/')}/{key}"
        return f"s3://{self.bucket_name}/{key}"

    def upload_file(
        self,
        key: str,
        data: Union[bytes, BinaryIO],
        content_type: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        """Upload an object to R2.

        Args:
            key: Object key (path in bucket)
            data: File data as bytes or file-like object
            content_type: MIME type (guessed from the key if not provided)
            metadata: Optional metadata dict

        Returns:
            Public URL of the uploaded object

        Raises:
            R2StorageError: If the upload fails
        """
        if isinstance(data, bytes):
            data = BytesIO(data)

        if content_type is None:
            content_type, _ = mimetypes.guess_type(key)
            if content_type is None:
                content_type = _EXTENSION_TYPES.get(
                    Path(key).suffix.lower(), "application/octet-stream"
                )

        extra_args = {"ContentType": content_type}
        if metadata:
            extra_args["Metadata"] = metadata

        try:
            self._client.upload_fileobj(
                data,
                self.bucket_name,
                key,
                ExtraArgs=extra_args,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to upload {key}: {e}")
            raise R2StorageError(f"Failed to upload {key}: {e}") from e

        logger.info(f"Uploaded {key} to R2")
        return self.get_public_url(key)

    async def upload(self, data: bytes, content_type: str, prefix: str) -> str:
        """Upload bytes under a fresh unique key below prefix.

        Returns:
            Public URL of the uploaded object

        Raises:
            R2StorageError: If the upload fails
        """
        key = build_object_key(prefix, extension_for_content_type(content_type, "png"))
        return await asyncio.to_thread(self.upload_file, key, data, content_type)


_storage_instance: Optional[R2Storage] = None


def get_r2_storage(config: Optional[dict] = None) -> Optional[R2Storage]:
    """Get or create the R2Storage instance.

    Args:
        config: load_config() dict; loaded from the environment if omitted

    Returns:
        R2Storage instance or None if not configured
    """
    global _storage_instance

    if _storage_instance is not None:
        return _storage_instance

    if config is None:
        from utils.config import load_config

        config = load_config()

    account_id = config.get("r2_account_id")
    access_key_id = config.get("r2_access_key_id")
    secret_access_key = config.get("r2_secret_access_key")

    if not all([account_id, access_key_id, secret_access_key]):
        logger.info("R2 storage not configured - media will not be migrated")
        return None

    _storage_instance = R2Storage(
        account_id=account_id,
        access_key_id=access_key_id,
        secret_access_key=secret_access_key,
        bucket_name=config.get("r2_bucket_name") or "vesper-media",
        public_url=config.get("r2_public_url"),
    )
    return _storage_instance
