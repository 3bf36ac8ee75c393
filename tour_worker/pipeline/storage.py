"""
S3/R2 storage helpers.

Keys follow `<purpose>/<unique id>.<ext>`:
  videos/clips/{uuid}.mp4                      — one per generated room clip
  videos/tours/{variant}/{job_id}-{hex}.mp4    — final tour artifacts
"""

import os
import logging
import mimetypes
import uuid
from pathlib import Path
from typing import Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import StorageError

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

STORAGE_TYPE = os.getenv("STORAGE_TYPE", "s3")  # s3 | r2

S3_BUCKET = os.getenv("S3_BUCKET", "")
AWS_REGION = os.getenv("AWS_REGION", "us-east-1")
AWS_ACCESS_KEY_ID = os.getenv("AWS_ACCESS_KEY_ID", "")
AWS_SECRET_ACCESS_KEY = os.getenv("AWS_SECRET_ACCESS_KEY", "")

R2_BUCKET = os.getenv("R2_BUCKET", "")
R2_ACCOUNT_ID = os.getenv("R2_ACCOUNT_ID", "")
R2_ACCESS_KEY_ID = os.getenv("R2_ACCESS_KEY_ID", "")
R2_SECRET_ACCESS_KEY = os.getenv("R2_SECRET_ACCESS_KEY", "")
R2_PUBLIC_URL = os.getenv("R2_PUBLIC_URL", "")


# ── Keys ─────────────────────────────────────────────────────────────────────

def unique_key(prefix: str, extension: str, stem: Optional[str] = None) -> str:
    """`prefix/uuid.ext`, or `prefix/stem-hex.ext` when a stem is given."""
    extension = extension.lstrip(".").lower()
    token = uuid.uuid4().hex
    name = f"{stem}-{token[:12]}" if stem else str(uuid.UUID(token))
    return f"{prefix.strip('/')}/{name}.{extension}"


def clip_key(extension: str = "mp4") -> str:
    return unique_key("videos/clips", extension)


def tour_key(job_id: str, variant: str) -> str:
    return unique_key(f"videos/tours/{variant}", "mp4", stem=job_id)


# ── Client ───────────────────────────────────────────────────────────────────

class StorageService:
    """Thin wrapper over an S3-compatible bucket (AWS S3 or Cloudflare R2)."""

    def __init__(self, client=None, bucket: Optional[str] = None, storage_type: str = STORAGE_TYPE):
        self.storage_type = storage_type
        if storage_type == "r2":
            self.bucket = bucket or R2_BUCKET
            self._client = client or boto3.client(
                "s3",
                endpoint_url=f"https://{R2_ACCOUNT_ID}.r2.cloudflarestorage.com",
                aws_access_key_id=R2_ACCESS_KEY_ID,
                aws_secret_access_key=R2_SECRET_ACCESS_KEY,
                config=BotoConfig(signature_version="s3v4"),
                region_name="auto",
            )
        else:
            self.bucket = bucket or S3_BUCKET
            self._client = client or boto3.client(
                "s3",
                region_name=AWS_REGION,
                aws_access_key_id=AWS_ACCESS_KEY_ID or None,
                aws_secret_access_key=AWS_SECRET_ACCESS_KEY or None,
            )

    def public_url(self, key: str) -> str:
        if self.storage_type == "r2":
            if R2_PUBLIC_URL:
                return f"{R2_PUBLIC_URL.rstrip('/')}/{key}"
            return f"https://{self.bucket}.{R2_ACCOUNT_ID}.r2.dev/{key}"
        return f"https://{self.bucket}.s3.{AWS_REGION}.amazonaws.com/{key}"

    def upload_file(self, path, key: str, content_type: Optional[str] = None) -> str:
        """Upload a local file and return its public URL."""
        content_type = content_type or mimetypes.guess_type(str(path))[0] or "application/octet-stream"
        try:
            with open(path, "rb") as fh:
                self._client.put_object(Bucket=self.bucket, Key=key, Body=fh, ContentType=content_type)
        except (BotoCoreError, ClientError, OSError) as e:
            logger.error(f"Upload failed for key={key}: {e}")
            raise StorageError(f"Failed to upload {Path(path).name} to {key}: {e}") from e

        url = self.public_url(key)
        logger.info(f"Uploaded {Path(path).name} → {url}")
        return url

    def delete_object(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to delete {key}: {e}") from e


_storage: Optional[StorageService] = None


def get_storage() -> StorageService:
    """Lazily build the process-wide storage client."""
    global _storage
    if _storage is None:
        _storage = StorageService()
    return _storage
