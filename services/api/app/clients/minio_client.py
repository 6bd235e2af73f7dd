"""
MinIO (S3-compatible) client for media storage.

Stores post images and avatars as objects keyed by opaque strings.
Returns pre-signed URLs so the client can fetch media directly from MinIO
without going through the API service. URLs are recomputed on every read;
only the object key is persisted.
"""
import logging
import uuid
from io import BytesIO
from typing import Optional

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.config import settings
from app.telemetry import MEDIA_DELETE_FAILURES_TOTAL

logger = logging.getLogger(__name__)

_s3 = None

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}


def init_minio() -> None:
    """Create the S3 client and ensure the media bucket exists."""
    global _s3
    scheme = "https" if settings.minio_use_ssl else "http"
    _s3 = boto3.client(
        "s3",
        endpoint_url=f"{scheme}://{settings.minio_endpoint}",
        aws_access_key_id=settings.minio_access_key,
        aws_secret_access_key=settings.minio_secret_key,
        config=Config(signature_version="s3v4"),
        region_name=settings.minio_region,
    )

    # Create bucket if missing
    existing = [b["Name"] for b in _s3.list_buckets().get("Buckets", [])]
    if settings.minio_bucket not in existing:
        _s3.create_bucket(Bucket=settings.minio_bucket)
        logger.info("Created MinIO bucket '%s'", settings.minio_bucket)
    else:
        logger.info("MinIO bucket '%s' already exists", settings.minio_bucket)


def get_s3():
    if _s3 is None:
        raise RuntimeError("MinIO client not initialised — call init_minio() at startup")
    return _s3


def is_supported_image(content_type: Optional[str]) -> bool:
    return content_type in _EXTENSIONS


def upload_media(data: bytes, content_type: str, prefix: str = "posts") -> str:
    """
    Upload raw bytes to MinIO and return the object key.
    Key format: {prefix}/{uuid}.{ext}
    """
    ext = _EXTENSIONS.get(content_type, "bin")
    key = f"{prefix}/{uuid.uuid4()}.{ext}"

    s3 = get_s3()
    s3.put_object(
        Bucket=settings.minio_bucket,
        Key=key,
        Body=BytesIO(data),
        ContentType=content_type,
    )
    logger.debug("Uploaded media to MinIO: %s", key)
    return key


def get_presigned_url(media_key: Optional[str], expires_in: int) -> Optional[str]:
    """Generate a temporary pre-signed URL valid for `expires_in` seconds."""
    if not media_key:
        return None
    s3 = get_s3()
    try:
        return s3.generate_presigned_url(
            "get_object",
            Params={"Bucket": settings.minio_bucket, "Key": media_key},
            ExpiresIn=expires_in,
        )
    except (BotoCoreError, ClientError) as exc:
        logger.warning("Failed to generate presigned URL for %s: %s", media_key, exc)
        return None


def delete_media(media_key: Optional[str]) -> bool:
    """
    Remove an object. Failures are logged and counted but not retried:
    the worst case is an orphaned blob, never a failed request.
    """
    if not media_key:
        return True
    s3 = get_s3()
    try:
        s3.delete_object(Bucket=settings.minio_bucket, Key=media_key)
    except (BotoCoreError, ClientError) as exc:
        MEDIA_DELETE_FAILURES_TOTAL.inc()
        logger.warning("Failed to delete media %s: %s", media_key, exc)
        return False
    logger.debug("Deleted media from MinIO: %s", media_key)
    return True


def delete_media_many(media_keys: list[str]) -> int:
    """Delete each key; returns the number of failures."""
    return sum(0 if delete_media(key) else 1 for key in media_keys)
