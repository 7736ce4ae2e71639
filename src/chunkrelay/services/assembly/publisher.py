"""Hand finished artifacts to the blob store."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from chunkrelay.core.config import settings
from chunkrelay.core.exceptions import PublishError
from chunkrelay.storage.base import BlobStore, sanitize_filename

logger = logging.getLogger(__name__)


def derive_destination_key(file_name: str, prefix: Optional[str] = None) -> str:
    """Build the object key for a file: ``<prefix>/<sanitized file name>``."""
    prefix = settings.UPLOAD_KEY_PREFIX if prefix is None else prefix
    safe_name = sanitize_filename(file_name)
    prefix = prefix.strip("/")
    return f"{prefix}/{safe_name}" if prefix else safe_name


def select_bucket(content_type: Optional[str]) -> str:
    """Pick the destination bucket for a single-shot upload from its content type."""
    major = (content_type or "").split("/", 1)[0].strip().lower()
    if major == "image":
        return settings.image_bucket
    if major == "video":
        return settings.video_bucket
    return settings.GCS_BUCKET_NAME


class Publisher:
    """Thin adapter over a BlobStore with a caller-visible timeout."""

    def __init__(self, blob_store: BlobStore, timeout_seconds: float = 300.0):
        self.blob_store = blob_store
        self.timeout_seconds = timeout_seconds

    async def publish(
        self,
        source_path: Path,
        destination_key: str,
        content_type: str,
        bucket: Optional[str] = None,
    ) -> str:
        """Upload a file and return its URI in the blob store.

        Raises:
            PublishError: If the store fails, is misconfigured or the timeout expires
        """
        logger.info(
            "Publishing artifact",
            extra={
                "destination_key": destination_key,
                "content_type": content_type,
                "backend": self.blob_store.get_backend_name(),
            },
        )
        try:
            location = await asyncio.wait_for(
                asyncio.to_thread(
                    self.blob_store.put, destination_key, Path(source_path), content_type, bucket or None
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.error(
                "Publish timed out",
                extra={"destination_key": destination_key, "timeout_seconds": self.timeout_seconds},
            )
            raise PublishError(
                f"Publishing {destination_key} did not finish within {self.timeout_seconds}s"
            ) from e
        except ValueError as e:
            logger.error("Blob store is misconfigured", extra={"error": str(e)})
            raise PublishError(f"Blob store configuration error: {e}") from e

        logger.info("Artifact published", extra={"destination_key": destination_key, "location": location})
        return location
