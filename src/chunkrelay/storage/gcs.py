"""Google Cloud Storage blob store."""

import logging
from pathlib import Path
from typing import Dict, Optional

from google.api_core.exceptions import Forbidden, GoogleAPIError
from google.cloud import storage

from chunkrelay.core.config import settings
from chunkrelay.core.exceptions import PublishError
from chunkrelay.storage.base import BlobStore

logger = logging.getLogger(__name__)


class GCSBlobStore(BlobStore):
    """Google Cloud Storage blob store.

    No retry policy is configured here: a failed publish leaves the artifact
    in place and the caller decides when to try again.
    """

    def __init__(self):
        self._client: Optional[storage.Client] = None
        self._buckets: Dict[str, storage.Bucket] = {}

    def _get_bucket(self, bucket_name: Optional[str] = None) -> storage.Bucket:
        """Lazy-load and cache GCS buckets."""
        name = bucket_name or settings.GCS_BUCKET_NAME
        if not name:
            raise ValueError("GCS_BUCKET_NAME not configured")

        if name not in self._buckets:
            if self._client is None:
                self._client = storage.Client(project=settings.GCP_PROJECT_ID or None)
            self._buckets[name] = self._client.bucket(name)

        return self._buckets[name]

    def put(
        self,
        destination_key: str,
        source_path: Path,
        content_type: str,
        bucket: Optional[str] = None,
    ) -> str:
        """Upload a local file to GCS."""
        gcs_bucket = self._get_bucket(bucket)
        gcs_uri = f"gs://{gcs_bucket.name}/{destination_key}"

        try:
            logger.info(
                "Uploading blob to GCS",
                extra={"gcs_uri": gcs_uri, "content_type": content_type},
            )
            blob = gcs_bucket.blob(destination_key)
            blob.upload_from_filename(str(source_path), content_type=content_type, retry=None)
        except Forbidden as e:
            logger.error("Access forbidden to GCS bucket", extra={"gcs_uri": gcs_uri})
            raise PublishError(f"Access denied: {gcs_uri}") from e
        except GoogleAPIError as e:
            logger.error("GCS rejected upload", extra={"gcs_uri": gcs_uri, "error": str(e)})
            raise PublishError(f"Failed to upload {gcs_uri}: {e}") from e
        except Exception as e:
            logger.error("Failed to upload blob to GCS", extra={"gcs_uri": gcs_uri, "error": str(e)})
            raise PublishError(f"Failed to upload {gcs_uri}: {e}") from e

        logger.info("Blob uploaded to GCS", extra={"gcs_uri": gcs_uri})
        return gcs_uri

    def get_backend_name(self) -> str:
        return "gcs"


# Singleton instance
gcs_blob_store = GCSBlobStore()
