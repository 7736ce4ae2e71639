"""Abstract blob store interface and shared key helpers."""

import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from chunkrelay.core.exceptions import ValidationError

UPLOAD_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-][A-Za-z0-9._-]{0,127}$")


def validate_upload_id(upload_id: str) -> str:
    """Reject upload ids that are unsafe to use as a storage-key component."""
    if not upload_id or not UPLOAD_ID_PATTERN.match(upload_id):
        raise ValidationError(
            "uploadId must be 1-128 characters of letters, digits, '.', '_' or '-' "
            "and must not start with '.'"
        )
    return upload_id


def sanitize_filename(filename: str) -> str:
    """Remove path traversal and dangerous characters."""
    safe = filename.replace("../", "").replace("..\\", "")
    safe = safe.replace("/", "_").replace("\\", "_")
    safe = re.sub(r"[^a-zA-Z0-9._-]", "_", safe)
    safe = safe.lstrip(".")
    return safe[:255] or "unnamed"


class BlobStore(ABC):
    """Abstract base class for the remote durable blob store."""

    @abstractmethod
    def put(
        self,
        destination_key: str,
        source_path: Path,
        content_type: str,
        bucket: Optional[str] = None,
    ) -> str:
        """Upload a local file to the store.

        Args:
            destination_key: Object key inside the bucket
            source_path: Local file to upload
            content_type: MIME type recorded on the object
            bucket: Bucket override; the default bucket when None

        Returns:
            URI of the stored object

        Raises:
            PublishError: If the store rejects the upload or is unreachable
        """
        pass

    @abstractmethod
    def get_backend_name(self) -> str:
        """Return backend identifier."""
        pass
