"""Local filesystem blob store for development."""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from chunkrelay.core.exceptions import PublishError
from chunkrelay.storage.base import BlobStore

logger = logging.getLogger(__name__)


class LocalBlobStore(BlobStore):
    """Blob store that copies artifacts under a local directory."""

    def __init__(self, base_path: str | Path = "data/published", default_bucket: str = "default"):
        self.base_path = Path(base_path)
        self.default_bucket = default_bucket

    def get_target_path(self, destination_key: str, bucket: Optional[str] = None) -> Path:
        """Generate local target path, one directory per bucket."""
        target = (self.base_path / (bucket or self.default_bucket) / destination_key).resolve()
        if self.base_path.resolve() not in target.parents:
            raise PublishError(f"Destination key escapes the blob store root: {destination_key}")
        return target

    def put(
        self,
        destination_key: str,
        source_path: Path,
        content_type: str,
        bucket: Optional[str] = None,
    ) -> str:
        """Copy the file into the local blob directory."""
        target_path = self.get_target_path(destination_key, bucket)
        tmp_path: Optional[Path] = None
        try:
            target_path.parent.mkdir(parents=True, exist_ok=True)
            # One temp file per writer; concurrent puts of the same key never share it
            fd, tmp_name = tempfile.mkstemp(dir=target_path.parent, prefix=f".{target_path.name}.", suffix=".tmp")
            tmp_path = Path(tmp_name)
            with os.fdopen(fd, "wb") as dst, open(source_path, "rb") as src:
                shutil.copyfileobj(src, dst, 65536)  # 64KB blocks
            os.replace(tmp_path, target_path)
        except OSError as e:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            logger.error(
                "Failed to write blob locally",
                extra={"destination_key": destination_key, "error": str(e)},
            )
            raise PublishError(f"Failed to store {destination_key}: {e}") from e

        logger.info(
            "Blob stored locally",
            extra={"destination_key": destination_key, "path": str(target_path), "content_type": content_type},
        )
        return str(target_path)

    def get_backend_name(self) -> str:
        return "local"
