"""Single-shot (non-chunked) uploads forwarded straight to the blob store."""

import asyncio
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from chunkrelay.services.assembly.publisher import Publisher, derive_destination_key, select_bucket

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DirectUploadResult:
    destination_key: str
    bucket: str
    location: str
    content_type: str
    size_bytes: int


def _spool_to_disk(file_data: BinaryIO, spool_dir: Path) -> tuple[Path, int]:
    spool_dir.mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(dir=spool_dir, prefix=".direct-")
    with os.fdopen(fd, "wb") as out:
        file_data.seek(0)
        shutil.copyfileobj(file_data, out, 65536)  # 64KB blocks
        size_bytes = out.tell()
    return Path(name), size_bytes


async def upload_direct(
    publisher: Publisher,
    file_data: BinaryIO,
    file_name: str,
    content_type: str,
    spool_dir: str | Path,
) -> DirectUploadResult:
    """Publish a whole request body, choosing the bucket from its content type.

    Raises:
        PublishError: If the blob store rejects the file
    """
    destination_key = derive_destination_key(file_name)
    bucket = select_bucket(content_type)

    path, size_bytes = await asyncio.to_thread(_spool_to_disk, file_data, Path(spool_dir))
    try:
        location = await publisher.publish(path, destination_key, content_type, bucket=bucket)
    finally:
        path.unlink(missing_ok=True)

    logger.info(
        "Direct upload published",
        extra={"destination_key": destination_key, "bucket": bucket, "size_bytes": size_bytes},
    )
    return DirectUploadResult(
        destination_key=destination_key,
        bucket=bucket,
        location=location,
        content_type=content_type,
        size_bytes=size_bytes,
    )
