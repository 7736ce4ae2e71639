"""Durable filesystem staging area for individual chunk payloads."""

import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Set

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from chunkrelay.core.exceptions import ChunkNotFoundError, ChunkStorageError
from chunkrelay.storage.base import validate_upload_id

logger = logging.getLogger(__name__)

CHUNK_SUFFIX = ".part"


@dataclass(frozen=True)
class ChunkRecord:
    """Metadata of one staged chunk."""

    upload_id: str
    sequence_number: int
    size_bytes: int
    arrived_at: datetime


class ChunkStore:
    """Stores chunk payloads on disk keyed by (upload id, sequence number).

    Layout is ``<base_path>/<upload_id>/<sequence_number>.part``. Writes go
    through a temporary file that is fsynced and renamed into place, so a
    staged chunk is always either the previous payload or the new one.
    """

    def __init__(self, base_path: str | Path):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _upload_dir(self, upload_id: str) -> Path:
        return self.base_path / validate_upload_id(upload_id)

    def _chunk_path(self, upload_id: str, sequence_number: int) -> Path:
        return self._upload_dir(upload_id) / f"{sequence_number}{CHUNK_SUFFIX}"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
        retry=retry_if_exception_type(OSError),
        reraise=True,
    )
    def _write_atomic(self, target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".incoming-", suffix=CHUNK_SUFFIX)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def put(self, upload_id: str, sequence_number: int, data: bytes) -> ChunkRecord:
        """Durably stage a chunk, replacing any earlier payload for the same slot.

        Raises:
            ChunkStorageError: If the write fails after retries
        """
        target = self._chunk_path(upload_id, sequence_number)
        try:
            self._write_atomic(target, data)
        except OSError as e:
            logger.error(
                "Failed to stage chunk",
                extra={"upload_id": upload_id, "sequence_number": sequence_number, "error": str(e)},
            )
            raise ChunkStorageError(f"Failed to stage chunk {sequence_number}: {e}") from e

        logger.debug(
            "Chunk staged",
            extra={"upload_id": upload_id, "sequence_number": sequence_number, "size_bytes": len(data)},
        )
        return self.stat(upload_id, sequence_number)

    def list_staged(self, upload_id: str) -> Set[int]:
        """Return the sequence numbers currently staged for an upload."""
        upload_dir = self._upload_dir(upload_id)
        if not upload_dir.is_dir():
            return set()

        staged = set()
        for entry in upload_dir.iterdir():
            if not entry.name.endswith(CHUNK_SUFFIX) or entry.name.startswith("."):
                continue
            stem = entry.name[: -len(CHUNK_SUFFIX)]
            if stem.isdigit():
                staged.add(int(stem))
        return staged

    def stat(self, upload_id: str, sequence_number: int) -> ChunkRecord:
        """Describe a staged chunk, including its arrival time."""
        path = self._chunk_path(upload_id, sequence_number)
        try:
            st = path.stat()
        except FileNotFoundError as e:
            raise ChunkNotFoundError(upload_id, sequence_number) from e
        return ChunkRecord(
            upload_id=upload_id,
            sequence_number=sequence_number,
            size_bytes=st.st_size,
            arrived_at=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
        )

    def list_records(self, upload_id: str) -> List[ChunkRecord]:
        """Describe every staged chunk of an upload in sequence order."""
        records = []
        for sequence_number in sorted(self.list_staged(upload_id)):
            try:
                records.append(self.stat(upload_id, sequence_number))
            except ChunkNotFoundError:
                continue
        return records

    def read(self, upload_id: str, sequence_number: int) -> bytes:
        """Read a staged chunk payload.

        Raises:
            ChunkNotFoundError: If the chunk is not staged
            ChunkStorageError: If the read fails
        """
        path = self._chunk_path(upload_id, sequence_number)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise ChunkNotFoundError(upload_id, sequence_number) from e
        except OSError as e:
            raise ChunkStorageError(f"Failed to read chunk {sequence_number}: {e}") from e

    def open(self, upload_id: str, sequence_number: int):
        """Open a staged chunk for streaming reads."""
        path = self._chunk_path(upload_id, sequence_number)
        try:
            return open(path, "rb")
        except FileNotFoundError as e:
            raise ChunkNotFoundError(upload_id, sequence_number) from e
        except OSError as e:
            raise ChunkStorageError(f"Failed to open chunk {sequence_number}: {e}") from e

    def remove(self, upload_id: str, sequence_number: int) -> None:
        """Delete a staged chunk. Removing an absent chunk is not an error."""
        path = self._chunk_path(upload_id, sequence_number)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise ChunkStorageError(f"Failed to remove chunk {sequence_number}: {e}") from e

    def remove_upload_dir(self, upload_id: str) -> None:
        """Remove the upload's staging directory once it holds no chunks."""
        upload_dir = self._upload_dir(upload_id)
        if not upload_dir.is_dir():
            return
        for leftover in upload_dir.glob(".incoming-*"):
            leftover.unlink(missing_ok=True)
        try:
            upload_dir.rmdir()
        except OSError:
            # Not empty: a late chunk landed after cleanup; left for the janitor.
            logger.warning(
                "Staging directory not empty after cleanup",
                extra={"upload_id": upload_id, "path": str(upload_dir)},
            )
