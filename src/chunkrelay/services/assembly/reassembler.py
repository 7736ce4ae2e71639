"""Concatenate staged chunks into a single artifact."""

import asyncio
import hashlib
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from chunkrelay.core.exceptions import (
    ChunkNotFoundError,
    ChunkStorageError,
    MissingChunkError,
    ReassemblyError,
)
from chunkrelay.storage.base import sanitize_filename, validate_upload_id
from chunkrelay.storage.chunk_store import ChunkStore

logger = logging.getLogger(__name__)

COPY_BLOCK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class Artifact:
    """Handle to a reassembled file waiting to be published."""

    upload_id: str
    path: Path
    file_name: str
    content_type: str
    size_bytes: int
    sha256: str
    chunk_count: int


class Reassembler:
    """Builds artifacts from staged chunks.

    Chunks 1..N are streamed into a temporary file in sequence order. Only
    after every chunk has been appended and the file renamed into place are
    the staged chunks deleted, so a gap never costs the client its other
    chunks.
    """

    def __init__(self, chunk_store: ChunkStore, assembly_dir: str | Path):
        self.chunk_store = chunk_store
        self.assembly_dir = Path(assembly_dir)

    def artifact_path(self, upload_id: str, file_name: str) -> Path:
        return self.assembly_dir / validate_upload_id(upload_id) / sanitize_filename(file_name)

    async def assemble(
        self, upload_id: str, expected_chunk_count: int, file_name: str, content_type: str
    ) -> Artifact:
        """Reassemble an upload whose chunks are all staged.

        Raises:
            MissingChunkError: If a sequence number in 1..N is not staged
            ReassemblyError: If reading chunks or writing the artifact fails
        """
        return await asyncio.to_thread(
            self._assemble, upload_id, expected_chunk_count, file_name, content_type
        )

    def _assemble(
        self, upload_id: str, expected_chunk_count: int, file_name: str, content_type: str
    ) -> Artifact:
        target = self.artifact_path(upload_id, file_name)
        partial = target.with_name(f".{target.name}.partial")

        logger.info(
            "Reassembling upload",
            extra={"upload_id": upload_id, "expected_chunks": expected_chunk_count, "artifact": str(target)},
        )

        digest = hashlib.sha256()
        size_bytes = 0
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(partial, "wb") as out:
                for sequence_number in range(1, expected_chunk_count + 1):
                    with self.chunk_store.open(upload_id, sequence_number) as chunk:
                        while block := chunk.read(COPY_BLOCK_SIZE):
                            digest.update(block)
                            out.write(block)
                            size_bytes += len(block)
                out.flush()
                os.fsync(out.fileno())
            os.replace(partial, target)
        except ChunkNotFoundError as e:
            partial.unlink(missing_ok=True)
            logger.warning(
                "Reassembly found a missing chunk",
                extra={"upload_id": upload_id, "sequence_number": e.sequence_number},
            )
            raise MissingChunkError(upload_id, e.sequence_number) from e
        except (ChunkStorageError, OSError) as e:
            partial.unlink(missing_ok=True)
            logger.error(
                "Reassembly failed",
                extra={"upload_id": upload_id, "error": str(e)},
                exc_info=True,
            )
            raise ReassemblyError(f"Failed to reassemble upload {upload_id}: {e}") from e

        # Every chunk is now in the artifact; the chunks can go.
        for sequence_number in range(1, expected_chunk_count + 1):
            try:
                self.chunk_store.remove(upload_id, sequence_number)
            except ChunkStorageError as e:
                logger.warning(
                    "Could not remove consumed chunk, leaving it to cleanup",
                    extra={"upload_id": upload_id, "sequence_number": sequence_number, "error": str(e)},
                )

        artifact = Artifact(
            upload_id=upload_id,
            path=target,
            file_name=file_name,
            content_type=content_type,
            size_bytes=size_bytes,
            sha256=digest.hexdigest(),
            chunk_count=expected_chunk_count,
        )
        logger.info(
            "Upload reassembled",
            extra={"upload_id": upload_id, "size_bytes": size_bytes, "sha256": artifact.sha256},
        )
        return artifact

    def discard(self, artifact: Artifact) -> None:
        """Delete an artifact and its per-upload directory."""
        artifact.path.unlink(missing_ok=True)
        self.discard_upload(artifact.upload_id)

    def discard_upload(self, upload_id: str) -> None:
        """Delete whatever the reassembler left for an upload, partial files included."""
        shutil.rmtree(self.assembly_dir / validate_upload_id(upload_id), ignore_errors=True)
