"""Removal of intermediate upload state after a terminal outcome."""

import logging
from typing import Optional

from chunkrelay.core.exceptions import ChunkStorageError
from chunkrelay.services.assembly.reassembler import Artifact, Reassembler
from chunkrelay.storage.chunk_store import ChunkStore

logger = logging.getLogger(__name__)


class Cleanup:
    """Deletes staged chunks and artifacts.

    Staged chunks are always swept, even after a successful reassembly that
    already consumed them, to catch leftovers from an interrupted run. The
    artifact is only deleted once it is published or the upload is abandoned.
    """

    def __init__(self, chunk_store: ChunkStore, reassembler: Reassembler):
        self.chunk_store = chunk_store
        self.reassembler = reassembler

    def release_chunks(self, upload_id: str) -> int:
        """Remove every staged chunk of an upload; returns how many were removed."""
        staged = self.chunk_store.list_staged(upload_id)
        removed = 0
        for sequence_number in sorted(staged):
            try:
                self.chunk_store.remove(upload_id, sequence_number)
                removed += 1
            except ChunkStorageError as e:
                logger.error(
                    "Failed to remove staged chunk",
                    extra={"upload_id": upload_id, "sequence_number": sequence_number, "error": str(e)},
                )
        self.chunk_store.remove_upload_dir(upload_id)
        if removed:
            logger.info("Removed staged chunks", extra={"upload_id": upload_id, "removed_chunks": removed})
        return removed

    def after_publish(self, upload_id: str, artifact: Artifact, published: bool) -> None:
        """Sweep chunk state; drop the artifact only if it reached the blob store."""
        self.release_chunks(upload_id)
        if published:
            self.reassembler.discard(artifact)
            logger.info("Deleted published artifact", extra={"upload_id": upload_id, "path": str(artifact.path)})
        else:
            logger.info(
                "Retaining artifact for publish retry",
                extra={"upload_id": upload_id, "path": str(artifact.path)},
            )

    def abandon(self, upload_id: str, artifact: Optional[Artifact] = None) -> None:
        """Remove everything an abandoned upload left behind."""
        self.release_chunks(upload_id)
        if artifact is not None:
            self.reassembler.discard(artifact)
        else:
            self.reassembler.discard_upload(upload_id)
        logger.info("Upload abandoned", extra={"upload_id": upload_id})
