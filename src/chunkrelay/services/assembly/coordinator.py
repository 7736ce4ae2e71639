"""Coordinates chunk arrival, completion, reassembly, publish and cleanup."""

import asyncio
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Awaitable, Literal, Optional

from chunkrelay.core.config import settings
from chunkrelay.core.exceptions import UploadNotFoundError, ValidationError
from chunkrelay.services.assembly.cleanup import Cleanup
from chunkrelay.services.assembly.publisher import Publisher, derive_destination_key
from chunkrelay.services.assembly.reassembler import Artifact, Reassembler
from chunkrelay.storage.base import validate_upload_id
from chunkrelay.storage.chunk_store import ChunkStore
from chunkrelay.storage.factory import get_blob_store
from chunkrelay.storage.upload_ledger import UploadEntry, UploadLedger, UploadProgress

logger = logging.getLogger(__name__)


@dataclass
class ChunkSubmission:
    """One chunk as received from a client, before validation."""

    upload_id: Optional[str]
    sequence_number: Optional[int]
    expected_chunk_count: Optional[int]
    file_name: Optional[str]
    data: Optional[bytes]
    content_type: Optional[str] = None

    def validate(self, max_chunk_bytes: int, max_chunks: int) -> None:
        """Reject the submission before anything is staged.

        Raises:
            ValidationError: If a field is missing or out of range
        """
        missing = [
            name
            for name, value in (
                ("uploadId", self.upload_id),
                ("sequenceNumber", self.sequence_number),
                ("expectedChunkCount", self.expected_chunk_count),
                ("fileName", self.file_name),
                ("chunk", self.data),
            )
            if value is None or value == ""
        ]
        if missing:
            raise ValidationError(f"Missing fields: {', '.join(missing)}")

        validate_upload_id(self.upload_id)

        if self.sequence_number < 1:
            raise ValidationError("sequenceNumber must be a positive integer")
        if self.expected_chunk_count < 1:
            raise ValidationError("expectedChunkCount must be a positive integer")
        if self.expected_chunk_count > max_chunks:
            raise ValidationError(f"expectedChunkCount exceeds the limit of {max_chunks}")
        if self.sequence_number > max_chunks:
            raise ValidationError(f"sequenceNumber exceeds the limit of {max_chunks}")
        if len(self.data) > max_chunk_bytes:
            raise ValidationError(f"Chunk size exceeds the limit of {max_chunk_bytes} bytes")


@dataclass(frozen=True)
class ChunkOutcome:
    """What the caller of a chunk arrival (or publish retry) gets back."""

    status: Literal["chunk-received", "upload-complete"]
    upload_id: str
    received_chunks: int
    expected_chunks: int
    sequence_number: Optional[int] = None
    destination_key: Optional[str] = None
    location: Optional[str] = None
    size_bytes: Optional[int] = None
    sha256: Optional[str] = None


def _retrieve_result(task: asyncio.Task) -> None:
    if not task.cancelled():
        task.exception()


async def _run_to_completion(coro: Awaitable[ChunkOutcome]) -> ChunkOutcome:
    """Await a ledger-mutating step that must not stop halfway.

    Cancelling the caller does not cancel the step; its failures are
    recorded on the ledger entry.
    """
    task = asyncio.ensure_future(coro)
    task.add_done_callback(_retrieve_result)
    return await asyncio.shield(task)


class UploadCoordinator:
    """Drives an upload from its first chunk to a published artifact.

    Chunk writes for one upload run in parallel. The ledger serializes only
    the completion decision, and exactly one request per upload goes on to
    reassemble and publish.
    """

    def __init__(
        self,
        chunk_store: ChunkStore,
        ledger: UploadLedger,
        reassembler: Reassembler,
        publisher: Publisher,
        cleanup: Cleanup,
        default_content_type: str = "application/octet-stream",
        max_chunk_bytes: int = 64 * 1024 * 1024,
        max_chunks: int = 10_000,
    ):
        self.chunk_store = chunk_store
        self.ledger = ledger
        self.reassembler = reassembler
        self.publisher = publisher
        self.cleanup = cleanup
        self.default_content_type = default_content_type
        self.max_chunk_bytes = max_chunk_bytes
        self.max_chunks = max_chunks

    async def receive_chunk(self, submission: ChunkSubmission) -> ChunkOutcome:
        """Stage a chunk and, if it completes the upload, reassemble and publish.

        Once the chunk holds a write slot, staging and any completion it
        triggers run to the end even if the request is cancelled.

        Raises:
            ValidationError: Before anything is staged
            ConflictingUploadError: If the upload id was declared with another chunk count
            UploadClosedError: If the upload is no longer accepting chunks
            ChunkStorageError: If staging the chunk fails
            ReassemblyError: If this chunk completed the upload but reassembly failed
            PublishError: If this chunk completed the upload but publishing failed
        """
        submission.validate(self.max_chunk_bytes, self.max_chunks)
        upload_id = submission.upload_id

        seed = None
        if not self.ledger.is_tracked(upload_id):
            seed = await asyncio.to_thread(self.chunk_store.list_staged, upload_id)

        entry = self.ledger.register(
            upload_id,
            submission.expected_chunk_count,
            submission.file_name,
            submission.content_type or self.default_content_type,
            seed=seed,
        )
        return await _run_to_completion(self._stage(entry, submission))

    async def _stage(self, entry: UploadEntry, submission: ChunkSubmission) -> ChunkOutcome:
        upload_id = entry.upload_id
        sequence_number = submission.sequence_number

        try:
            await asyncio.to_thread(self.chunk_store.put, upload_id, sequence_number, submission.data)
        except Exception:
            arrival = self.ledger.release_write(upload_id, entry)
            if arrival is not None and arrival.complete:
                # The staged set was already full; this write was the last one outstanding.
                try:
                    await self._complete(entry)
                except Exception as e:
                    logger.error(
                        "Completion after a failed chunk write also failed",
                        extra={"upload_id": upload_id, "error": str(e)},
                    )
            raise

        logger.info(
            "Chunk saved",
            extra={"upload_id": upload_id, "sequence_number": sequence_number, "size_bytes": len(submission.data)},
        )

        arrival = self.ledger.record_arrival(upload_id, sequence_number, submission.expected_chunk_count, entry)
        if not arrival.complete:
            logger.info(
                "Awaiting more chunks",
                extra={
                    "upload_id": upload_id,
                    "received_chunks": arrival.received_count,
                    "expected_chunks": arrival.expected_count,
                },
            )
            return ChunkOutcome(
                status="chunk-received",
                upload_id=upload_id,
                sequence_number=sequence_number,
                received_chunks=arrival.received_count,
                expected_chunks=arrival.expected_count,
            )

        outcome = await self._complete(entry)
        return ChunkOutcome(
            status=outcome.status,
            upload_id=outcome.upload_id,
            sequence_number=sequence_number,
            received_chunks=arrival.received_count,
            expected_chunks=arrival.expected_count,
            destination_key=outcome.destination_key,
            location=outcome.location,
            size_bytes=outcome.size_bytes,
            sha256=outcome.sha256,
        )

    async def retry_publish(self, upload_id: str) -> ChunkOutcome:
        """Publish a retained artifact again without re-staging any chunk.

        Raises:
            UploadNotFoundError: If the upload or its artifact is gone
            ConflictingUploadError: If the upload has no failed publish
            PublishError: If publishing fails again
        """
        validate_upload_id(upload_id)
        entry = self.ledger.claim_publish_retry(upload_id)
        artifact = entry.artifact
        if not isinstance(artifact, Artifact) or not artifact.path.exists():
            self.ledger.finish(upload_id, closed=False)
            raise UploadNotFoundError(f"Artifact for upload {upload_id} is no longer available; re-upload the file")

        logger.info("Retrying publish", extra={"upload_id": upload_id})
        return await _run_to_completion(self._publish(entry, artifact))

    async def abandon(self, upload_id: str) -> bool:
        """Discard an upload's staged chunks, artifact and ledger state.

        Returns:
            True if the ledger knew the upload
        """
        validate_upload_id(upload_id)
        entry = self.ledger.claim_abandon(upload_id)
        artifact = entry.artifact if entry is not None and isinstance(entry.artifact, Artifact) else None
        await asyncio.to_thread(self.cleanup.abandon, upload_id, artifact)
        return entry is not None

    def progress(self, upload_id: str) -> UploadProgress:
        """Report how far an upload has come.

        Raises:
            UploadNotFoundError: If the ledger does not know the upload
        """
        validate_upload_id(upload_id)
        progress = self.ledger.progress(upload_id)
        if progress is None:
            raise UploadNotFoundError(f"Upload {upload_id} not found")
        return progress

    async def _complete(self, entry: UploadEntry) -> ChunkOutcome:
        artifact = await self._reassemble(entry)
        return await self._publish(entry, artifact)

    async def _reassemble(self, entry: UploadEntry) -> Artifact:
        upload_id = entry.upload_id
        try:
            return await self.reassembler.assemble(
                upload_id, entry.expected_chunk_count, entry.file_name, entry.content_type
            )
        except Exception as e:
            # Chunks are intact on failure; reopen so the client can resend what is missing.
            staged = await asyncio.to_thread(self.chunk_store.list_staged, upload_id)
            self.ledger.reopen(upload_id, staged, str(e))
            raise

    async def _publish(self, entry: UploadEntry, artifact: Artifact) -> ChunkOutcome:
        upload_id = entry.upload_id
        destination_key = derive_destination_key(entry.file_name)
        self.ledger.mark_publishing(upload_id, artifact, destination_key)

        try:
            location = await self.publisher.publish(artifact.path, destination_key, artifact.content_type)
        except Exception as e:
            self.ledger.mark_publish_failed(upload_id, str(e))
            await asyncio.to_thread(self.cleanup.after_publish, upload_id, artifact, False)
            raise

        self.ledger.finish(upload_id)
        await asyncio.to_thread(self.cleanup.after_publish, upload_id, artifact, True)

        logger.info(
            "Upload complete",
            extra={"upload_id": upload_id, "destination_key": destination_key, "size_bytes": artifact.size_bytes},
        )
        return ChunkOutcome(
            status="upload-complete",
            upload_id=upload_id,
            received_chunks=entry.expected_chunk_count,
            expected_chunks=entry.expected_chunk_count,
            destination_key=destination_key,
            location=location,
            size_bytes=artifact.size_bytes,
            sha256=artifact.sha256,
        )


@lru_cache(maxsize=1)
def get_upload_coordinator() -> UploadCoordinator:
    """Build the process-wide coordinator from settings."""
    chunk_store = ChunkStore(settings.CHUNK_STAGING_DIR)
    reassembler = Reassembler(chunk_store, settings.ASSEMBLY_DIR)
    return UploadCoordinator(
        chunk_store=chunk_store,
        ledger=UploadLedger(),
        reassembler=reassembler,
        publisher=Publisher(get_blob_store(), timeout_seconds=settings.PUBLISH_TIMEOUT_SECONDS),
        cleanup=Cleanup(chunk_store, reassembler),
        default_content_type=settings.DEFAULT_CONTENT_TYPE,
        max_chunk_bytes=settings.max_chunk_bytes,
        max_chunks=settings.MAX_CHUNKS_PER_UPLOAD,
    )
