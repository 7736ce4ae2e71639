"""Per-upload bookkeeping of staged chunks and completion state."""

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Set

from chunkrelay.core.exceptions import (
    ConflictingUploadError,
    UploadClosedError,
    UploadNotFoundError,
)

logger = logging.getLogger(__name__)

# How many finished upload ids are remembered to reject late chunks
FINISHED_RETENTION = 10_000


class UploadState(str, Enum):
    """Upload lifecycle states. Terminal uploads are removed from the ledger."""

    OPEN = "open"  # Accepting chunks
    ASSEMBLING = "assembling"  # Completion claimed, reassembly in progress
    PUBLISHING = "publishing"  # Artifact assembled, publish in progress
    PUBLISH_FAILED = "publish_failed"  # Artifact retained, waiting for a publish retry


@dataclass
class UploadEntry:
    """Ledger entry for one logical upload."""

    upload_id: str
    expected_chunk_count: int
    file_name: str
    content_type: str
    staged: Set[int] = field(default_factory=set)
    state: UploadState = UploadState.OPEN
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None
    artifact: Optional[object] = None
    destination_key: Optional[str] = None
    last_error: Optional[str] = None
    discarded: bool = False
    writes_in_flight: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def received_count(self) -> int:
        """Distinct staged sequence numbers within 1..expected_chunk_count."""
        return sum(1 for n in self.staged if n <= self.expected_chunk_count)

    @property
    def excess(self) -> List[int]:
        return sorted(n for n in self.staged if n > self.expected_chunk_count)

    def missing(self) -> List[int]:
        return [n for n in range(1, self.expected_chunk_count + 1) if n not in self.staged]

    def touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)


@dataclass(frozen=True)
class Arrival:
    """Outcome of recording one chunk arrival."""

    received_count: int
    expected_count: int
    complete: bool


@dataclass(frozen=True)
class UploadProgress:
    """Read-only snapshot of an upload's completeness."""

    upload_id: str
    state: UploadState
    received_count: int
    expected_count: int
    missing: List[int]
    file_name: str
    destination_key: Optional[str]
    last_error: Optional[str]


class UploadLedger:
    """In-memory ledger of uploads in flight.

    The staged set is a cache of what ChunkStore holds: it is seeded from an
    enumeration of the store the first time an upload id is seen and only
    grows after a successful ``put``. Every state transition for one upload
    happens under that upload's lock, so completion is claimed exactly once.

    Each chunk write holds a slot from ``register`` until ``record_arrival``
    or ``release_write``. Completion is only claimed while no slot is held,
    so no write can land in the staging area after reassembly started.
    """

    def __init__(self):
        self._entries: Dict[str, UploadEntry] = {}
        self._registry_lock = threading.Lock()
        self._finished: "OrderedDict[str, datetime]" = OrderedDict()

    def _get(self, upload_id: str) -> Optional[UploadEntry]:
        with self._registry_lock:
            return self._entries.get(upload_id)

    def _remove(self, entry: UploadEntry, closed: bool) -> None:
        entry.discarded = True
        with self._registry_lock:
            if self._entries.get(entry.upload_id) is entry:
                del self._entries[entry.upload_id]
            if closed:
                self._finished[entry.upload_id] = datetime.now(timezone.utc)
                while len(self._finished) > FINISHED_RETENTION:
                    self._finished.popitem(last=False)

    def is_finished(self, upload_id: str) -> bool:
        """Whether the upload id recently completed and must not be reopened."""
        with self._registry_lock:
            return upload_id in self._finished

    def is_tracked(self, upload_id: str) -> bool:
        """Whether the ledger holds an entry for the upload id."""
        return self._get(upload_id) is not None

    def register(
        self,
        upload_id: str,
        expected_chunk_count: int,
        file_name: str,
        content_type: str,
        seed: Optional[Set[int]] = None,
    ) -> UploadEntry:
        """Take a write slot for one chunk, creating the upload on first sight.

        Every successful call must be paired with exactly one
        ``record_arrival`` or ``release_write``.

        Args:
            seed: Sequence numbers already staged for this upload; only used
                when the ledger has no entry for it

        Raises:
            ConflictingUploadError: If the upload was declared with a different chunk count
            UploadClosedError: If the upload is no longer accepting chunks
        """
        if self.is_finished(upload_id):
            raise UploadClosedError(f"Upload {upload_id} has already completed")

        entry = self._get(upload_id)
        if entry is None:
            candidate = UploadEntry(
                upload_id=upload_id,
                expected_chunk_count=expected_chunk_count,
                file_name=file_name,
                content_type=content_type,
                staged=set(seed or ()),
            )
            with self._registry_lock:
                entry = self._entries.setdefault(upload_id, candidate)
            if entry is candidate:
                logger.info(
                    "Upload registered",
                    extra={
                        "upload_id": upload_id,
                        "expected_chunks": expected_chunk_count,
                        "recovered_chunks": len(candidate.staged),
                    },
                )

        with entry.lock:
            if entry.discarded:
                raise UploadClosedError(f"Upload {upload_id} has already finished")
            if entry.expected_chunk_count != expected_chunk_count:
                raise ConflictingUploadError(
                    f"Upload {upload_id} was declared with {entry.expected_chunk_count} chunks, "
                    f"not {expected_chunk_count}"
                )
            if entry.state != UploadState.OPEN:
                raise UploadClosedError(f"Upload {upload_id} is {entry.state.value} and accepts no more chunks")
            if entry.file_name != file_name:
                logger.warning(
                    "Chunk declares a different file name than the upload",
                    extra={"upload_id": upload_id, "file_name": file_name, "registered_file_name": entry.file_name},
                )
            entry.writes_in_flight += 1
            return entry

    def record_arrival(
        self,
        upload_id: str,
        sequence_number: int,
        expected_chunk_count: int,
        entry: Optional[UploadEntry] = None,
    ) -> Arrival:
        """Record a successfully staged chunk and evaluate completeness.

        The caller that records the last outstanding write of a full staged
        set moves the upload to ASSEMBLING and receives ``complete=True``;
        every other caller sees ``complete=False`` or an UploadClosedError.
        Sequence numbers beyond the expected count are kept but not counted.

        Args:
            entry: The entry returned by ``register``; looked up by id when omitted

        Raises:
            UploadClosedError: If the upload was abandoned while this chunk was staged
        """
        entry = entry or self._get(upload_id)
        if entry is None:
            raise UploadClosedError(f"Upload {upload_id} is not accepting chunks")

        with entry.lock:
            entry.writes_in_flight -= 1
            if entry.discarded or entry.state != UploadState.OPEN:
                raise UploadClosedError(f"Upload {upload_id} closed before chunk {sequence_number} was recorded")

            entry.staged.add(sequence_number)
            entry.touch()

            if sequence_number > entry.expected_chunk_count:
                logger.warning(
                    "Chunk staged beyond the expected chunk count",
                    extra={
                        "upload_id": upload_id,
                        "anomaly": "excess_chunks",
                        "sequence_number": sequence_number,
                        "excess_chunks": entry.excess,
                        "expected_chunks": entry.expected_chunk_count,
                    },
                )

            arrival = self._claim_if_complete(entry)

        if not arrival.complete:
            logger.debug(
                "Awaiting more chunks",
                extra={
                    "upload_id": upload_id,
                    "received_chunks": arrival.received_count,
                    "expected_chunks": expected_chunk_count,
                    "writes_in_flight": entry.writes_in_flight,
                },
            )
        return arrival

    def release_write(self, upload_id: str, entry: Optional[UploadEntry] = None) -> Optional[Arrival]:
        """Give back the write slot of a chunk whose ``put`` failed.

        The staged set is unchanged, but if it was already full and this was
        the last outstanding write, the caller claims completion.
        """
        entry = entry or self._get(upload_id)
        if entry is None:
            return None
        with entry.lock:
            entry.writes_in_flight -= 1
            if entry.discarded or entry.state != UploadState.OPEN:
                return None
            return self._claim_if_complete(entry)

    def _claim_if_complete(self, entry: UploadEntry) -> Arrival:
        received = entry.received_count
        expected = entry.expected_chunk_count
        if received >= expected and entry.writes_in_flight == 0:
            entry.state = UploadState.ASSEMBLING
            logger.info(
                "All chunks received, claiming reassembly",
                extra={"upload_id": entry.upload_id, "received_chunks": received, "expected_chunks": expected},
            )
            return Arrival(received_count=received, expected_count=expected, complete=True)
        return Arrival(received_count=received, expected_count=expected, complete=False)

    def reopen(self, upload_id: str, staged: Set[int], error: str) -> None:
        """Return an upload to OPEN after a failed reassembly, resyncing its staged set."""
        entry = self._get(upload_id)
        if entry is None:
            return
        with entry.lock:
            entry.state = UploadState.OPEN
            entry.staged = set(staged)
            entry.last_error = error
            entry.touch()

    def mark_publishing(self, upload_id: str, artifact: object, destination_key: str) -> None:
        entry = self._require(upload_id)
        with entry.lock:
            entry.state = UploadState.PUBLISHING
            entry.artifact = artifact
            entry.destination_key = destination_key
            entry.touch()

    def mark_publish_failed(self, upload_id: str, error: str) -> None:
        entry = self._require(upload_id)
        with entry.lock:
            entry.state = UploadState.PUBLISH_FAILED
            entry.last_error = error
            entry.touch()

    def claim_publish_retry(self, upload_id: str) -> UploadEntry:
        """Move a PUBLISH_FAILED upload back to PUBLISHING for a single retry.

        Raises:
            UploadNotFoundError: If the upload is unknown
            ConflictingUploadError: If the upload has no failed publish to retry
        """
        entry = self._require(upload_id)
        with entry.lock:
            if entry.state != UploadState.PUBLISH_FAILED:
                raise ConflictingUploadError(
                    f"Upload {upload_id} is {entry.state.value}; only failed publishes can be retried"
                )
            entry.state = UploadState.PUBLISHING
            entry.touch()
            return entry

    def finish(self, upload_id: str, closed: bool = True) -> Optional[UploadEntry]:
        """Remove an upload after a terminal outcome.

        Returns the entry to exactly one caller; later calls get None. A closed
        upload id keeps rejecting chunks instead of starting a new upload.
        """
        entry = self._get(upload_id)
        if entry is None:
            return None
        with entry.lock:
            if entry.discarded:
                return None
            self._remove(entry, closed=closed)
            return entry

    def claim_abandon(self, upload_id: str) -> Optional[UploadEntry]:
        """Remove an upload that the client gave up on.

        Raises:
            ConflictingUploadError: If reassembly or publish is in progress
        """
        entry = self._get(upload_id)
        if entry is None:
            return None
        with entry.lock:
            if entry.state in (UploadState.ASSEMBLING, UploadState.PUBLISHING):
                raise ConflictingUploadError(f"Upload {upload_id} is {entry.state.value} and cannot be abandoned")
            if entry.discarded:
                return None
            self._remove(entry, closed=False)
            return entry

    def progress(self, upload_id: str) -> Optional[UploadProgress]:
        """Snapshot an upload's completeness, or None if the ledger does not know it."""
        entry = self._get(upload_id)
        if entry is None:
            return None
        with entry.lock:
            return UploadProgress(
                upload_id=entry.upload_id,
                state=entry.state,
                received_count=entry.received_count,
                expected_count=entry.expected_chunk_count,
                missing=entry.missing(),
                file_name=entry.file_name,
                destination_key=entry.destination_key,
                last_error=entry.last_error,
            )

    def list_all(self) -> List[UploadEntry]:
        """List all uploads in flight."""
        with self._registry_lock:
            return list(self._entries.values())

    def _require(self, upload_id: str) -> UploadEntry:
        entry = self._get(upload_id)
        if entry is None:
            raise UploadNotFoundError(f"Upload {upload_id} not found")
        return entry
