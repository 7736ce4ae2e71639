"""
Chunk assembly pipeline.

Chunks are staged as they arrive, the ledger decides when an upload is
complete, the reassembler concatenates the staged chunks in sequence order,
the publisher hands the artifact to the blob store, and cleanup removes the
intermediate state once the outcome is known.
"""

from chunkrelay.services.assembly.cleanup import Cleanup
from chunkrelay.services.assembly.coordinator import (
    ChunkOutcome,
    ChunkSubmission,
    UploadCoordinator,
    get_upload_coordinator,
)
from chunkrelay.services.assembly.publisher import Publisher, derive_destination_key, select_bucket
from chunkrelay.services.assembly.reassembler import Artifact, Reassembler

__all__ = [
    "Artifact",
    "ChunkOutcome",
    "ChunkSubmission",
    "Cleanup",
    "Publisher",
    "Reassembler",
    "UploadCoordinator",
    "derive_destination_key",
    "get_upload_coordinator",
    "select_bucket",
]
