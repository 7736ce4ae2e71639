"""Exception hierarchy for the chunked upload pipeline.

Every error carries a machine-readable ``kind`` that the HTTP layer returns
to callers alongside the human message.
"""


class UploadError(Exception):
    """Base exception for upload handling."""

    kind = "internal"


class ValidationError(UploadError):
    """Raised when a chunk request is missing or has malformed fields."""

    kind = "validation"


class ConflictingUploadError(UploadError):
    """Raised when an upload id is reused with different declared metadata."""

    kind = "conflict"


class UploadClosedError(UploadError):
    """Raised when a chunk arrives for an upload that is no longer accepting chunks."""

    kind = "upload-closed"


class UploadNotFoundError(UploadError):
    """Raised when an operation targets an upload id the ledger does not know."""

    kind = "not-found"


class ChunkStorageError(UploadError):
    """Raised when a staging write, read or delete fails."""

    kind = "io"


class ChunkNotFoundError(ChunkStorageError):
    """Raised when a staged chunk is read but is not present."""

    def __init__(self, upload_id: str, sequence_number: int):
        super().__init__(f"Chunk {sequence_number} of upload {upload_id} is not staged")
        self.upload_id = upload_id
        self.sequence_number = sequence_number


class ReassemblyError(UploadError):
    """Raised when staged chunks cannot be concatenated into an artifact."""

    kind = "reassembly"


class MissingChunkError(ReassemblyError):
    """Raised when reassembly finds a gap in the staged sequence numbers."""

    kind = "missing-chunk"

    def __init__(self, upload_id: str, sequence_number: int):
        super().__init__(
            f"Upload {upload_id} is missing chunk {sequence_number}; re-send it to complete the upload"
        )
        self.upload_id = upload_id
        self.sequence_number = sequence_number


class PublishError(UploadError):
    """Raised when the remote blob store rejects or does not accept the artifact."""

    kind = "publish"
