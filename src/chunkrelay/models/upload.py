"""Upload data models."""

from typing import List, Literal, Optional

from pydantic import BaseModel


class ChunkUploadResponse(BaseModel):
    """Response model for a chunk arrival."""

    status: Literal["chunk-received", "upload-complete"]
    upload_id: str
    sequence_number: Optional[int] = None
    received_chunks: int
    expected_chunks: int
    destination_key: Optional[str] = None
    location: Optional[str] = None
    size_bytes: Optional[int] = None
    sha256: Optional[str] = None


class UploadStatusResponse(BaseModel):
    """Response model for an upload status query."""

    upload_id: str
    state: str
    complete: bool
    received_chunks: int
    expected_chunks: int
    missing_chunks: List[int]
    file_name: str
    destination_key: Optional[str] = None
    last_error: Optional[str] = None


class DirectUploadResponse(BaseModel):
    """Response model for a single-shot upload."""

    destination_key: str
    bucket: str
    location: str
    content_type: str
    size_bytes: int
