"""Upload API routes."""

import logging
from typing import Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile

from chunkrelay.core.config import settings
from chunkrelay.core.exceptions import (
    ChunkStorageError,
    ConflictingUploadError,
    MissingChunkError,
    PublishError,
    ReassemblyError,
    UploadClosedError,
    UploadError,
    UploadNotFoundError,
    ValidationError,
)
from chunkrelay.core.logging import upload_id_context
from chunkrelay.models.upload import (
    ChunkUploadResponse,
    DirectUploadResponse,
    UploadStatusResponse,
)
from chunkrelay.services.assembly.coordinator import (
    ChunkOutcome,
    ChunkSubmission,
    get_upload_coordinator,
)
from chunkrelay.services.direct_upload import upload_direct
from chunkrelay.storage.upload_ledger import UploadState

router = APIRouter(prefix="/api/v1", tags=["upload"])
logger = logging.getLogger(__name__)

# Most specific classes first
ERROR_STATUS_CODES = [
    (ValidationError, 400),
    (UploadNotFoundError, 404),
    (ConflictingUploadError, 409),
    (UploadClosedError, 409),
    (MissingChunkError, 409),
    (ReassemblyError, 500),
    (ChunkStorageError, 500),
    (PublishError, 502),
]


def _to_http_exception(error: UploadError) -> HTTPException:
    """Translate an upload error into an HTTP error carrying its kind."""
    status_code = 500
    for error_class, code in ERROR_STATUS_CODES:
        if isinstance(error, error_class):
            status_code = code
            break

    detail = {"error": error.kind, "message": str(error)}
    if isinstance(error, MissingChunkError):
        detail["sequence_number"] = error.sequence_number
    return HTTPException(status_code=status_code, detail=detail)


def _parse_count(value: Optional[str], field_name: str) -> Optional[int]:
    if value is None or not value.strip():
        return None
    try:
        return int(value.strip())
    except ValueError:
        raise ValidationError(f"{field_name} must be an integer, got {value!r}")


def _chunk_response(outcome: ChunkOutcome) -> ChunkUploadResponse:
    return ChunkUploadResponse(
        status=outcome.status,
        upload_id=outcome.upload_id,
        sequence_number=outcome.sequence_number,
        received_chunks=outcome.received_chunks,
        expected_chunks=outcome.expected_chunks,
        destination_key=outcome.destination_key,
        location=outcome.location,
        size_bytes=outcome.size_bytes,
        sha256=outcome.sha256,
    )


@router.post("/upload-chunk", response_model=ChunkUploadResponse, status_code=200)
async def upload_chunk(
    chunk: Optional[UploadFile] = File(None),
    upload_id: Optional[str] = Form(None, alias="uploadId"),
    sequence_number: Optional[str] = Form(None, alias="sequenceNumber"),
    expected_chunk_count: Optional[str] = Form(None, alias="expectedChunkCount"),
    file_name: Optional[str] = Form(None, alias="fileName"),
    content_type: Optional[str] = Form(None, alias="contentType"),
) -> ChunkUploadResponse:
    """Receive one chunk of a chunked upload."""
    upload_id_context.set(upload_id)
    try:
        submission = ChunkSubmission(
            upload_id=upload_id.strip() if upload_id else None,
            sequence_number=_parse_count(sequence_number, "sequenceNumber"),
            expected_chunk_count=_parse_count(expected_chunk_count, "expectedChunkCount"),
            file_name=file_name.strip() if file_name else None,
            data=await chunk.read() if chunk is not None else None,
            content_type=content_type or None,
        )

        logger.info(
            "Chunk received",
            extra={
                "upload_id": submission.upload_id,
                "sequence_number": submission.sequence_number,
                "expected_chunks": submission.expected_chunk_count,
                "file_name": submission.file_name,
            },
        )

        outcome = await get_upload_coordinator().receive_chunk(submission)
        return _chunk_response(outcome)

    except UploadError as e:
        if isinstance(e, (ValidationError, ConflictingUploadError, UploadClosedError)):
            logger.warning("Chunk rejected", extra={"error": str(e), "kind": e.kind})
        else:
            logger.error("Chunk handling failed", extra={"error": str(e), "kind": e.kind}, exc_info=True)
        raise _to_http_exception(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Unexpected error during chunk upload: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail={"error": "internal", "message": "Internal server error"})


@router.get("/uploads/{upload_id}", response_model=UploadStatusResponse)
async def get_upload_status(upload_id: str) -> UploadStatusResponse:
    """Report how many chunks of an upload have arrived."""
    try:
        progress = get_upload_coordinator().progress(upload_id)
    except UploadError as e:
        raise _to_http_exception(e)

    return UploadStatusResponse(
        upload_id=progress.upload_id,
        state=progress.state.value,
        complete=progress.state != UploadState.OPEN,
        received_chunks=progress.received_count,
        expected_chunks=progress.expected_count,
        missing_chunks=progress.missing if progress.state == UploadState.OPEN else [],
        file_name=progress.file_name,
        destination_key=progress.destination_key,
        last_error=progress.last_error,
    )


@router.post("/uploads/{upload_id}/publish", response_model=ChunkUploadResponse)
async def retry_publish(upload_id: str) -> ChunkUploadResponse:
    """Publish a retained artifact again after a failed publish."""
    upload_id_context.set(upload_id)
    try:
        outcome = await get_upload_coordinator().retry_publish(upload_id)
    except UploadError as e:
        logger.error("Publish retry failed", extra={"error": str(e), "kind": e.kind})
        raise _to_http_exception(e)
    return _chunk_response(outcome)


@router.delete("/uploads/{upload_id}", status_code=200)
async def abandon_upload(upload_id: str) -> dict:
    """Discard an upload's staged chunks and any retained artifact."""
    upload_id_context.set(upload_id)
    try:
        known = await get_upload_coordinator().abandon(upload_id)
    except UploadError as e:
        raise _to_http_exception(e)
    return {"status": "abandoned", "upload_id": upload_id, "known": known}


@router.post("/upload", response_model=DirectUploadResponse, status_code=201)
async def upload_file(
    file: UploadFile = File(...),
    file_name: Optional[str] = Form(None, alias="fileName"),
) -> DirectUploadResponse:
    """Forward a whole file to the blob store without chunking."""
    name = (file_name or file.filename or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail={"error": "validation", "message": "fileName is required"})
    content_type = file.content_type or settings.DEFAULT_CONTENT_TYPE

    try:
        result = await upload_direct(
            get_upload_coordinator().publisher,
            file.file,
            name,
            content_type,
            settings.ASSEMBLY_DIR,
        )
    except UploadError as e:
        logger.error("Direct upload failed", extra={"error": str(e), "kind": e.kind})
        raise _to_http_exception(e)

    return DirectUploadResponse(
        destination_key=result.destination_key,
        bucket=result.bucket or "default",
        location=result.location,
        content_type=result.content_type,
        size_bytes=result.size_bytes,
    )
