"""Health check endpoint for Chunk Relay."""

from fastapi import APIRouter

from chunkrelay.core.config import settings

router = APIRouter()


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint.

    Returns:
        dict: Health status response with status, service, version and storage backend
    """
    return {
        "status": "ok",
        "service": settings.SERVICE_NAME,
        "version": settings.SERVICE_VERSION,
        "storage_backend": settings.STORAGE_BACKEND,
    }
