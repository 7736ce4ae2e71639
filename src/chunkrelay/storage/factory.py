"""Blob store selection."""

from chunkrelay.core.config import settings
from chunkrelay.storage.base import BlobStore
from chunkrelay.storage.gcs import gcs_blob_store
from chunkrelay.storage.local import LocalBlobStore

local_blob_store = LocalBlobStore(base_path=settings.LOCAL_BLOB_PATH)


def get_blob_store() -> BlobStore:
    """Return the blob store configured by STORAGE_BACKEND.

    Raises:
        ValueError: If the backend name is unknown
    """
    backend = settings.STORAGE_BACKEND.lower()
    if backend == "gcs":
        return gcs_blob_store
    if backend == "local":
        return local_blob_store
    raise ValueError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND}")
