"""Pytest configuration and shared fixtures."""

import threading
import time
from pathlib import Path
from typing import Optional

import pytest

from chunkrelay.services.assembly.cleanup import Cleanup
from chunkrelay.services.assembly.coordinator import ChunkSubmission, UploadCoordinator
from chunkrelay.services.assembly.publisher import Publisher
from chunkrelay.services.assembly.reassembler import Reassembler
from chunkrelay.storage.base import BlobStore
from chunkrelay.storage.chunk_store import ChunkStore
from chunkrelay.storage.upload_ledger import UploadLedger


class RecordingBlobStore(BlobStore):
    """Blob store double that keeps published objects in memory."""

    def __init__(self):
        self.objects = {}
        self.calls = 0
        self.fail_with: Optional[Exception] = None
        self.delay = 0.0
        self.entered = threading.Event()

    def put(self, destination_key, source_path, content_type, bucket=None):
        self.calls += 1
        self.entered.set()
        if self.delay:
            time.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        bucket = bucket or "default"
        self.objects[(bucket, destination_key)] = {
            "data": Path(source_path).read_bytes(),
            "content_type": content_type,
        }
        return f"memory://{bucket}/{destination_key}"

    def get_backend_name(self):
        return "memory"


@pytest.fixture
def chunk_store(tmp_path):
    """Chunk store rooted in a temporary directory."""
    return ChunkStore(tmp_path / "chunks")


@pytest.fixture
def blob_store():
    return RecordingBlobStore()


@pytest.fixture
def reassembler(tmp_path, chunk_store):
    return Reassembler(chunk_store, tmp_path / "assembled")


@pytest.fixture
def coordinator(chunk_store, reassembler, blob_store):
    """Coordinator wired to temporary staging and an in-memory blob store."""
    return UploadCoordinator(
        chunk_store=chunk_store,
        ledger=UploadLedger(),
        reassembler=reassembler,
        publisher=Publisher(blob_store, timeout_seconds=5),
        cleanup=Cleanup(chunk_store, reassembler),
    )


@pytest.fixture
def make_chunk():
    """Build a chunk submission with sensible defaults."""

    def _make(upload_id, sequence_number, data, expected=3, file_name="letters.txt", content_type="text/plain"):
        return ChunkSubmission(
            upload_id=upload_id,
            sequence_number=sequence_number,
            expected_chunk_count=expected,
            file_name=file_name,
            data=data,
            content_type=content_type,
        )

    return _make
