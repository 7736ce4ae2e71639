"""Tests for the chunk staging store."""

from datetime import timezone
from unittest.mock import patch

import pytest

from chunkrelay.core.exceptions import ChunkNotFoundError, ChunkStorageError, ValidationError


def test_put_and_read(chunk_store):
    """Test staging a chunk and reading it back."""
    record = chunk_store.put("upload-1", 1, b"hello")

    assert chunk_store.read("upload-1", 1) == b"hello"
    assert record.size_bytes == 5
    assert record.sequence_number == 1
    assert record.arrived_at.tzinfo == timezone.utc


def test_put_overwrites_same_sequence_number(chunk_store):
    """Test that a second payload for the same slot replaces the first."""
    chunk_store.put("upload-1", 2, b"first")
    chunk_store.put("upload-1", 2, b"second")

    assert chunk_store.read("upload-1", 2) == b"second"
    assert chunk_store.list_staged("upload-1") == {2}


def test_list_staged_per_upload(chunk_store):
    """Test that staged sets are kept per upload id."""
    chunk_store.put("upload-a", 1, b"a1")
    chunk_store.put("upload-a", 3, b"a3")
    chunk_store.put("upload-b", 1, b"b1")

    assert chunk_store.list_staged("upload-a") == {1, 3}
    assert chunk_store.list_staged("upload-b") == {1}
    assert chunk_store.list_staged("upload-c") == set()


def test_list_staged_ignores_incomplete_writes(chunk_store):
    """Test that temporary files from interrupted writes are not counted."""
    chunk_store.put("upload-1", 1, b"x")
    upload_dir = chunk_store.base_path / "upload-1"
    (upload_dir / ".incoming-abc.part").write_bytes(b"partial")
    (upload_dir / "notes.txt").write_bytes(b"junk")

    assert chunk_store.list_staged("upload-1") == {1}


def test_list_records_sorted(chunk_store):
    """Test that chunk records come back in sequence order."""
    chunk_store.put("upload-1", 3, b"ccc")
    chunk_store.put("upload-1", 1, b"a")

    records = chunk_store.list_records("upload-1")
    assert [r.sequence_number for r in records] == [1, 3]
    assert [r.size_bytes for r in records] == [1, 3]


def test_read_missing_chunk(chunk_store):
    """Test reading a chunk that was never staged."""
    with pytest.raises(ChunkNotFoundError) as exc_info:
        chunk_store.read("upload-1", 7)

    assert exc_info.value.sequence_number == 7


def test_remove_is_idempotent(chunk_store):
    """Test that removing an absent chunk is not an error."""
    chunk_store.put("upload-1", 1, b"x")

    chunk_store.remove("upload-1", 1)
    chunk_store.remove("upload-1", 1)

    assert chunk_store.list_staged("upload-1") == set()


def test_remove_upload_dir(chunk_store):
    """Test that an emptied staging directory is removed."""
    chunk_store.put("upload-1", 1, b"x")
    chunk_store.remove("upload-1", 1)

    chunk_store.remove_upload_dir("upload-1")

    assert not (chunk_store.base_path / "upload-1").exists()


@pytest.mark.parametrize("upload_id", ["../escape", "a/b", ".hidden", "", "x" * 129])
def test_rejects_unsafe_upload_ids(chunk_store, upload_id):
    """Test that upload ids unsafe as path components are rejected."""
    with pytest.raises(ValidationError):
        chunk_store.put(upload_id, 1, b"x")


def test_put_failure_surfaces_as_storage_error(chunk_store):
    """Test that a failing write is retried and then reported."""
    with patch("chunkrelay.storage.chunk_store.os.replace", side_effect=OSError("disk full")) as mock_replace:
        with pytest.raises(ChunkStorageError, match="disk full"):
            chunk_store.put("upload-1", 1, b"x")

    assert mock_replace.call_count == 3
    assert chunk_store.list_staged("upload-1") == set()
