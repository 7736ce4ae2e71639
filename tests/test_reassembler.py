"""Tests for chunk reassembly."""

import hashlib

import pytest

from chunkrelay.core.exceptions import MissingChunkError


@pytest.mark.asyncio
async def test_assemble_in_sequence_order(chunk_store, reassembler):
    """Test that chunks are concatenated by sequence number, not staging order."""
    chunk_store.put("upload-1", 3, b"C")
    chunk_store.put("upload-1", 1, b"A")
    chunk_store.put("upload-1", 2, b"B")

    artifact = await reassembler.assemble("upload-1", 3, "letters.txt", "text/plain")

    assert artifact.path.read_bytes() == b"ABC"
    assert artifact.size_bytes == 3
    assert artifact.sha256 == hashlib.sha256(b"ABC").hexdigest()
    assert artifact.chunk_count == 3
    assert artifact.path.name == "letters.txt"


@pytest.mark.asyncio
async def test_assemble_consumes_chunks(chunk_store, reassembler):
    """Test that staged chunks are deleted after a successful reassembly."""
    chunk_store.put("upload-1", 1, b"x" * 4096)
    chunk_store.put("upload-1", 2, b"y" * 10)

    await reassembler.assemble("upload-1", 2, "data.bin", "application/octet-stream")

    assert chunk_store.list_staged("upload-1") == set()


@pytest.mark.asyncio
async def test_assemble_leaves_extra_chunks(chunk_store, reassembler):
    """Test that chunks beyond the expected count are not folded in."""
    chunk_store.put("upload-1", 1, b"A")
    chunk_store.put("upload-1", 2, b"B")
    chunk_store.put("upload-1", 3, b"extra")

    artifact = await reassembler.assemble("upload-1", 2, "ab.txt", "text/plain")

    assert artifact.path.read_bytes() == b"AB"
    assert chunk_store.list_staged("upload-1") == {3}


@pytest.mark.asyncio
async def test_missing_chunk_keeps_staged_chunks(chunk_store, reassembler):
    """Test that a gap fails reassembly without losing any staged chunk."""
    for n in (1, 2, 4, 5):
        chunk_store.put("upload-1", n, bytes([n]))

    with pytest.raises(MissingChunkError) as exc_info:
        await reassembler.assemble("upload-1", 5, "gap.bin", "application/octet-stream")

    assert exc_info.value.sequence_number == 3
    assert chunk_store.list_staged("upload-1") == {1, 2, 4, 5}
    upload_dir = reassembler.assembly_dir / "upload-1"
    assert list(upload_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_artifact_name_is_sanitized(chunk_store, reassembler):
    chunk_store.put("upload-1", 1, b"x")

    artifact = await reassembler.assemble("upload-1", 1, "../../etc/passwd", "text/plain")

    assert artifact.path.parent == reassembler.assembly_dir / "upload-1"
    assert "/" not in artifact.path.name


@pytest.mark.asyncio
async def test_discard(chunk_store, reassembler):
    """Test that discarding removes the artifact and its directory."""
    chunk_store.put("upload-1", 1, b"x")
    artifact = await reassembler.assemble("upload-1", 1, "x.bin", "application/octet-stream")

    reassembler.discard(artifact)

    assert not artifact.path.exists()
    assert not artifact.path.parent.exists()
