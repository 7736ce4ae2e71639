"""Tests for blob store backends."""

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock, patch

import pytest
from google.api_core.exceptions import Forbidden, GoogleAPIError

from chunkrelay.core.exceptions import PublishError
from chunkrelay.storage.base import sanitize_filename
from chunkrelay.storage.gcs import GCSBlobStore
from chunkrelay.storage.local import LocalBlobStore


def test_sanitize_filename():
    """Test filename sanitization."""
    assert "../" not in sanitize_filename("../etc/passwd")
    assert "..\\" not in sanitize_filename("..\\windows\\system32")
    assert "/" not in sanitize_filename("path/to/file.txt")
    assert "\\" not in sanitize_filename("path\\to\\file.txt")

    result = sanitize_filename("file@#$.txt")
    assert "@" not in result
    assert "#" not in result
    assert "$" not in result

    assert sanitize_filename("valid-file_name.123.txt") == "valid-file_name.123.txt"
    assert sanitize_filename("") == "unnamed"
    assert not sanitize_filename(".bashrc").startswith(".")


class TestLocalBlobStore:
    """Tests for the local blob store."""

    def test_put(self, tmp_path):
        source = tmp_path / "artifact.bin"
        source.write_bytes(b"name,age\nJohn,30")
        store = LocalBlobStore(base_path=tmp_path / "blobs")

        location = store.put("uploads/report.csv", source, "text/csv")

        assert (tmp_path / "blobs" / "default" / "uploads" / "report.csv").read_bytes() == b"name,age\nJohn,30"
        assert location.endswith("report.csv")

    def test_put_into_bucket(self, tmp_path):
        source = tmp_path / "artifact.bin"
        source.write_bytes(b"x")
        store = LocalBlobStore(base_path=tmp_path / "blobs")

        store.put("uploads/a.png", source, "image/png", bucket="images")

        assert (tmp_path / "blobs" / "images" / "uploads" / "a.png").exists()

    def test_put_rejects_escaping_key(self, tmp_path):
        source = tmp_path / "artifact.bin"
        source.write_bytes(b"x")
        store = LocalBlobStore(base_path=tmp_path / "blobs")

        with pytest.raises(PublishError):
            store.put("../../outside.txt", source, "text/plain")

    def test_put_missing_source(self, tmp_path):
        store = LocalBlobStore(base_path=tmp_path / "blobs")

        with pytest.raises(PublishError):
            store.put("uploads/a.txt", tmp_path / "nope.bin", "text/plain")

        assert list((tmp_path / "blobs" / "default" / "uploads").iterdir()) == []

    def test_concurrent_puts_same_key(self, tmp_path):
        """Test that writers racing on one key never interleave their bytes."""
        payloads = [bytes([i]) * 512 * 1024 for i in range(8)]
        sources = []
        for i, payload in enumerate(payloads):
            source = tmp_path / f"artifact-{i}.bin"
            source.write_bytes(payload)
            sources.append(source)
        store = LocalBlobStore(base_path=tmp_path / "blobs")

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda s: store.put("uploads/same.bin", s, "application/octet-stream"), sources))

        target_dir = tmp_path / "blobs" / "default" / "uploads"
        assert (target_dir / "same.bin").read_bytes() in payloads
        assert [p.name for p in target_dir.iterdir()] == ["same.bin"]

    def test_get_backend_name(self):
        assert LocalBlobStore().get_backend_name() == "local"


class TestGCSBlobStore:
    """Tests for the GCS blob store."""

    @pytest.fixture
    def gcs_mocks(self):
        with patch("chunkrelay.storage.gcs.storage.Client") as mock_client_class:
            with patch("chunkrelay.storage.gcs.settings") as mock_settings:
                mock_settings.GCS_BUCKET_NAME = "test-bucket"
                mock_settings.GCP_PROJECT_ID = "test-project"

                mock_client = MagicMock()
                mock_bucket = MagicMock()
                mock_bucket.name = "test-bucket"
                mock_blob = MagicMock()

                mock_client_class.return_value = mock_client
                mock_client.bucket.return_value = mock_bucket
                mock_bucket.blob.return_value = mock_blob

                yield mock_client, mock_bucket, mock_blob

    def test_put(self, gcs_mocks, tmp_path):
        """Test file upload to GCS."""
        _, mock_bucket, mock_blob = gcs_mocks
        source = tmp_path / "artifact.bin"
        source.write_bytes(b"data")

        uri = GCSBlobStore().put("uploads/report.csv", source, "text/csv")

        mock_bucket.blob.assert_called_once_with("uploads/report.csv")
        mock_blob.upload_from_filename.assert_called_once_with(str(source), content_type="text/csv", retry=None)
        assert uri == "gs://test-bucket/uploads/report.csv"

    def test_put_to_other_bucket(self, gcs_mocks, tmp_path):
        mock_client, _, _ = gcs_mocks
        source = tmp_path / "artifact.bin"
        source.write_bytes(b"data")

        GCSBlobStore().put("uploads/a.png", source, "image/png", bucket="image-bucket")

        mock_client.bucket.assert_called_once_with("image-bucket")

    def test_put_forbidden(self, gcs_mocks, tmp_path):
        _, _, mock_blob = gcs_mocks
        mock_blob.upload_from_filename.side_effect = Forbidden("no access")

        with pytest.raises(PublishError, match="Access denied"):
            GCSBlobStore().put("uploads/a", tmp_path / "a", "text/plain")

    def test_put_api_error(self, gcs_mocks, tmp_path):
        _, _, mock_blob = gcs_mocks
        mock_blob.upload_from_filename.side_effect = GoogleAPIError("quota exceeded")

        with pytest.raises(PublishError, match="quota exceeded"):
            GCSBlobStore().put("uploads/a", tmp_path / "a", "text/plain")

    def test_get_bucket_missing_config(self):
        """Test bucket initialization with missing config."""
        with patch("chunkrelay.storage.gcs.settings") as mock_settings:
            mock_settings.GCS_BUCKET_NAME = ""

            with pytest.raises(ValueError, match="GCS_BUCKET_NAME not configured"):
                GCSBlobStore()._get_bucket()

    def test_get_backend_name(self):
        assert GCSBlobStore().get_backend_name() == "gcs"


def test_factory_selects_backend(monkeypatch):
    from chunkrelay.core.config import settings
    from chunkrelay.storage.factory import get_blob_store

    monkeypatch.setattr(settings, "STORAGE_BACKEND", "gcs")
    assert get_blob_store().get_backend_name() == "gcs"

    monkeypatch.setattr(settings, "STORAGE_BACKEND", "local")
    assert get_blob_store().get_backend_name() == "local"

    monkeypatch.setattr(settings, "STORAGE_BACKEND", "s3")
    with pytest.raises(ValueError):
        get_blob_store()
