"""Tests for the production entrypoint's preflight checks."""
import pytest

from scripts.start import check_storage, worker_timeout


def test_worker_timeout_covers_both_uploads_and_the_insert():
    assert worker_timeout({"STORAGE_TIMEOUT_SECONDS": 30.0, "DB_TIMEOUT_SECONDS": 15.0}) == 90
    assert worker_timeout({"STORAGE_TIMEOUT_SECONDS": 5, "DB_TIMEOUT_SECONDS": 2}) == 27
    assert worker_timeout({}) == 90


def test_s3_backend_requires_credentials():
    with pytest.raises(SystemExit) as exc:
        check_storage({"STORAGE_BACKEND": "s3", "S3_ENDPOINT": "https://nyc3.example.com", "S3_BUCKET": "photos"})
    assert "S3_ACCESS_KEY_ID" in str(exc.value)
    assert "S3_SECRET_ACCESS_KEY" in str(exc.value)

    check_storage(
        {
            "STORAGE_BACKEND": "s3",
            "S3_ENDPOINT": "https://nyc3.example.com",
            "S3_BUCKET": "photos",
            "S3_ACCESS_KEY_ID": "id",
            "S3_SECRET_ACCESS_KEY": "secret",
        }
    )


def test_local_backend_creates_its_root(tmp_path):
    root = tmp_path / "blobs"
    check_storage({"STORAGE_BACKEND": "local", "LOCAL_STORAGE_ROOT": str(root)})
    assert root.is_dir()
