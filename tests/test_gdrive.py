"""Tests for the Google Drive uploader (needs the ``drive`` extra)."""

from unittest.mock import MagicMock

import pytest

pytest.importorskip("googleapiclient")

from media_transcoder.jobs import UploadError  # noqa: E402
from media_transcoder.storage.gdrive import GoogleDriveUploader  # noqa: E402


def _uploader(service):
    return GoogleDriveUploader("unused.json", "folder-1", service=service)


def test_upload_returns_id_and_link(tmp_path):
    video = tmp_path / "out.mp4"
    video.write_bytes(b"mp4")
    service = MagicMock()
    service.files.return_value.create.return_value.execute.return_value = {
        "id": "file-1",
        "webViewLink": "https://drive.google.com/file/d/file-1/view",
    }

    remote_id, url = _uploader(service).upload(str(video), "holiday.mp4")

    assert remote_id == "file-1"
    assert url == "https://drive.google.com/file/d/file-1/view"
    create_kwargs = service.files.return_value.create.call_args.kwargs
    assert create_kwargs["body"] == {"name": "holiday.mp4", "parents": ["folder-1"]}
    service.permissions.return_value.create.assert_called_once()


def test_link_fetched_when_missing(tmp_path):
    video = tmp_path / "out.mp4"
    video.write_bytes(b"mp4")
    service = MagicMock()
    service.files.return_value.create.return_value.execute.return_value = {"id": "file-2"}
    service.files.return_value.get.return_value.execute.return_value = {
        "id": "file-2",
        "webViewLink": "https://drive.google.com/file/d/file-2/view",
    }

    _, url = _uploader(service).upload(str(video), "clip.mp4")
    assert url.endswith("file-2/view")


def test_missing_file_raises_upload_error(tmp_path):
    with pytest.raises(UploadError):
        _uploader(MagicMock()).upload(str(tmp_path / "missing.mp4"), "x.mp4")


def test_credential_refresh_failure_raises_upload_error(tmp_path):
    from google.auth.exceptions import RefreshError

    video = tmp_path / "out.mp4"
    video.write_bytes(b"mp4")
    service = MagicMock()
    service.files.return_value.create.return_value.execute.side_effect = RefreshError(
        "invalid_grant"
    )

    with pytest.raises(UploadError) as exc_info:
        _uploader(service).upload(str(video), "holiday.mp4")
    assert "invalid_grant" in str(exc_info.value)
