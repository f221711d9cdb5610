"""Google Drive upload of finished outputs (optional ``drive`` extra)."""

import logging
from typing import Tuple

from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaFileUpload

from ..jobs.backends import RemoteUploader
from ..jobs.errors import UploadError

logger = logging.getLogger(__name__)

DRIVE_FILE_SCOPE = "https://www.googleapis.com/auth/drive.file"

# API errors, credential refresh/transport errors, local file and socket errors
DRIVE_ERRORS = (HttpError, GoogleAuthError, OSError)


class GoogleDriveUploader(RemoteUploader):
    """Uploads into one Drive folder with a service account.

    Uploaded files are shared with "anyone with the link" so the returned
    webViewLink can be handed to the webhook listener.
    """

    def __init__(self, credentials_file: str, folder_id: str, service=None):
        """Build the Drive client.

        Args:
            credentials_file: Service account JSON key
            folder_id: Destination folder
            service: Prebuilt Drive v3 service (tests)

        Raises:
            OSError / ValueError: Unreadable or malformed credentials
        """
        self.folder_id = folder_id
        if service is None:
            credentials = service_account.Credentials.from_service_account_file(
                credentials_file, scopes=[DRIVE_FILE_SCOPE]
            )
            service = build("drive", "v3", credentials=credentials, cache_discovery=False)
        self.service = service
        logger.info("Google Drive client initialized for folder %s", folder_id)

    def upload(self, local_path: str, display_name: str) -> Tuple[str, str]:
        metadata = {"name": display_name, "parents": [self.folder_id]}
        try:
            media = MediaFileUpload(local_path, mimetype="video/mp4", resumable=True)
            created = (
                self.service.files()
                .create(body=metadata, media_body=media, fields="id, webViewLink")
                .execute()
            )
        except DRIVE_ERRORS as e:
            raise UploadError(f"failed to upload file: {e}") from e

        file_id = created["id"]

        try:
            self.service.permissions().create(
                fileId=file_id, body={"type": "anyone", "role": "reader"}
            ).execute()
        except DRIVE_ERRORS as e:
            logger.warning("Failed to set file permissions on %s: %s", file_id, e)

        web_view_link = created.get("webViewLink")
        if not web_view_link:
            try:
                fetched = self.service.files().get(fileId=file_id, fields="id, webViewLink").execute()
            except DRIVE_ERRORS as e:
                raise UploadError(f"failed to get file info: {e}") from e
            web_view_link = fetched.get("webViewLink", "")

        logger.info("File uploaded to Drive: %s (ID: %s)", display_name, file_id)
        return file_id, web_view_link
