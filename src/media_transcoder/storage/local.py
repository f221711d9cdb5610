"""Local upload/output file storage under a single base directory."""

import logging
import os
import shutil
from pathlib import Path
from typing import BinaryIO

from ..jobs.backends import ArtifactStorage

logger = logging.getLogger(__name__)


class LocalStorage(ArtifactStorage):
    """Keeps uploads in ``<base>/uploads`` and outputs in ``<base>/outputs``."""

    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir)
        self.uploads_dir = self.base_dir / "uploads"
        self.outputs_dir = self.base_dir / "outputs"

        for directory in (self.uploads_dir, self.outputs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def save_upload(self, job_id: str, filename: str, source: BinaryIO) -> str:
        """Copy an uploaded stream to ``uploads/<job_id><ext>`` and return the path."""
        ext = os.path.splitext(filename or "")[1]
        save_path = self.uploads_dir / f"{job_id}{ext}"

        try:
            with open(save_path, "wb") as buffer:
                shutil.copyfileobj(source, buffer)
        except OSError:
            save_path.unlink(missing_ok=True)
            raise

        return str(save_path)

    def output_path(self, job_id: str) -> str:
        return str(self.outputs_dir / f"{job_id}.mp4")

    def delete_file(self, path: str) -> None:
        if not path:
            return
        Path(path).unlink(missing_ok=True)

    def release(self, *paths: str) -> None:
        """Remove job files, logging (never raising) on failure."""
        for path in paths:
            try:
                self.delete_file(path)
            except OSError as e:
                logger.warning("Failed to remove %s: %s", path, e)

    def file_exists(self, path: str) -> bool:
        return Path(path).is_file()
