"""Filesystem adapter used by the backup strategies.

Every operation logs and returns a failure indicator instead of raising. The
one exception is a missing source directory, which raises
:class:`SourceMissingError` so callers can stop before touching the
destination.
"""

from __future__ import annotations

import os
import shutil
from datetime import datetime
from typing import Callable, List, Optional

from ezbackup.errors import SourceMissingError
from ezbackup.settings import COPY_CHUNK_SIZE
from ezbackup.utils.logger import setup_logger
from .cancel import CancelTokenProtocol, is_cancelled

ProgressCallback = Callable[[int], None]


class FileSystemAdapter:
    """Thin, swappable layer over the local filesystem."""

    def __init__(self, chunk_size: int = COPY_CHUNK_SIZE, logger=None):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.chunk_size = chunk_size
        self.logger = logger or setup_logger("filesystem")

    def copy_file(
        self,
        source: str,
        destination: str,
        progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancelTokenProtocol] = None,
    ) -> bool:
        """
        Copy one file in chunks, overwriting the destination.

        The data goes to ``<destination>.part`` first and is moved into place
        only once complete, so a cancelled or failed copy leaves any previous
        version of the destination untouched.

        Args:
            source: File to copy
            destination: Target file path
            progress: Called with the cumulative percentage after each chunk
            cancel_token: Checked before every chunk

        Returns:
            True if the file was copied, False on error or cancellation
        """
        if is_cancelled(cancel_token):
            return False

        if not self.create_directory(os.path.dirname(destination)):
            return False

        tmp = destination + ".part"
        completed = False
        try:
            total_bytes = os.path.getsize(source)
            copied = 0
            with open(source, "rb") as fsrc, open(tmp, "wb") as fdst:
                while True:
                    if is_cancelled(cancel_token):
                        self.logger.info(f"Copy of {source} cancelled after {copied} bytes")
                        return False
                    chunk = fsrc.read(self.chunk_size)
                    if not chunk:
                        break
                    fdst.write(chunk)
                    copied += len(chunk)
                    if progress and total_bytes:
                        progress(int(copied * 100 / total_bytes))

            os.replace(tmp, destination)
            completed = True
            try:
                shutil.copystat(source, destination)
            except OSError as e:
                self.logger.debug(f"copystat failed for {destination}: {e}")

            if progress and not total_bytes:
                progress(100)
            return True
        except OSError as e:
            self.logger.error(f"Error copying {source} to {destination}: {e}")
            return False
        finally:
            if not completed and os.path.exists(tmp):
                try:
                    os.remove(tmp)
                except OSError as e:
                    self.logger.warning(f"Could not remove partial file {tmp}: {e}")

    def copy_directory(
        self,
        source: str,
        destination: str,
        progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancelTokenProtocol] = None,
    ) -> bool:
        """Recursively copy a directory, reporting progress per file."""
        files = self.list_files(source)
        if not self.create_directory(destination):
            return False

        total_files = len(files)
        for index, file_path in enumerate(files, start=1):
            if is_cancelled(cancel_token):
                return False
            rel_path = os.path.relpath(file_path, source)
            if not self.copy_file(file_path, os.path.join(destination, rel_path), cancel_token=cancel_token):
                return False
            if progress:
                progress(int(index * 100 / total_files))

        if progress and total_files == 0:
            progress(100)
        return True

    def list_files(self, root: str) -> List[str]:
        """Return every file under ``root``, recursively, in sorted order."""
        if not os.path.isdir(root):
            raise SourceMissingError(root)

        file_list = []
        for current, dirs, files in os.walk(root):
            dirs.sort()
            for name in sorted(files):
                file_list.append(os.path.join(current, name))
        return file_list

    def file_exists(self, path: str) -> bool:
        return os.path.isfile(path)

    def directory_exists(self, path: str) -> bool:
        return os.path.isdir(path)

    def create_directory(self, path: str) -> bool:
        """Create ``path`` and any missing parents."""
        if not path or os.path.isdir(path):
            return True
        try:
            os.makedirs(path, exist_ok=True)
            return True
        except OSError as e:
            self.logger.error(f"Error creating directory {path}: {e}")
            return False

    def delete_file(self, path: str) -> bool:
        try:
            if os.path.isfile(path):
                os.remove(path)
            return True
        except OSError as e:
            self.logger.error(f"Error deleting file {path}: {e}")
            return False

    def delete_directory(self, path: str) -> bool:
        try:
            if os.path.isdir(path):
                shutil.rmtree(path)
            return True
        except OSError as e:
            self.logger.error(f"Error deleting directory {path}: {e}")
            return False

    def get_last_write_time(self, path: str) -> Optional[datetime]:
        """Return the last modification time of ``path``, or None if it cannot be read."""
        try:
            return datetime.fromtimestamp(os.path.getmtime(path))
        except OSError as e:
            self.logger.warning(f"Could not read modification time of {path}: {e}")
            return None
