"""Differential backup logic for ezbackup."""

import os
from datetime import datetime

from ezbackup.errors import BackupIOError
from .common import BackupStrategy, read_marker


class DifferentialBackupStrategy(BackupStrategy):
    """
    Copy only the files modified after the last full backup.

    The marker is never updated here: every differential run compares
    against the last *full* run, however many differential runs happened
    since.
    """

    name = "differential"

    def get_changed_files(self, source, since):
        """Return the files under ``source`` modified strictly after ``since``."""
        changed = []
        for file_path in self.fs.list_files(source):
            try:
                mtime = datetime.fromtimestamp(os.path.getmtime(file_path))
            except OSError as e:
                self.logger.warning(f"Could not access file {file_path}: {e}")
                continue
            if mtime > since:
                changed.append(file_path)
        return changed

    def _run(self, source, destination, progress, cancel_token, transfer_callback, status_callback):
        last_full = read_marker(destination, self.logger)
        if last_full == datetime.min:
            self.logger.warning(f"No full backup marker under {destination}, copying every file.")

        files = self.get_changed_files(source, last_full)
        self.logger.info(f"Found {len(files)} new or modified files to back up from {source}")

        if not self.fs.create_directory(destination):
            raise BackupIOError(f"could not create destination {destination}")

        self._mirror_files(files, source, destination, progress, cancel_token, transfer_callback, status_callback)
        self.logger.debug(f"DIFFERENTIAL backup completed for {source}")
