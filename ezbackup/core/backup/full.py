"""Full backup logic for ezbackup."""

from ezbackup.errors import BackupIOError
from .common import BackupStrategy, write_marker


class FullBackupStrategy(BackupStrategy):
    """Copy every file of the source tree and record the full backup marker."""

    name = "full"

    def _run(self, source, destination, progress, cancel_token, transfer_callback, status_callback):
        # list_files raises SourceMissingError before anything is created
        files = self.fs.list_files(source)
        self.logger.info(f"Starting FULL backup of {len(files)} files from {source} to {destination}")

        if not self.fs.create_directory(destination):
            raise BackupIOError(f"could not create destination {destination}")

        self._mirror_files(files, source, destination, progress, cancel_token, transfer_callback, status_callback)

        try:
            when = write_marker(destination)
        except OSError as e:
            raise BackupIOError(f"could not write backup marker under {destination}: {e}") from e
        self.logger.debug(f"FULL backup completed for {source}, marker set to {when.isoformat()}")
