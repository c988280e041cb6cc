"""Domain exceptions for ezbackup.

Registry contract violations and configuration errors are raised to the
caller. Everything that goes wrong while a backup executes is caught inside
the run and turned into a job status plus a log entry.
"""

from __future__ import annotations


class EzBackupError(RuntimeError):
    """Base exception for all ezbackup failures."""


class RegistryError(EzBackupError):
    """Raised when a job registry operation violates its contract."""


class JobNotFoundError(RegistryError):
    """Raised when no job is registered under the requested name."""

    def __init__(self, name: str):
        super().__init__(f"No backup job named '{name}'")
        self.name = name


class DuplicateJobNameError(RegistryError):
    """Raised when registering a name that is already taken."""

    def __init__(self, name: str):
        super().__init__(f"A backup job named '{name}' already exists")
        self.name = name


class JobAlreadyRunningError(RegistryError):
    """Raised when starting a job whose status is already running."""

    def __init__(self, name: str):
        super().__init__(f"Backup job '{name}' is already running")
        self.name = name


class SourceMissingError(EzBackupError):
    """Raised when the source directory of a backup does not exist."""

    def __init__(self, path: str):
        super().__init__(f"Source directory does not exist: {path}")
        self.path = path


class BackupIOError(EzBackupError):
    """Raised inside a run when a copy, create or delete operation fails."""


class BackupCancelledError(EzBackupError):
    """Raised inside a run when a cancellation request has been honoured."""


class ConfigError(EzBackupError):
    """Raised when the configuration file is missing keys or has invalid values."""
