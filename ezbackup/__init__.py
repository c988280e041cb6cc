"""ezbackup: local full/differential backup jobs with cooperative cancellation."""

from ezbackup.settings import VERSION
from ezbackup.core.backup import DifferentialBackupStrategy, FullBackupStrategy, create_strategy
from ezbackup.core.cancel import CancelToken
from ezbackup.core.fs import FileSystemAdapter
from ezbackup.models.backup_jobs import BackupJob, JobRegistry, JobStatus
from ezbackup.services.process_gate import ProcessGate

__version__ = VERSION.lstrip("v")

__all__ = [
    "BackupJob",
    "CancelToken",
    "DifferentialBackupStrategy",
    "FileSystemAdapter",
    "FullBackupStrategy",
    "JobRegistry",
    "JobStatus",
    "ProcessGate",
    "create_strategy",
]
