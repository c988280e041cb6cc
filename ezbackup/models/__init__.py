"""Job models for ezbackup."""

from .backup_jobs import BackupJob, JobRegistry, JobStatus

__all__ = ["BackupJob", "JobRegistry", "JobStatus"]
