"""Backup strategy dispatcher for ezbackup."""

from .common import BackupStrategy, CopyStatus, LARGE_FILE_SEMAPHORE, read_marker, write_marker, marker_path
from .full import FullBackupStrategy
from .diff import DifferentialBackupStrategy

BACKUP_TYPES = ("full", "differential")

def normalize_backup_type(backup_type):
    """Map the accepted spellings of a backup type to its canonical name."""
    value = (backup_type or "").strip().lower()
    if value in ("diff", "differential"):
        return "differential"
    if value == "full":
        return "full"
    raise ValueError(f"Unsupported backup type: {backup_type}")

def create_strategy(backup_type, **kwargs):
    """Return a new strategy instance for the given backup type."""
    backup_type = normalize_backup_type(backup_type)
    if backup_type == "full":
        return FullBackupStrategy(**kwargs)
    return DifferentialBackupStrategy(**kwargs)

__all__ = [
    "BACKUP_TYPES",
    "BackupStrategy",
    "CopyStatus",
    "LARGE_FILE_SEMAPHORE",
    "DifferentialBackupStrategy",
    "FullBackupStrategy",
    "create_strategy",
    "marker_path",
    "normalize_backup_type",
    "read_marker",
    "write_marker",
]
