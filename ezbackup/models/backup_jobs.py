"""In-memory registry of named backup jobs and their run state."""

import threading
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

from ezbackup.core.cancel import CancelToken
from ezbackup.errors import DuplicateJobNameError, JobAlreadyRunningError, JobNotFoundError
from ezbackup.utils.logger import setup_logger


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


@dataclass
class BackupJob:
    """A named binding of source, destination and strategy plus its run state."""
    name: str
    source_path: str
    destination_path: str
    strategy: object
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    last_backup_timestamp: Optional[datetime] = None
    # counters of the current (or last) run, fed by the strategy's status callback
    total_files: int = 0
    total_size: int = 0
    files_remaining: int = 0
    bytes_remaining: int = 0
    current_source_file: str = ""
    current_target_file: str = ""

    def copy(self) -> "BackupJob":
        # the strategy is shared on purpose; every other field is a value
        return replace(self)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "source_path": self.source_path,
            "destination_path": self.destination_path,
            "strategy": getattr(self.strategy, "name", type(self.strategy).__name__),
            "status": self.status.value,
            "progress": self.progress,
            "last_backup_timestamp": (
                self.last_backup_timestamp.isoformat() if self.last_backup_timestamp else None
            ),
            "total_files": self.total_files,
            "total_size": self.total_size,
            "files_remaining": self.files_remaining,
            "bytes_remaining": self.bytes_remaining,
            "current_source_file": self.current_source_file,
            "current_target_file": self.current_target_file,
        }

    def reset_counters(self) -> None:
        self.total_files = self.total_size = 0
        self.files_remaining = self.bytes_remaining = 0
        self.current_source_file = self.current_target_file = ""


class JobRegistry:
    """
    Concurrency-safe table of backup jobs.

    A single lock guards the table and every field update. Only dictionary
    operations happen under it; strategies run outside the lock, and so do
    the log sink and state file notifications. State file writes take a
    second lock around snapshot and write, always acquired before the table
    lock.
    """

    def __init__(self, log_sink=None, state_writer=None, logger=None):
        self._jobs: Dict[str, BackupJob] = {}
        self._tokens: Dict[str, CancelToken] = {}
        self._lock = threading.Lock()
        # serializes snapshot + write so the state file always ends on the latest snapshot
        self._state_lock = threading.Lock()
        self.log_sink = log_sink
        self.state_writer = state_writer
        self.logger = logger or setup_logger("registry")

    # --- structure ---

    def register(self, name: str, source: str, destination: str, strategy) -> BackupJob:
        """Add a job in PENDING state. Raises DuplicateJobNameError if the name is taken."""
        with self._lock:
            if name in self._jobs:
                raise DuplicateJobNameError(name)
            job = BackupJob(name=name, source_path=source, destination_path=destination, strategy=strategy)
            self._jobs[name] = job
            snapshot = job.copy()

        self.logger.info(f"Registered backup job '{name}': {source} -> {destination}")
        self._sink(name, "Backup job created", action="BACKUP_CREATED",
                   source_path=source, target_path=destination)
        self._write_state()
        return snapshot

    def deregister(self, name: str) -> None:
        """Remove a job if present. A run still in progress is asked to stop."""
        with self._lock:
            job = self._jobs.pop(name, None)
            token = self._tokens.pop(name, None)
        if job is None:
            return
        if token:
            token.cancel()

        self.logger.info(f"Deregistered backup job '{name}'")
        self._sink(name, "Backup job deleted", action="BACKUP_DELETE")
        self._write_state()

    # --- queries ---

    def get_job(self, name: str) -> BackupJob:
        """Return a copy of the job. Raises JobNotFoundError if absent."""
        with self._lock:
            job = self._jobs.get(name)
            if job is None:
                raise JobNotFoundError(name)
            return job.copy()

    def find_job(self, name: str) -> Optional[BackupJob]:
        with self._lock:
            job = self._jobs.get(name)
            return job.copy() if job else None

    def list_jobs(self) -> List[BackupJob]:
        with self._lock:
            return [job.copy() for job in self._jobs.values()]

    def __contains__(self, name) -> bool:
        with self._lock:
            return name in self._jobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    # --- execution ---

    def start(self, name: str, progress_sink: Optional[Callable[[int], None]] = None) -> bool:
        """
        Run the job's strategy in the calling thread.

        Raises JobNotFoundError or JobAlreadyRunningError before anything
        runs. Failures during the run are not raised: they leave the job
        FAILED and are logged.

        Returns:
            True if the run completed successfully
        """
        job, token = self._begin(name)
        return self._execute(job, token, progress_sink)

    def start_background(self, name: str, progress_sink: Optional[Callable[[int], None]] = None) -> threading.Thread:
        """Like start(), but the run happens on a new thread which is returned already started."""
        job, token = self._begin(name)
        thread = threading.Thread(
            target=self._execute,
            args=(job, token, progress_sink),
            name=f"backup-{name}",
            daemon=True,
        )
        thread.start()
        return thread

    def cancel(self, name: str) -> bool:
        """
        Ask a running job to stop and mark it CANCELLED immediately.

        The copy in progress may still be finishing its current chunk when
        this returns. Returns False when the job is absent or not running.
        """
        with self._lock:
            job = self._jobs.get(name)
            if job is None or job.status is not JobStatus.RUNNING:
                return False
            token = self._tokens.get(name)
            if token:
                token.cancel()
            job.status = JobStatus.CANCELLED

        self.logger.info(f"Cancellation requested for backup job '{name}'")
        self._sink(name, "Backup cancelled", level="WARNING", action="BACKUP_CANCELLED")
        self._write_state()
        return True

    def update_progress(self, name: str, percent: int) -> None:
        """Set the progress of a job, clamped to 0-100 and never lowered while running."""
        percent = max(0, min(100, int(percent)))
        with self._lock:
            job = self._jobs.get(name)
            if job is None:
                return
            if job.status is JobStatus.RUNNING:
                job.progress = max(job.progress, percent)
            else:
                job.progress = percent

    def _begin(self, name):
        with self._lock:
            job = self._jobs.get(name)
            if job is None:
                raise JobNotFoundError(name)
            if job.status is JobStatus.RUNNING:
                raise JobAlreadyRunningError(name)
            job.status = JobStatus.RUNNING
            job.progress = 0
            job.reset_counters()
            token = CancelToken()
            self._tokens[name] = token
            snapshot = job.copy()

        self.logger.info(f"###### Starting {getattr(snapshot.strategy, 'name', 'backup').upper()} backup '{name}' ######")
        self._sink(name, "Backup started", action="BACKUP_STARTED",
                   source_path=snapshot.source_path, target_path=snapshot.destination_path)
        self._write_state()
        return snapshot, token

    def _execute(self, job, token, progress_sink):
        name = job.name

        def on_progress(percent):
            with self._lock:
                current = self._jobs.get(name)
                if current is None or self._tokens.get(name) is not token:
                    return
                if current.status is JobStatus.RUNNING:
                    current.progress = max(current.progress, max(0, min(100, int(percent))))
            if progress_sink:
                progress_sink(percent)

        def on_transfer(source_file, target_file, size, elapsed_ms, ok):
            if self.log_sink:
                self.log_sink.log_transfer(name, source_file, target_file, size, elapsed_ms, ok)

        def on_status(status):
            with self._lock:
                current = self._jobs.get(name)
                if current is None or self._tokens.get(name) is not token:
                    return
                current.total_files = status.total_files
                current.total_size = status.total_size
                current.files_remaining = status.files_remaining
                current.bytes_remaining = status.bytes_remaining
                current.current_source_file = status.current_source_file
                current.current_target_file = status.current_target_file
            self._write_state()

        try:
            ok = job.strategy.execute_backup(
                job.source_path,
                job.destination_path,
                progress=on_progress,
                cancel_token=token,
                transfer_callback=on_transfer,
                status_callback=on_status,
            )
        except Exception as e:
            self.logger.error(f"Backup job '{name}' raised an unexpected error: {e}", exc_info=True)
            ok = False

        return self._finish(name, token, bool(ok))

    def _finish(self, name, token, ok):
        with self._lock:
            job = self._jobs.get(name)
            if job is None or self._tokens.get(name) is not token:
                # deregistered or restarted meanwhile; this run no longer owns the job
                stale = True
                status = None
            else:
                stale = False
                del self._tokens[name]
                if job.status is JobStatus.CANCELLED:
                    pass
                elif ok:
                    job.status = JobStatus.COMPLETED
                    job.progress = 100
                    job.last_backup_timestamp = datetime.now()
                else:
                    job.status = JobStatus.FAILED
                status = job.status

        if stale:
            self.logger.debug(f"Ignoring the outcome of a superseded run of '{name}'")
            return False

        if status is JobStatus.COMPLETED:
            self.logger.info(f"Backup job '{name}' completed successfully")
            self._sink(name, "Backup completed", action="BACKUP_COMPLETED")
        elif status is JobStatus.FAILED:
            self.logger.error(f"Backup job '{name}' failed")
            self._sink(name, "Backup failed", level="ERROR", action="BACKUP_FAILED")
        else:
            self.logger.info(f"Backup job '{name}' stopped after cancellation")
        self._write_state()
        return status is JobStatus.COMPLETED

    # --- observers ---

    def _sink(self, name, message, level="INFO", **details):
        if self.log_sink:
            self.log_sink.log(name, message, level=level, **details)

    def _write_state(self):
        if self.state_writer:
            with self._state_lock:
                self.state_writer.write(self.list_jobs())
