"""Shared backup strategy logic: the strategy contract, file mirroring and the full backup marker."""

import os
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from ezbackup.errors import BackupCancelledError, BackupIOError, SourceMissingError
from ezbackup.settings import MARKER_FILENAME
from ezbackup.utils.logger import setup_logger, sizeof_fmt
from ezbackup.core.cancel import CancelToken, is_cancelled
from ezbackup.core.fs import FileSystemAdapter

# Only one file above a strategy's large-file threshold is copied at a time,
# across every strategy instance in the process.
LARGE_FILE_SEMAPHORE = threading.BoundedSemaphore(1)


@dataclass
class CopyStatus:
    """Per-run file counters reported before each file and once at the end of a run."""
    total_files: int = 0
    total_size: int = 0
    files_remaining: int = 0
    bytes_remaining: int = 0
    current_source_file: str = ""
    current_target_file: str = ""


def marker_path(destination):
    """Return the path of the full backup marker under a destination root."""
    return os.path.join(destination, MARKER_FILENAME)

def read_marker(destination, logger=None):
    """
    Read the timestamp of the last full backup stored under ``destination``.

    A missing or unreadable marker is a normal state and yields
    ``datetime.min`` so every file counts as changed. A timestamp carrying
    a UTC offset is converted to naive local time, the way file mtimes are
    compared.
    """
    path = marker_path(destination)
    if not os.path.isfile(path):
        return datetime.min
    try:
        with open(path, "r", encoding="utf-8") as f:
            when = datetime.fromisoformat(f.read().strip())
    except (OSError, ValueError) as e:
        if logger:
            logger.warning(f"Ignoring unreadable backup marker {path}: {e}")
        return datetime.min
    if when.tzinfo is not None:
        when = when.astimezone().replace(tzinfo=None)
    return when

def write_marker(destination, when=None):
    """Persist the full backup timestamp under ``destination``."""
    when = when or datetime.now()
    path = marker_path(destination)
    tmp = path + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        f.write(when.isoformat())
    os.replace(tmp, path)
    return when

def normalize_extensions(extensions):
    """Lower-case extensions with a leading dot: ``["PDF", ".Docx"]`` -> ``{".pdf", ".docx"}``."""
    result = set()
    for ext in extensions or ():
        ext = ext.strip().lower()
        if ext:
            result.add(ext if ext.startswith(".") else "." + ext)
    return result


class BackupStrategy(ABC):
    """
    Base class for backup strategies.

    One instance may be shared by several jobs, so per-run state lives in
    local variables and in the cancel token handed to each run, never on
    the instance. ``cancel_backup`` cancels every run currently going through
    this instance.

    Files whose extension is in ``priority_extensions`` are copied before
    the others. Files larger than ``large_file_threshold`` bytes wait for
    ``large_file_semaphore`` so several jobs do not saturate the disk with
    big copies at once; ``None`` disables the limit.
    """

    name = "base"

    def __init__(self, fs=None, logger=None, priority_extensions=None,
                 large_file_threshold=None, large_file_semaphore=None):
        self.fs = fs or FileSystemAdapter()
        self.logger = logger or setup_logger(f"{self.name}_backup")
        self.priority_extensions = normalize_extensions(priority_extensions)
        self.large_file_threshold = large_file_threshold
        self.large_file_semaphore = large_file_semaphore or LARGE_FILE_SEMAPHORE
        self._active_tokens = set()
        self._tokens_lock = threading.Lock()

    def execute_backup(self, source, destination, progress=None, cancel_token=None,
                       transfer_callback=None, status_callback=None):
        """
        Run the backup from ``source`` into ``destination``.

        Args:
            source: Directory to back up
            destination: Destination root
            progress: Called with an integer percentage after each file
            cancel_token: Polled before each file and passed down to the adapter
            transfer_callback: Called as (source_file, target_file, size, elapsed_ms, ok)
                after each file
            status_callback: Called with a CopyStatus before each file and at the end

        Returns:
            True on success, False on failure or cancellation. Never raises.
        """
        token = cancel_token or CancelToken()
        with self._tokens_lock:
            self._active_tokens.add(token)
        try:
            self._run(source, destination, progress, token, transfer_callback, status_callback)
            return True
        except SourceMissingError as e:
            self.logger.error(str(e))
            return False
        except BackupCancelledError as e:
            self.logger.info(f"{self.name.capitalize()} backup of {source} cancelled: {e}")
            return False
        except BackupIOError as e:
            self.logger.error(f"{self.name.capitalize()} backup of {source} failed: {e}")
            return False
        except Exception as e:
            self.logger.error(f"Unexpected error during {self.name} backup of {source}: {e}", exc_info=True)
            return False
        finally:
            with self._tokens_lock:
                self._active_tokens.discard(token)

    def cancel_backup(self):
        """Request cancellation of every run in progress on this strategy."""
        with self._tokens_lock:
            tokens = list(self._active_tokens)
        for token in tokens:
            token.cancel()

    @abstractmethod
    def _run(self, source, destination, progress, cancel_token, transfer_callback, status_callback):
        """Perform the backup, raising a domain exception on failure."""

    def order_files(self, files):
        """Priority extensions first; the original order is kept within each group."""
        if not self.priority_extensions:
            return list(files)
        return sorted(
            files,
            key=lambda path: os.path.splitext(path)[1].lower() not in self.priority_extensions,
        )

    def is_large_file(self, size):
        return self.large_file_threshold is not None and size > self.large_file_threshold

    def _acquire_large_file_slot(self, cancel_token):
        while not self.large_file_semaphore.acquire(timeout=0.1):
            if is_cancelled(cancel_token):
                return False
        return True

    def _mirror_files(self, files, source, destination, progress, cancel_token,
                      transfer_callback, status_callback=None):
        """
        Copy ``files`` (absolute paths under ``source``) to the same relative
        paths under ``destination``, reporting progress over ``len(files)``.
        """
        sizes = {}
        for file_path in files:
            try:
                sizes[file_path] = os.path.getsize(file_path)
            except OSError:
                sizes[file_path] = 0
        files = self.order_files(files)
        status = CopyStatus(
            total_files=len(files),
            total_size=sum(sizes.values()),
            files_remaining=len(files),
            bytes_remaining=sum(sizes.values()),
        )

        total_files = len(files)
        if total_files == 0:
            if status_callback:
                status_callback(status)
            if progress:
                progress(100)
            return

        for processed, file_path in enumerate(files, start=1):
            if is_cancelled(cancel_token):
                raise BackupCancelledError(f"stopped after {processed - 1} of {total_files} files")

            rel_path = os.path.relpath(file_path, source)
            target = os.path.join(destination, rel_path)
            size = sizes[file_path]
            if status_callback:
                status.current_source_file = file_path
                status.current_target_file = target
                status_callback(CopyStatus(**vars(status)))

            if not self.fs.create_directory(os.path.dirname(target)):
                raise BackupIOError(f"could not create directory for {target}")

            large = self.is_large_file(size)
            if large and not self._acquire_large_file_slot(cancel_token):
                raise BackupCancelledError(f"stopped while waiting to copy large file {rel_path}")
            try:
                started = time.monotonic()
                ok = self.fs.copy_file(file_path, target, cancel_token=cancel_token)
                elapsed_ms = int((time.monotonic() - started) * 1000)
            finally:
                if large:
                    self.large_file_semaphore.release()

            if transfer_callback:
                transfer_callback(file_path, target, size, elapsed_ms, ok)

            if not ok:
                if is_cancelled(cancel_token):
                    raise BackupCancelledError(f"stopped while copying {rel_path}")
                raise BackupIOError(f"could not copy {file_path} to {target}")

            status.files_remaining -= 1
            status.bytes_remaining -= size
            self.logger.debug(f"Copied {rel_path} ({sizeof_fmt(size)}, {elapsed_ms} ms)")
            if progress:
                progress(int(processed / total_files * 100))

        if status_callback:
            status.current_source_file = ""
            status.current_target_file = ""
            status_callback(CopyStatus(**vars(status)))
