"""Logging utilities for ezbackup.

Every component gets its own ``ezbackup.<name>`` logger wrapped in a
LoggerAdapter carrying the name, so lines from the registry, the strategies
and the scheduler can be told apart in the shared log file.
"""

import glob
import logging
import os
import threading
from collections import deque

from ezbackup.settings import ENV_MODE, LOG_DIR, MAX_LOG_LINES

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"

# one FileHandler per log file, shared by all loggers writing to it
_file_handlers = {}
_handlers_lock = threading.Lock()


class JobNameFormatter(logging.Formatter):
    """Prefixes every message with the job or component name of its adapter."""
    def format(self, record):
        if hasattr(record, "job_name"):
            # every handler formats the same record, so prefix a copy
            record = logging.makeLogRecord(record.__dict__)
            record.msg = f"{record.job_name} - {record.msg}"
        return super().format(record)

def _file_handler(log_file):
    with _handlers_lock:
        handler = _file_handlers.get(log_file)
        if handler is None:
            ensure_dir(os.path.dirname(log_file) or ".")
            handler = logging.FileHandler(log_file, encoding="utf-8")
            handler.setFormatter(JobNameFormatter(LOG_FORMAT))
            _file_handlers[log_file] = handler
        return handler

def setup_logger(job_name, log_file="ezbackup.log"):
    """
    Return a logger for a job or component.

    :param job_name: Name prefixed to every message, also the logger suffix.
    :param log_file: File name under LOG_DIR, or an absolute path.
    :return: A LoggerAdapter bound to ``job_name``.
    """
    if not os.path.isabs(log_file):
        log_file = os.path.join(LOG_DIR, log_file)

    logger = logging.getLogger(f"ezbackup.{job_name}")
    logger.setLevel(logging.DEBUG if ENV_MODE == "development" else logging.INFO)
    # handlers live on this logger only; the application may configure the root freely
    logger.propagate = False

    if not logger.handlers:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(JobNameFormatter(LOG_FORMAT))
        logger.addHandler(_file_handler(log_file))
        logger.addHandler(stream_handler)

    return logging.LoggerAdapter(logger, {"job_name": job_name})

def ensure_dir(path):
    """Ensure the given directory exists."""
    os.makedirs(path, exist_ok=True)

def sizeof_fmt(num, suffix="B"):
    """Human readable byte count, e.g. ``2.0KiB``."""
    for unit in ("", "Ki", "Mi", "Gi", "Ti", "Pi", "Ei", "Zi"):
        if abs(num) < 1024.0:
            return f"{num:3.1f}{unit}{suffix}"
        num /= 1024.0
    return f"{num:.1f}Yi{suffix}"

def trim_log_file(log_path, max_lines):
    """Keep only the last ``max_lines`` lines of a text log."""
    if not os.path.exists(log_path):
        return
    try:
        with open(log_path, "r", encoding="utf-8", errors="replace") as f:
            tail = deque(f, maxlen=max_lines + 1)
        if len(tail) <= max_lines:
            return
        tail.popleft()
        # rewrite in place: open FileHandlers keep appending to the same inode
        with open(log_path, "w", encoding="utf-8") as f:
            f.writelines(tail)
    except OSError as e:
        logging.getLogger("ezbackup").warning(f"Error trimming log file {log_path}: {e}")

def trim_all_logs(log_dir=LOG_DIR):
    """Trim every ``*.log`` file in ``log_dir`` to MAX_LOG_LINES; the JSON/XML activity logs are left alone."""
    for log_file in glob.glob(os.path.join(log_dir, "*.log")):
        trim_log_file(log_file, MAX_LOG_LINES)
