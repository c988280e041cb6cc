from __future__ import annotations

import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Dict

import pytest

# Keep log files and state written at import time out of the working tree.
os.environ.setdefault("EZBACKUP_HOME", tempfile.mkdtemp(prefix="ezbackup-tests-"))

from ezbackup.core.fs import FileSystemAdapter  # noqa: E402
from ezbackup.utils.logger import setup_logger  # noqa: E402

# Console handlers bind sys.stderr when created; create the shared loggers
# before capsys swaps it out for a single test.
for _name in ("registry", "runner", "filesystem", "full_backup", "differential_backup"):
    setup_logger(_name)


def make_tree(root: Path, files: Dict[str, str], mtime: float | None = None) -> Path:
    """Create ``files`` (relative path -> content) under ``root``; optionally backdate them."""
    root.mkdir(parents=True, exist_ok=True)
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        if mtime is not None:
            os.utime(path, (mtime, mtime))
    return root


class GatedStrategy:
    """Strategy stand-in that blocks until released or cancelled."""

    name = "gated"

    def __init__(self, result: bool = True, release: bool = False):
        self.result = result
        self.started = threading.Event()
        self.release = threading.Event()
        if release:
            self.release.set()
        self.calls = 0

    def execute_backup(self, source, destination, progress=None, cancel_token=None, transfer_callback=None,
                       status_callback=None):
        self.calls += 1
        self.started.set()
        while not self.release.wait(0.01):
            if cancel_token is not None and cancel_token.is_cancelled():
                return False
        if progress:
            progress(50)
        return self.result

    def cancel_backup(self):
        pass


class RaisingStrategy:
    name = "raising"

    def execute_backup(self, source, destination, progress=None, cancel_token=None, transfer_callback=None,
                       status_callback=None):
        raise RuntimeError("disk on fire")

    def cancel_backup(self):
        pass


@pytest.fixture
def old_mtime() -> float:
    return time.time() - 3600


@pytest.fixture
def fs() -> FileSystemAdapter:
    return FileSystemAdapter(chunk_size=1024)
