"""Real-time job state file: a JSON snapshot of every registered job."""

import json
import os
import threading
from datetime import datetime

from ezbackup.utils.logger import ensure_dir, setup_logger

logger = setup_logger("state")


class StateWriter:
    """Rewrites the state file whenever the registry reports a change."""

    def __init__(self, path):
        self.path = path
        self._lock = threading.Lock()

    def write(self, jobs):
        """Persist the given job snapshots. Failures are logged, never raised."""
        now = datetime.now().isoformat()
        states = [dict(job.to_dict(), last_action_time=now) for job in jobs]
        tmp = self.path + ".tmp"
        with self._lock:
            try:
                ensure_dir(os.path.dirname(self.path) or ".")
                with open(tmp, "w", encoding="utf-8") as f:
                    json.dump(states, f, indent=2)
                os.replace(tmp, self.path)
            except OSError as e:
                logger.error(f"Failed to write state file {self.path}: {e}")

    def read(self):
        """Return the last persisted states, or an empty list."""
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return []
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read state file {self.path}: {e}")
            return []
