"""Priority and blocking process lists checked against the processes running on the host."""

from __future__ import annotations

import asyncio
import threading
from typing import Callable, Iterable, List, Optional

import psutil

from ezbackup.settings import DEFAULT_BLOCKING_PROCESSES, DEFAULT_PRIORITY_PROCESSES
from ezbackup.utils.logger import setup_logger

logger = setup_logger("process_gate")


def list_running_process_names() -> List[str]:
    """Return the executable names of the processes currently running on this host."""
    names = []
    for proc in psutil.process_iter(["name"]):
        try:
            name = proc.info.get("name")
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
        if name:
            names.append(name)
    return names


def _normalize(name: str) -> str:
    return name.strip().lower()


class ProcessGate:
    """
    Query surface for the "priority" and "blocking" process sets.

    Names are matched case-insensitively and without regard to path or pid.
    A running process matches an entry either by its exact name or by its
    name with ``.exe`` appended, so ``chrome.exe`` matches a process psutil
    reports as ``chrome``. The gate never schedules anything; callers decide
    what to do with the answers.
    """

    def __init__(
        self,
        priority: Optional[Iterable[str]] = None,
        blocking: Optional[Iterable[str]] = None,
        process_lister: Callable[[], Iterable[str]] = list_running_process_names,
    ):
        self._priority = {_normalize(n) for n in (DEFAULT_PRIORITY_PROCESSES if priority is None else priority) if n.strip()}
        self._blocking = {_normalize(n) for n in (DEFAULT_BLOCKING_PROCESSES if blocking is None else blocking) if n.strip()}
        self._process_lister = process_lister
        self._lock = threading.Lock()

    # --- set management ---

    def add_priority_process(self, name: str) -> None:
        with self._lock:
            self._priority.add(_normalize(name))

    def remove_priority_process(self, name: str) -> None:
        with self._lock:
            self._priority.discard(_normalize(name))

    def add_blocking_process(self, name: str) -> None:
        with self._lock:
            self._blocking.add(_normalize(name))

    def remove_blocking_process(self, name: str) -> None:
        with self._lock:
            self._blocking.discard(_normalize(name))

    def is_priority_process(self, name: str) -> bool:
        with self._lock:
            return _normalize(name) in self._priority

    def is_blocking_process(self, name: str) -> bool:
        with self._lock:
            return _normalize(name) in self._blocking

    def get_priority_processes(self) -> List[str]:
        with self._lock:
            return sorted(self._priority)

    def get_blocking_processes(self) -> List[str]:
        with self._lock:
            return sorted(self._blocking)

    # --- host snapshot queries ---

    def running_priority_processes(self) -> List[str]:
        """Names from the priority set that are running right now."""
        return self._running_in(self._priority)

    def running_blocking_processes(self) -> List[str]:
        """Names from the blocking set that are running right now."""
        return self._running_in(self._blocking)

    def blocking_processes_running(self) -> bool:
        return bool(self.running_blocking_processes())

    async def any_blocking_running(self) -> bool:
        return await asyncio.to_thread(self.blocking_processes_running)

    async def get_running_priority_processes(self) -> List[str]:
        return await asyncio.to_thread(self.running_priority_processes)

    async def get_running_blocking_processes(self) -> List[str]:
        return await asyncio.to_thread(self.running_blocking_processes)

    def _running_in(self, names) -> List[str]:
        try:
            running = [_normalize(n) for n in self._process_lister() if n]
        except (psutil.Error, OSError) as e:
            logger.warning(f"Unable to list running processes: {e}")
            return []

        with self._lock:
            wanted = set(names)
        matches = set()
        for proc_name in running:
            if proc_name in wanted:
                matches.add(proc_name)
            elif proc_name + ".exe" in wanted:
                matches.add(proc_name + ".exe")
        return sorted(matches)
