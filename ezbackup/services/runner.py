"""Runs registered jobs: consults the process gate, races the optional timeout and cancels on expiry."""

import time

from ezbackup.core.backup import BACKUP_TYPES, create_strategy, normalize_backup_type
from ezbackup.errors import JobAlreadyRunningError, JobNotFoundError
from ezbackup.models.backup_jobs import JobRegistry, JobStatus
from ezbackup.services.process_gate import ProcessGate
from ezbackup.utils.log_sink import create_log_sink
from ezbackup.utils.logger import setup_logger
from ezbackup.utils.state import StateWriter

BLOCKED = "blocked"
ALREADY_RUNNING = "already_running"


class JobRunner:
    """Entry-point owned wrapper tying the registry, process gate and log sink together."""

    def __init__(self, registry, gate=None, log_sink=None, logger=None):
        self.registry = registry
        self.gate = gate
        self.log_sink = log_sink
        self.logger = logger or setup_logger("runner")
        self._threads = {}

    def check_gate(self, source="runner"):
        """
        Return the blocking processes currently running (empty list if none).

        Running priority processes are only reported, they do not prevent a start.
        """
        if self.gate is None:
            return []
        priority = self.gate.running_priority_processes()
        if priority:
            self.logger.warning(f"Priority processes running: {', '.join(priority)}")
        blocking = self.gate.running_blocking_processes()
        if blocking:
            message = f"Blocking processes running, backup not started: {', '.join(blocking)}"
            self.logger.warning(message)
            if self.log_sink:
                self.log_sink.log(source, message, level="WARNING", action="BACKUP_BLOCKED")
        return blocking

    def run_job(self, name, timeout=None, progress_sink=None):
        """
        Run one job to the end and return its outcome.

        Returns:
            "completed", "failed", "cancelled" or "blocked"
        """
        if self.check_gate(name):
            return BLOCKED

        thread = self.registry.start_background(name, progress_sink)
        self._threads[name] = thread
        thread.join(timeout)
        if thread.is_alive():
            self.logger.warning(f"Backup job '{name}' exceeded its {timeout}s timeout, cancelling")
            self.registry.cancel(name)
            thread.join()
        return self._outcome(name)

    def run_all(self, names=None, timeout=None):
        """
        Start several jobs concurrently and wait for all of them.

        ``timeout`` applies to the whole batch; jobs still running when it
        expires are cancelled. Returns a mapping of job name to outcome.
        """
        if names is None:
            names = [job.name for job in self.registry.list_jobs()]
        # unknown names fail before any job has been started
        for name in names:
            if self.registry.find_job(name) is None:
                raise JobNotFoundError(name)
        if self.check_gate():
            return {name: BLOCKED for name in names}

        threads = {}
        outcomes = {}
        for name in names:
            try:
                threads[name] = self._threads[name] = self.registry.start_background(name)
            except JobAlreadyRunningError:
                self.logger.info(f"Job '{name}' is already running. Skipping.")
                outcomes[name] = ALREADY_RUNNING
            except JobNotFoundError:
                # deregistered since the check: stop what this batch already started
                for started, thread in threads.items():
                    self.registry.cancel(started)
                    thread.join()
                raise

        deadline = None if timeout is None else time.monotonic() + timeout
        for name, thread in threads.items():
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(remaining)
            if thread.is_alive():
                self.logger.warning(f"Backup job '{name}' still running at the deadline, cancelling")
                self.registry.cancel(name)
                thread.join()
            outcomes[name] = self._outcome(name)
        return outcomes

    def cancel_all(self, wait=False):
        """
        Cancel every running job; returns the names that were cancelled.

        With ``wait`` the worker threads started by this runner are joined,
        so on return no copy is in progress any more.
        """
        cancelled = []
        for job in self.registry.list_jobs():
            if job.status is JobStatus.RUNNING and self.registry.cancel(job.name):
                cancelled.append(job.name)
        if wait:
            for thread in list(self._threads.values()):
                thread.join()
        return cancelled

    def _outcome(self, name):
        job = self.registry.find_job(name)
        if job is None:
            return JobStatus.CANCELLED.value
        return job.status.value


def build_runner(config, backup_type=None, job_names=None):
    """
    Construct the log sink, state writer, registry and process gate for an
    entry point and register the configured jobs.

    Args:
        config: AppConfig
        backup_type: Force every job to this strategy instead of its configured type
        job_names: Only register these jobs (default: all)
    """
    log_sink = create_log_sink(config.log_format, config.log_dir)
    state_writer = StateWriter(config.state_file) if config.state_file else None
    registry = JobRegistry(log_sink=log_sink, state_writer=state_writer)
    gate = ProcessGate(priority=config.priority_processes, blocking=config.blocking_processes)

    # one strategy instance per type, shared by every job using it
    threshold = config.large_file_threshold_kb
    strategies = {
        backup: create_strategy(
            backup,
            priority_extensions=config.priority_extensions,
            large_file_threshold=None if threshold is None else threshold * 1000,
        )
        for backup in BACKUP_TYPES
    }
    for job in config.jobs:
        if job_names and job.name not in job_names:
            continue
        strategy = strategies[normalize_backup_type(backup_type) if backup_type else job.type]
        registry.register(job.name, job.source, job.destination, strategy)

    return JobRunner(registry, gate=gate, log_sink=log_sink)
