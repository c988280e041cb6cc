"""ezbackup CLI: run configured backup jobs, inspect their state, logs and the process gate."""

import argparse
import sys
from datetime import datetime

from dotenv import load_dotenv

from ezbackup.config import load_config
from ezbackup.errors import ConfigError, EzBackupError
from ezbackup.services.process_gate import ProcessGate
from ezbackup.services.runner import BLOCKED, build_runner
from ezbackup.settings import ENV_PATH, GLOBAL_CONFIG_PATH, VERSION
from ezbackup.utils.log_sink import create_log_sink
from ezbackup.utils.logger import setup_logger
from ezbackup.utils.state import StateWriter

# Exit codes
EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_BLOCKED = 3

cli_logger = setup_logger("cli")


def run_jobs(config, job_names=None, backup_type=None, timeout=None):
    """
    Run the selected jobs concurrently and return an exit code.

    Ctrl+C cancels the running jobs and waits for them to stop.
    """
    if job_names:
        missing = [name for name in job_names if config.get_job(name) is None]
        if missing:
            raise ConfigError(f"Unknown job(s): {', '.join(missing)}")

    runner = build_runner(config, backup_type=backup_type, job_names=job_names)
    if not len(runner.registry):
        cli_logger.warning("No jobs configured, nothing to do.")
        return EXIT_OK

    try:
        outcomes = runner.run_all(job_names, timeout=timeout)
    except KeyboardInterrupt:
        cli_logger.warning("Interrupted, cancelling running jobs")
        runner.cancel_all(wait=True)
        return EXIT_FAILED

    for name, outcome in outcomes.items():
        print(f"{name}: {outcome}")

    if any(outcome == BLOCKED for outcome in outcomes.values()):
        return EXIT_BLOCKED
    if all(outcome == "completed" for outcome in outcomes.values()):
        return EXIT_OK
    return EXIT_FAILED

def list_jobs(config):
    """Print every configured job with its last recorded state."""
    states = {}
    if config.state_file:
        states = {s.get("name"): s for s in StateWriter(config.state_file).read()}
    for job in config.jobs:
        state = states.get(job.name, {})
        print(
            f"{job.name:<20} {job.type:<13} {state.get('status', 'pending'):<10} "
            f"{state.get('progress', 0):>3}%  last: {state.get('last_backup_timestamp') or '-'}  "
            f"{job.source} -> {job.destination}"
        )
    return EXIT_OK

def show_logs(config, since=None, until=None, level=None):
    """Print log sink entries matching the filters."""
    sink = create_log_sink(config.log_format, config.log_dir)
    for entry in sink.read_entries(start=since, end=until, level=level):
        details = " ".join(f"{k}={v}" for k, v in entry.details.items())
        print(f"{entry.timestamp:%Y-%m-%d %H:%M:%S} {entry.level:<7} {entry.source}: {entry.message} {details}".rstrip())
    return EXIT_OK

def show_processes(config):
    """Print both process sets and the members currently running."""
    gate = ProcessGate(priority=config.priority_processes, blocking=config.blocking_processes)
    print("Priority processes: " + ", ".join(gate.get_priority_processes()))
    print("Blocking processes: " + ", ".join(gate.get_blocking_processes()))
    print("Running priority:   " + (", ".join(gate.running_priority_processes()) or "-"))
    print("Running blocking:   " + (", ".join(gate.running_blocking_processes()) or "-"))
    return EXIT_OK

def _iso(value):
    try:
        return datetime.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"not an ISO date/time: {value}") from e

def build_parser():
    parser = argparse.ArgumentParser(prog="ezbackup", description="ezbackup CLI")
    parser.add_argument("--config", default=GLOBAL_CONFIG_PATH, help="Path to the YAML configuration file")
    parser.add_argument("--version", action="version", version=f"ezbackup {VERSION}")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run backup jobs")
    run.add_argument("--job", action="append", dest="jobs", help="Job name (repeatable, default: all jobs)")
    run.add_argument("--type", choices=["full", "diff", "differential"],
                     help="Override the configured backup type")
    run.add_argument("--timeout", type=float, help="Cancel jobs still running after this many seconds")

    sub.add_parser("list", help="List configured jobs and their last state")

    logs = sub.add_parser("logs", help="Show log entries")
    logs.add_argument("--since", type=_iso, help="Only entries at or after this ISO date/time")
    logs.add_argument("--until", type=_iso, help="Only entries at or before this ISO date/time")
    logs.add_argument("--level", choices=["debug", "info", "warning", "error"], help="Only entries of this level")

    sub.add_parser("processes", help="Show the priority/blocking process sets")
    return parser

def main(argv=None):
    load_dotenv(ENV_PATH)
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
        if args.command == "run":
            return run_jobs(config, job_names=args.jobs, backup_type=args.type, timeout=args.timeout)
        if args.command == "list":
            return list_jobs(config)
        if args.command == "logs":
            return show_logs(config, since=args.since, until=args.until, level=args.level)
        return show_processes(config)
    except ConfigError as e:
        cli_logger.error(f"Configuration error: {e}")
        print(f"ERROR: {e}")
        return EXIT_CONFIG
    except EzBackupError as e:
        cli_logger.error(f"Fatal error: {e}", exc_info=True)
        print(f"ERROR: {e}")
        return EXIT_FAILED

if __name__ == "__main__":
    sys.exit(main())
