"""Cron-driven scheduler: meant to be invoked once a minute by cron or Task Scheduler.

Each invocation checks every enabled schedule of every configured job and
runs the jobs whose cron expression fired within SCHEDULE_TOLERANCE of now.
"""

import os
import sys
import time
from datetime import datetime, timedelta

from croniter import croniter
from dotenv import load_dotenv

from ezbackup.config import load_config
from ezbackup.errors import ConfigError
from ezbackup.services.runner import build_runner
from ezbackup.settings import ENV_PATH, GLOBAL_CONFIG_PATH, LOG_DIR, SCHEDULE_TOLERANCE, SCHEDULER_STATUS_FILE
from ezbackup.utils.logger import setup_logger, trim_all_logs

load_dotenv(ENV_PATH)

logger = setup_logger("scheduler", log_file="scheduler.log")


def should_trigger(cron_expr, now):
    """
    Return ``(matched, prev_run_time)``.

    ``matched`` is True when the most recent firing of ``cron_expr`` at or
    before ``now`` lies within SCHEDULE_TOLERANCE and is closer than the next
    firing. Invalid expressions log an error and never match.
    """
    if not croniter.is_valid(cron_expr):
        logger.error(f"Invalid cron expression '{cron_expr}'")
        return False, None

    # shift by 1us so a check landing exactly on a slot sees that slot as "previous"
    prev_run_time = croniter(cron_expr, now + timedelta(microseconds=1)).get_prev(datetime)
    next_run_time = croniter(cron_expr, now).get_next(datetime)

    since_prev = now - prev_run_time
    return since_prev < SCHEDULE_TOLERANCE and since_prev < next_run_time - now, prev_run_time

def update_status_file(path=SCHEDULER_STATUS_FILE):
    """Record the time of the last completed check, for external monitoring."""
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(str(time.time()))
    except OSError as e:
        logger.error(f"Failed to update status file {path}: {e}")

def due_jobs(config, now):
    """Return ``(job_name, backup_type)`` pairs due at ``now``; at most one schedule fires per job."""
    due = []
    for job in config.jobs:
        for schedule in job.schedules:
            if schedule.enabled and should_trigger(schedule.cron, now)[0]:
                logger.info(f"Job '{job.name}' due: schedule '{schedule.cron}' ({schedule.type})")
                due.append((job.name, schedule.type))
                break
    return due

def main(config_path=GLOBAL_CONFIG_PATH, now=None):
    """Run one scheduler check. Returns a mapping of triggered job name to outcome."""
    now = now or datetime.now()
    outcomes = {}
    logger.info(f"Scheduler check at {now:%Y-%m-%d %H:%M:%S}")

    try:
        config = load_config(config_path)
        for job_name, backup_type in due_jobs(config, now):
            # each due job gets its own runner so it runs with the schedule's backup type
            runner = build_runner(config, backup_type=backup_type, job_names=[job_name])
            outcomes[job_name] = runner.run_job(job_name)
            logger.info(f"Job '{job_name}' ({backup_type}) finished: {outcomes[job_name]}")
        logger.info(f"Scheduler check done, {len(outcomes)} job(s) triggered")
        update_status_file()
    except ConfigError as e:
        logger.error(f"Scheduler check skipped: {e}")
    except Exception as e:
        logger.error(f"Unexpected error during the scheduler check: {e}", exc_info=True)
    finally:
        trim_all_logs(LOG_DIR)
    return outcomes

def run():
    """Console entry point: ``ezbackup-scheduler [CONFIG]``."""
    main(sys.argv[1] if len(sys.argv) > 1 else GLOBAL_CONFIG_PATH)

if __name__ == "__main__":
    run()
