"""Configuration file loading and validation for ezbackup.

The YAML file is converted into fixed dataclasses at load time; every
missing or malformed key is reported as a :class:`ConfigError`.

Example::

    log_format: json
    processes:
      blocking: [editor.exe]
    priority_extensions: [.docx, .pdf]
    large_file_threshold_kb: 100000
    jobs:
      - name: documents
        source: /home/me/Documents
        destination: /mnt/backup/documents
        type: differential
        schedules:
          - cron: "0 2 * * *"
            type: full
            enabled: true
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional

import yaml

from ezbackup.core.backup import normalize_backup_type
from ezbackup.errors import ConfigError
from ezbackup.settings import (
    BASE_DIR, DEFAULT_BLOCKING_PROCESSES, DEFAULT_LOG_FORMAT, DEFAULT_PRIORITY_PROCESSES,
    LOG_DIR, STATE_FILE,
)

LOG_FORMATS = ("json", "xml")


@dataclass
class ScheduleConfig:
    cron: str
    type: str = "full"
    enabled: bool = True


@dataclass
class JobConfig:
    name: str
    source: str
    destination: str
    type: str = "full"
    schedules: List[ScheduleConfig] = field(default_factory=list)


@dataclass
class AppConfig:
    log_format: str = DEFAULT_LOG_FORMAT
    log_dir: str = LOG_DIR
    state_file: Optional[str] = STATE_FILE
    priority_processes: List[str] = field(default_factory=lambda: list(DEFAULT_PRIORITY_PROCESSES))
    blocking_processes: List[str] = field(default_factory=lambda: list(DEFAULT_BLOCKING_PROCESSES))
    priority_extensions: List[str] = field(default_factory=list)
    large_file_threshold_kb: Optional[int] = None
    jobs: List[JobConfig] = field(default_factory=list)

    def get_job(self, name: str) -> Optional[JobConfig]:
        for job in self.jobs:
            if job.name == name:
                return job
        return None


def _resolve(path):
    path = os.path.expanduser(str(path))
    return path if os.path.isabs(path) else os.path.join(BASE_DIR, path)

def _require_str(data, key, where):
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{where}: '{key}' is required and must be a non-empty string")
    return value.strip()

def _backup_type(value, where):
    try:
        return normalize_backup_type(value)
    except ValueError as e:
        raise ConfigError(f"{where}: {e}") from e

def _str_list(value, key):
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"processes.{key} must be a list of process names")
    return value

def parse_schedule(data, where) -> ScheduleConfig:
    if not isinstance(data, dict):
        raise ConfigError(f"{where}: each schedule must be a mapping")
    return ScheduleConfig(
        cron=_require_str(data, "cron", where),
        type=_backup_type(data.get("type", "full"), where),
        enabled=bool(data.get("enabled", True)),
    )

def parse_job(data, index) -> JobConfig:
    where = f"jobs[{index}]"
    if not isinstance(data, dict):
        raise ConfigError(f"{where} must be a mapping")
    name = _require_str(data, "name", where)
    where = f"job '{name}'"
    schedules = data.get("schedules") or []
    if not isinstance(schedules, list):
        raise ConfigError(f"{where}: 'schedules' must be a list")
    return JobConfig(
        name=name,
        source=_resolve(_require_str(data, "source", where)),
        destination=_resolve(_require_str(data, "destination", where)),
        type=_backup_type(data.get("type", "full"), where),
        schedules=[parse_schedule(s, f"{where} schedule {i}") for i, s in enumerate(schedules)],
    )

def parse_config(data) -> AppConfig:
    """Validate a raw mapping (as loaded from YAML) and build an AppConfig."""
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("Configuration root must be a mapping")

    log_format = str(data.get("log_format", DEFAULT_LOG_FORMAT)).lower()
    if log_format not in LOG_FORMATS:
        raise ConfigError(f"log_format must be one of {', '.join(LOG_FORMATS)}, got '{log_format}'")

    processes = data.get("processes") or {}
    if not isinstance(processes, dict):
        raise ConfigError("'processes' must be a mapping with 'priority' and/or 'blocking' lists")
    priority = _str_list(processes.get("priority"), "priority")
    blocking = _str_list(processes.get("blocking"), "blocking")

    extensions = data.get("priority_extensions") or []
    if not isinstance(extensions, list) or not all(isinstance(e, str) for e in extensions):
        raise ConfigError("priority_extensions must be a list of file extensions")
    threshold = data.get("large_file_threshold_kb")
    if threshold is not None and (isinstance(threshold, bool) or not isinstance(threshold, int) or threshold < 0):
        raise ConfigError(f"large_file_threshold_kb must be a non-negative integer, got '{threshold}'")

    raw_jobs = data.get("jobs") or []
    if not isinstance(raw_jobs, list):
        raise ConfigError("'jobs' must be a list")
    jobs = [parse_job(job, i) for i, job in enumerate(raw_jobs)]
    seen = set()
    for job in jobs:
        if job.name in seen:
            raise ConfigError(f"Duplicate job name '{job.name}'")
        seen.add(job.name)

    config = AppConfig(
        log_format=log_format,
        jobs=jobs,
        priority_extensions=extensions,
        large_file_threshold_kb=threshold,
    )
    if data.get("log_dir"):
        config.log_dir = _resolve(data["log_dir"])
    if "state_file" in data:
        config.state_file = _resolve(data["state_file"]) if data["state_file"] else None
    if priority is not None:
        config.priority_processes = priority
    if blocking is not None:
        config.blocking_processes = blocking
    return config

def load_config(path) -> AppConfig:
    """Load and validate a YAML configuration file."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML file {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Error loading config {path}: {e}") from e
    return parse_config(data)
