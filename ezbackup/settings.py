"""Application-wide settings and configuration constants."""

import os
from datetime import timedelta
from dotenv import load_dotenv


VERSION = "v1.0.0"

# --- Environment Configuration ---
BASE_DIR = os.path.abspath(
    os.environ.get("EZBACKUP_HOME") or os.path.join(os.path.dirname(__file__), '..')
)

# Path to the .env file for environment overrides
ENV_PATH = os.path.join(BASE_DIR, ".env")

# Load environment variables
load_dotenv(ENV_PATH)

# Environment mode (development/production)
ENV_MODE = os.environ.get("ENV_MODE", "production")

# --- CONFIG Configuration ---
CONFIG_DIR = os.path.join(BASE_DIR, 'config')
GLOBAL_CONFIG_PATH = os.environ.get("EZBACKUP_CONFIG", os.path.join(CONFIG_DIR, "ezbackup.yaml"))

# --- Data Configuration ---
DATA_DIR = os.path.join(BASE_DIR, 'data')
STATE_FILE = os.path.join(DATA_DIR, "state.json")

# --- Logging Configuration ---
LOG_DIR = os.path.join(BASE_DIR, 'logs')
MAX_LOG_LINES = 10000
DEFAULT_LOG_FORMAT = "json"

# --- Backup Configuration ---
MARKER_FILENAME = "full_backup_metadata.txt"
COPY_CHUNK_SIZE = 64 * 1024     # bytes copied between two cancellation checks

# --- Process Gate Configuration ---
DEFAULT_PRIORITY_PROCESSES = ("notepad.exe", "word.exe", "excel.exe", "powerpnt.exe")
DEFAULT_BLOCKING_PROCESSES = DEFAULT_PRIORITY_PROCESSES + ("chrome.exe", "firefox.exe", "msedge.exe")

#--- Scheduler Configuration ---
SCHEDULE_TOLERANCE = timedelta(seconds=15)      # buffer for cron job execution
SCHEDULER_STATUS_FILE = os.path.join(LOG_DIR, "scheduler.status")
