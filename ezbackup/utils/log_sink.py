"""Structured activity log for backup jobs (JSON or XML files, one per day)."""

import json
import os
import glob
import threading
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime

import portalocker

from ezbackup.settings import LOG_DIR
from ezbackup.utils.logger import ensure_dir, setup_logger

LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

logger = setup_logger("log_sink")


@dataclass
class LogEntry:
    """One record of the activity log."""
    timestamp: datetime
    level: str
    source: str
    message: str
    details: dict = field(default_factory=dict)

    def to_dict(self):
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level,
            "source": self.source,
            "message": self.message,
            "details": dict(self.details),
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            level=data.get("level", "INFO"),
            source=data.get("source", "Application"),
            message=data.get("message", ""),
            details=dict(data.get("details") or {}),
        )


def normalize_level(level):
    """Return the canonical upper-case name of a log level."""
    value = str(level).upper()
    if value == "WARN":
        value = "WARNING"
    if value not in LEVELS:
        raise ValueError(f"Unknown log level: {level}")
    return value

def _matches(entry, start, end, level):
    if start and entry.timestamp < start:
        return False
    if end and entry.timestamp > end:
        return False
    if level and entry.level != level:
        return False
    return True


class LogSink(ABC):
    """Destination for job activity entries."""

    def write_entry(self, timestamp, level, source, message, **details):
        """Append one entry. Write failures are logged, never raised."""
        entry = LogEntry(
            timestamp=timestamp or datetime.now(),
            level=normalize_level(level),
            source=source or "Application",
            message=message,
            details=details,
        )
        try:
            self._append(entry)
        except (OSError, ValueError, ET.ParseError) as e:
            logger.error(f"Could not write log entry '{message}': {e}")
        return entry

    def read_entries(self, start=None, end=None, level=None):
        """Return the entries between ``start`` and ``end`` (inclusive) ordered by timestamp."""
        level = normalize_level(level) if level else None
        entries = [e for e in self._load() if _matches(e, start, end, level)]
        entries.sort(key=lambda e: e.timestamp)
        return entries

    def log(self, source, message, level="INFO", **details):
        """Shortcut for writing an entry stamped with the current time."""
        return self.write_entry(datetime.now(), level, source, message, **details)

    def log_transfer(self, job_name, source_path, target_path, file_size, elapsed_ms, ok):
        """Record the outcome of one file transfer."""
        return self.write_entry(
            datetime.now(),
            "INFO" if ok else "ERROR",
            job_name,
            "File transferred" if ok else "Error during transfer",
            action="FILE_TRANSFER",
            source_path=source_path,
            target_path=target_path,
            file_size=file_size,
            transfer_ms=elapsed_ms,
        )

    @abstractmethod
    def _append(self, entry):
        """Persist one entry."""

    @abstractmethod
    def _load(self):
        """Return every stored entry."""


class MemoryLogSink(LogSink):
    """Keeps entries in memory; used for tests and dry runs."""

    def __init__(self):
        self._entries = []
        self._lock = threading.Lock()

    def _append(self, entry):
        with self._lock:
            self._entries.append(entry)

    def _load(self):
        with self._lock:
            return list(self._entries)


class FileLogSink(LogSink):
    """Base for sinks writing one file per day under ``log_dir``."""

    extension = ""

    def __init__(self, log_dir):
        self.log_dir = log_dir
        ensure_dir(log_dir)
        self._lock = threading.Lock()

    def log_file_path(self, day=None):
        day = day or datetime.now()
        return os.path.join(self.log_dir, f"log_{day:%Y-%m-%d}{self.extension}")

    def log_files(self):
        return sorted(glob.glob(os.path.join(self.log_dir, f"log_*{self.extension}")))

    def _append(self, entry):
        path = self.log_file_path(entry.timestamp)
        with self._lock, self._open_for_append(path) as f:
            portalocker.lock(f, portalocker.LOCK_EX)
            try:
                self._write_locked(f, entry)
                f.flush()
            finally:
                portalocker.unlock(f)

    def _load(self):
        entries = []
        for path in self.log_files():
            try:
                with self._lock, open(path, "r", encoding="utf-8") as f:
                    portalocker.lock(f, portalocker.LOCK_SH)
                    try:
                        entries.extend(self._read_locked(f))
                    finally:
                        portalocker.unlock(f)
            except (OSError, ValueError, ET.ParseError) as e:
                logger.warning(f"Skipping unreadable log file {path}: {e}")
        return entries

    def _open_for_append(self, path):
        return open(path, "a", encoding="utf-8")

    @abstractmethod
    def _write_locked(self, f, entry):
        """Write ``entry`` into the locked, open file ``f``."""

    @abstractmethod
    def _read_locked(self, f):
        """Parse the entries of the locked, open file ``f``."""


class JsonLogSink(FileLogSink):
    """One JSON object per line."""

    extension = ".json"

    def _write_locked(self, f, entry):
        f.write(json.dumps(entry.to_dict()) + "\n")

    def _read_locked(self, f):
        entries = []
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                entries.append(LogEntry.from_dict(json.loads(line)))
            except (ValueError, KeyError) as e:
                logger.warning(f"Skipping malformed log line in {f.name}: {e}")
        return entries


_CLOSING_TAG = b"</Logs>"

# detail values keep their type through an XML round trip
_DETAIL_TYPES = {"int": int, "float": float, "str": str}


def _encode_detail(value):
    if value is None:
        return "none", ""
    if isinstance(value, bool):
        return "bool", "true" if value else "false"
    if isinstance(value, int):
        return "int", str(value)
    if isinstance(value, float):
        return "float", repr(value)
    return "str", str(value)

def _decode_detail(type_name, text):
    text = text or ""
    if type_name == "none":
        return None
    if type_name == "bool":
        return text == "true"
    return _DETAIL_TYPES.get(type_name, str)(text)


class XmlLogSink(FileLogSink):
    """
    A ``<Logs>`` document holding one ``<Log>`` element per entry.

    New entries are spliced in before the closing ``</Logs>`` tag, so a
    write costs the size of the entry and not of the whole daily file.
    """

    extension = ".xml"

    def _open_for_append(self, path):
        # "a" mode would force every write to the end, past the closing tag
        open(path, "ab").close()
        return open(path, "r+b")

    def _write_locked(self, f, entry):
        log = ET.Element("Log")
        ET.SubElement(log, "Timestamp").text = entry.timestamp.isoformat()
        ET.SubElement(log, "Level").text = entry.level
        ET.SubElement(log, "Source").text = entry.source
        ET.SubElement(log, "Message").text = entry.message
        if entry.details:
            details = ET.SubElement(log, "Details")
            for key, value in entry.details.items():
                type_name, text = _encode_detail(value)
                ET.SubElement(details, "Detail", name=key, type=type_name).text = text
        record = ET.tostring(log, encoding="utf-8", xml_declaration=False) + b"\n"

        end = f.seek(0, os.SEEK_END)
        if end == 0:
            f.write(b"<Logs>\n" + record + _CLOSING_TAG + b"\n")
            return

        tail_size = min(end, 64)
        f.seek(end - tail_size)
        tail = f.read(tail_size)
        pos = tail.rfind(_CLOSING_TAG)
        if pos < 0:
            raise ValueError(f"{f.name} has no closing </Logs> tag")
        f.seek(end - tail_size + pos)
        f.write(record + _CLOSING_TAG + b"\n")
        f.truncate()

    def _read_locked(self, f):
        content = f.read()
        if not content.strip():
            return []
        entries = []
        for log in ET.fromstring(content).iter("Log"):
            details = {
                d.get("name"): _decode_detail(d.get("type", "str"), d.text)
                for d in log.iterfind("Details/Detail")
            }
            entries.append(LogEntry(
                timestamp=datetime.fromisoformat(log.findtext("Timestamp")),
                level=log.findtext("Level", "INFO"),
                source=log.findtext("Source", "Application"),
                message=log.findtext("Message", ""),
                details=details,
            ))
        return entries


def create_log_sink(log_format, log_dir=None):
    """Return a log sink for ``json``, ``xml`` or ``memory``."""
    value = (log_format or "").lower()
    if value == "memory":
        return MemoryLogSink()
    log_dir = log_dir or LOG_DIR
    if value == "json":
        return JsonLogSink(log_dir)
    if value == "xml":
        return XmlLogSink(log_dir)
    raise ValueError(f"Unsupported log format: {log_format}")
