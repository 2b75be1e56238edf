"""JSONL event logging for discovery and execution."""

import json
import os
import threading
import traceback
from collections.abc import Iterable, Iterator
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any


# Log level ordering
LOG_LEVELS = {"debug": 0, "info": 1, "warning": 2, "error": 3}

# Components that write their own log file
LOG_COMPONENTS = ("discovery", "runner", "credentials", "groups")


def default_log_dir() -> Path:
    """Base directory for logs when none is configured."""
    home = Path(os.environ.get("HOME", "/tmp"))
    return home / "var" / "log" / "scriptdeck"


def get_log_path(component: str, base_path: Path | None = None) -> Path:
    """
    Get the log file path for a component.

    Args:
        component: Component name (e.g. "runner", "credentials")
        base_path: Base directory for logs (default: ~/var/log/scriptdeck)

    Returns:
        Path to the log file: {base}/{date}/{component}.jsonl
    """
    if base_path is None:
        base_path = default_log_dir()

    today = date.today().isoformat()
    return base_path / today / f"{component}.jsonl"


class EventLogger:
    """
    JSONL logger for one component.

    Writes structured log entries to a JSONL file. Safe to share between
    worker threads.
    """

    def __init__(self, component: str, log_path: Path | None = None):
        """
        Initialize logger.

        Args:
            component: Name of the component being logged
            log_path: Path to log file (default: auto-generated)
        """
        self.component = component
        self.log_path = log_path or get_log_path(component)
        self._file = None
        self._lock = threading.Lock()

    def _ensure_file(self) -> None:
        """Ensure log file is open."""
        if self._file is None:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.log_path, "a")

    def _log(self, level: str, message: str, **extra: Any) -> None:
        """Write a log entry."""
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "component": self.component,
            "message": message,
            **extra,
        }
        line = json.dumps(entry, default=str) + "\n"
        with self._lock:
            self._ensure_file()
            self._file.write(line)
            self._file.flush()

    def debug(self, message: str, **extra: Any) -> None:
        """Log debug message."""
        self._log("debug", message, **extra)

    def info(self, message: str, **extra: Any) -> None:
        """Log info message."""
        self._log("info", message, **extra)

    def warning(self, message: str, **extra: Any) -> None:
        """Log warning message."""
        self._log("warning", message, **extra)

    def error(self, message: str, **extra: Any) -> None:
        """Log error message."""
        self._log("error", message, **extra)

    def exception(self, message: str, exc: BaseException, **extra: Any) -> None:
        """Log an error together with the formatted traceback of exc."""
        self._log(
            "error",
            message,
            error=str(exc),
            traceback="".join(traceback.format_exception(exc)),
            **extra,
        )

    def close(self) -> None:
        """Close the log file."""
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None

    def __enter__(self) -> "EventLogger":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()


def _read_entries(log_file: Path) -> Iterator[dict[str, Any]]:
    """Yield parsed entries from one JSONL file, skipping corrupt lines."""
    if not log_file.exists():
        return
    with open(log_file, errors="replace") as f:
        for line in f:
            if not line.strip():
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(entry, dict):
                yield entry


def query_logs(
    base_path: Path,
    components: str | Iterable[str] | None = None,
    log_date: date | None = None,
    min_level: str = "debug",
    limit: int | None = None,
) -> list[dict[str, Any]]:
    """
    Query log entries across one or more components.

    Entries from several components are merged in timestamp order, so a
    group run reads as one timeline.

    Args:
        base_path: Base directory for logs
        components: One component name, several, or None for all of LOG_COMPONENTS
        log_date: Date to query (default: today)
        min_level: Minimum log level to include
        limit: Maximum number of entries to return (the earliest ones)

    Returns:
        List of log entries matching criteria
    """
    if components is None:
        components = LOG_COMPONENTS
    elif isinstance(components, str):
        components = (components,)
    else:
        components = tuple(components)

    day_dir = base_path / (log_date or date.today()).isoformat()
    min_level_num = LOG_LEVELS.get(min_level, 0)

    results = [
        entry
        for component in components
        for entry in _read_entries(day_dir / f"{component}.jsonl")
        if LOG_LEVELS.get(entry.get("level", "debug"), 0) >= min_level_num
    ]
    if len(components) > 1:
        # ISO timestamps in UTC sort lexically
        results.sort(key=lambda e: str(e.get("timestamp", "")))

    return results[:limit] if limit else results
