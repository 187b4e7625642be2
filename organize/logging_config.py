"""Logging setup for the organizer tools.

People running the scripts by hand get short colored lines on stdout.
Everything at DEBUG and above also goes to logs/<prefix>_<YYYYMMDD>.jsonl so a
run's skipped files and failed uploads can be grepped afterwards.
"""

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

__all__ = [
    "setup_logging",
    "get_logger",
    "log_organize_event",
    "LOG_DIR",
]

ROOT_LOGGER = "organize"
LOG_DIR = Path(__file__).parent.parent / "logs"

_LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}
_RESET = "\033[0m"


class ConsoleFormatter(logging.Formatter):
    """`HH:MM:SS [LEVEL] message`, level colored when writing to a terminal."""

    def __init__(self, use_color: bool):
        super().__init__("%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S")
        self.use_color = use_color

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        color = _LEVEL_COLORS.get(record.levelno) if self.use_color else None
        if color:
            tag = f"[{record.levelname}]"
            line = line.replace(tag, f"[{color}{record.levelname}{_RESET}]", 1)
        return line


class DailyJsonlHandler(logging.Handler):
    """Appends one JSON object per record; the file name carries the date."""

    def __init__(self, log_dir: Path, prefix: str):
        super().__init__(level=logging.DEBUG)
        self.log_dir = Path(log_dir)
        self.prefix = prefix
        self.log_dir.mkdir(parents=True, exist_ok=True)

    @property
    def current_path(self) -> Path:
        return self.log_dir / f"{self.prefix}_{datetime.now():%Y%m%d}.jsonl"

    def emit(self, record: logging.LogRecord) -> None:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        event_type = getattr(record, "event_type", None)
        if event_type:
            entry["event_type"] = event_type
            entry.update(getattr(record, "event_data", {}))
        try:
            with open(self.current_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
        except OSError:
            self.handleError(record)


def setup_logging(
    level: int = logging.INFO,
    log_to_file: bool = True,
    log_to_console: bool = True,
    log_dir: Optional[Path] = None,
    prefix: str = "organize",
) -> logging.Logger:
    """Configure the `organize` logger tree.

    Args:
        level: Minimum level printed to the console
        log_to_file: Also write JSONL records (always at DEBUG)
        log_to_console: Print to stdout
        log_dir: Where JSONL files go (default: <project>/logs)
        prefix: JSONL file name prefix, e.g. "organize" or "upload"

    Returns:
        The root `organize` logger
    """
    root = logging.getLogger(ROOT_LOGGER)
    root.handlers.clear()
    root.setLevel(logging.DEBUG if log_to_file else level)

    if log_to_console:
        console = logging.StreamHandler(sys.stdout)
        console.setLevel(level)
        console.setFormatter(ConsoleFormatter(use_color=sys.stdout.isatty()))
        root.addHandler(console)

    if log_to_file:
        root.addHandler(DailyJsonlHandler(log_dir or LOG_DIR, prefix))

    return root


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """Logger named `organize.<name>` (or the root `organize` logger)."""
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def log_organize_event(
    event_type: str,
    data: Dict[str, Any],
    level: int = logging.INFO,
    logger_name: str = ROOT_LOGGER,
) -> None:
    """Log a structured event such as `brand_complete` or `image_failed`.

    `data["message"]`, when present, is the human-readable line; every other
    key is stored as a field of the JSONL entry.
    """
    fields = {k: v for k, v in data.items() if k != "message"}
    get_logger(logger_name).log(
        level,
        data.get("message", event_type),
        extra={"event_type": event_type, "event_data": fields},
    )
