"""Relocate category files into their brand directory.

Moves are attempted first; when the rename fails (typically EXDEV across
filesystems) the file is copied and the original removed. The caller gets
a RelocationResult instead of an exception so it can keep going.
"""

import json
import logging
import os
import shutil
from pathlib import Path
from typing import Any, Optional

from organize.config import JSON_INDENT
from organize.logging_config import get_logger, log_organize_event
from organize.models import RelocationResult, RelocationStatus

__all__ = [
    "relocate_file",
    "rewrite_file",
    "write_json",
]

logger = get_logger("relocate")


def write_json(path: Path, data: Any) -> None:
    """Write data as indented UTF-8 JSON, replacing any existing file."""
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=JSON_INDENT)


def _copy_then_delete(src: Path, dest: Path) -> None:
    shutil.copy2(src, dest)
    src.unlink()


def relocate_file(src: Path, dest_dir: Path) -> RelocationResult:
    """Move src into dest_dir under its original name.

    Args:
        src: File to relocate
        dest_dir: Existing destination directory

    Returns:
        RelocationResult with status MOVED, COPIED (fallback) or FAILED
    """
    dest = dest_dir / src.name

    try:
        os.replace(src, dest)
        result = RelocationResult(RelocationStatus.MOVED, src, dest)
    except OSError as move_error:
        logger.debug(f"Rename failed for {src.name} ({move_error}), falling back to copy")
        try:
            _copy_then_delete(src, dest)
            result = RelocationResult(RelocationStatus.COPIED, src, dest)
        except OSError as copy_error:
            result = RelocationResult(
                RelocationStatus.FAILED, src, dest, error=str(copy_error)
            )

    _log_relocation(result)
    return result


def rewrite_file(src: Path, dest_dir: Path, data: Any) -> RelocationResult:
    """Write already-parsed data into dest_dir as indented JSON, then remove src.

    A source file that cannot be removed is reported as FAILED even though
    the formatted copy exists, since it will be picked up again next run.
    """
    dest = dest_dir / src.name
    try:
        write_json(dest, data)
    except OSError as e:
        result = RelocationResult(RelocationStatus.FAILED, src, dest, error=str(e))
        _log_relocation(result)
        return result

    error: Optional[str] = None
    try:
        src.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        error = f"wrote {dest.name} but could not remove original: {e}"

    status = RelocationStatus.FAILED if error else RelocationStatus.REWRITTEN
    result = RelocationResult(status, src, dest, error=error)
    _log_relocation(result)
    return result


def _log_relocation(result: RelocationResult) -> None:
    message = f"{result.status.value}: {result.source.name} -> {result.destination.parent.name}/"
    if result.error:
        message += f" ({result.error})"
    log_organize_event(
        "file_relocated" if result.ok else "relocation_failed",
        {
            "message": message,
            "file": result.source.name,
            "destination": str(result.destination),
            "status": result.status.value,
            "error": result.error,
        },
        level=logging.INFO if result.ok else logging.ERROR,
        logger_name="relocate",
    )
