"""Data models for brand consolidation and image uploads."""

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Pattern, Tuple

__all__ = [
    "BrandConfig",
    "RelocationStatus",
    "RelocationResult",
    "FileOutcome",
    "ConsolidationResult",
    "UploadOutcome",
    "UploadSummary",
]


@dataclass(frozen=True)
class BrandConfig:
    """Per-brand settings for the consolidator.

    `key` is the ASCII filename prefix and source tag; `name` is the
    brand's display name and the name of its directory under data/.
    """

    key: str
    name: str
    pattern: str
    ignore_case: bool = False
    exclude: Tuple[str, ...] = ()

    # One of "none", "canonical", "tag_source"
    normalize: str = "none"

    # Re-merge category files already relocated into the brand directory
    rescan_destination: bool = False

    # Write relocated files back out as indented JSON instead of moving bytes
    reformat_on_relocate: bool = False

    # Optional record field used to drop duplicates during merge
    dedupe_key: Optional[str] = None

    @property
    def regex(self) -> Pattern[str]:
        flags = re.IGNORECASE if self.ignore_case else 0
        return re.compile(self.pattern, flags)


class RelocationStatus(str, Enum):
    MOVED = "moved"
    COPIED = "copied"
    REWRITTEN = "rewritten"
    FAILED = "failed"


@dataclass
class RelocationResult:
    """Outcome of relocating one category file into the brand directory."""

    status: RelocationStatus
    source: Path
    destination: Path
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is not RelocationStatus.FAILED


@dataclass
class FileOutcome:
    """What happened to a single category file during a run."""

    filename: str
    records: int = 0
    parse_error: Optional[str] = None
    not_array: bool = False
    relocation: Optional[RelocationResult] = None

    @property
    def failed(self) -> bool:
        if self.parse_error is not None:
            return True
        return self.relocation is not None and not self.relocation.ok


@dataclass
class ConsolidationResult:
    """Summary of one consolidation run."""

    brand_dir: Path
    catalog_path: Path
    merged_count: int = 0
    catalog_written: bool = False
    files: List[FileOutcome] = field(default_factory=list)

    @property
    def moved_count(self) -> int:
        return sum(
            1 for f in self.files if f.relocation is not None and f.relocation.ok
        )

    @property
    def failed_files(self) -> List[str]:
        return [f.filename for f in self.files if f.failed]

    @property
    def ok(self) -> bool:
        return not self.failed_files


@dataclass
class UploadOutcome:
    """Result of storing a single product image."""

    image_url: str
    object_key: Optional[str] = None
    stored_url: Optional[str] = None
    size_bytes: int = 0
    skipped: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class UploadSummary:
    total: int = 0
    uploaded: int = 0
    skipped: int = 0
    failed: int = 0
    interrupted: bool = False
    outcomes: List[UploadOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed == 0 and not self.interrupted
