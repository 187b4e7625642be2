"""Merge a brand's category files into one products.json.

Each brand's scraper drops `<prefix>-<category>.json` files into a flat
data directory. A run reads every matching file, merges the records in
file-then-record order, relocates the files into `data/<brand>/` and
rewrites `data/<brand>/products.json` from scratch.
"""

import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from organize.config import DATA_DIR, MERGED_FILENAME
from organize.logging_config import get_logger, log_organize_event
from organize.models import (
    BrandConfig,
    ConsolidationResult,
    FileOutcome,
)
from organize.normalize import Normalizer, category_from_filename, get_normalizer
from organize.relocate import relocate_file, rewrite_file, write_json

__all__ = [
    "BrandConsolidator",
    "CategoryFileError",
    "consolidate",
    "consolidate_brand",
    "remerge_brand",
    "make_matcher",
    "discover_files",
    "load_category_file",
    "dedupe_records",
]

logger = get_logger("consolidator")

MatchFn = Callable[[str], bool]
FileKeyFn = Callable[[str], str]


class CategoryFileError(ValueError):
    """Raised when a category file cannot be read or parsed."""


def make_matcher(config: BrandConfig) -> MatchFn:
    """Build the filename predicate for a brand (pattern minus deny-list)."""
    regex = config.regex
    excluded = set(config.exclude)

    def match_file(name: str) -> bool:
        if name == MERGED_FILENAME or name in excluded:
            return False
        return bool(regex.match(name))

    return match_file


def _default_file_key(name: str) -> str:
    stem = name[: -len(".json")] if name.lower().endswith(".json") else name
    return stem.split("-", 1)[1] if "-" in stem else stem


def discover_files(directory: Path, match_file: MatchFn) -> List[Path]:
    """List regular files in directory accepted by match_file, sorted by name.

    The merged catalog itself is never returned.
    """
    found = []
    for entry in sorted(directory.iterdir(), key=lambda p: p.name):
        if not entry.is_file() or entry.name == MERGED_FILENAME:
            continue
        if match_file(entry.name):
            found.append(entry)
    return found


def load_category_file(path: Path) -> Any:
    """Read and parse a category file.

    Raises:
        CategoryFileError: If the file cannot be read or is not valid JSON
    """
    try:
        with open(path, "r", encoding="utf-8-sig") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise CategoryFileError(f"invalid JSON: {e}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise CategoryFileError(f"cannot read file: {e}") from e


def dedupe_records(records: Iterable[Any], key: str) -> List[Any]:
    """Keep the first record for each value of `key`.

    Records without the key (or with a null value) are always kept.
    """
    seen: Set[str] = set()
    unique: List[Any] = []
    for record in records:
        value = record.get(key) if isinstance(record, dict) else None
        if value is None:
            unique.append(record)
            continue
        marker = json.dumps(value, sort_keys=True, ensure_ascii=False)
        if marker in seen:
            continue
        seen.add(marker)
        unique.append(record)
    return unique


class BrandConsolidator:
    """Consolidates one brand's category files.

    Args:
        source_dir: Flat directory holding raw category files
        brand_dir: Destination directory (created if missing)
        match_file: Predicate selecting this brand's filenames
        normalize: Optional per-record transform (record, category) -> record
        file_key: Maps a filename to the category passed to normalize
        rescan_destination: Also merge category files already in brand_dir
        reformat_on_relocate: Relocate by writing indented JSON, not by moving
        dedupe_key: Drop later records repeating this field's value
    """

    def __init__(
        self,
        source_dir: Path,
        brand_dir: Path,
        match_file: MatchFn,
        normalize: Optional[Normalizer] = None,
        file_key: FileKeyFn = _default_file_key,
        rescan_destination: bool = False,
        reformat_on_relocate: bool = False,
        dedupe_key: Optional[str] = None,
    ) -> None:
        self.source_dir = Path(source_dir)
        self.brand_dir = Path(brand_dir)
        self.match_file = match_file
        self.normalize = normalize
        self.file_key = file_key
        self.rescan_destination = rescan_destination
        self.reformat_on_relocate = reformat_on_relocate
        self.dedupe_key = dedupe_key

    @property
    def catalog_path(self) -> Path:
        return self.brand_dir / MERGED_FILENAME

    # =========================================================================
    # Per-file processing
    # =========================================================================

    def _read_records(self, path: Path, outcome: FileOutcome) -> Tuple[Any, List[Any]]:
        """Parse a file and return (raw data, records to merge).

        Parse failures are recorded on the outcome and re-raised.
        """
        try:
            data = load_category_file(path)
        except CategoryFileError as e:
            outcome.parse_error = str(e)
            logger.error(f"Skip file due to error: {path.name} - {e}")
            log_organize_event("file_skipped", {
                "file": path.name,
                "error": str(e),
            }, level=logging.DEBUG, logger_name="consolidator")
            raise

        if not isinstance(data, list):
            outcome.not_array = True
            logger.warning(
                f"{path.name}: top-level JSON is {type(data).__name__}, not an array; "
                f"contributing 0 records"
            )
            return data, []

        if self.normalize is None:
            records = list(data)
        else:
            category = self.file_key(path.name)
            records = []
            for raw in data:
                normalized = self.normalize(raw, category)
                if normalized is not None:
                    records.append(normalized)

        outcome.records = len(records)
        return data, records

    def _relocate(self, path: Path, data: Any, outcome: FileOutcome) -> None:
        if self.reformat_on_relocate:
            outcome.relocation = rewrite_file(path, self.brand_dir, data)
        else:
            outcome.relocation = relocate_file(path, self.brand_dir)

    # =========================================================================
    # Runs
    # =========================================================================

    def run(self) -> ConsolidationResult:
        """Merge, relocate and write the catalog.

        Raises:
            OSError: If the brand directory or catalog cannot be written
        """
        self.brand_dir.mkdir(parents=True, exist_ok=True)
        result = ConsolidationResult(brand_dir=self.brand_dir, catalog_path=self.catalog_path)

        files = discover_files(self.source_dir, self.match_file)
        logger.info(f"Found {len(files)} category files in {self.source_dir}")

        merged: List[Any] = []
        processed_names: Set[str] = set()

        for path in files:
            outcome = FileOutcome(filename=path.name)
            result.files.append(outcome)
            try:
                data, records = self._read_records(path, outcome)
            except CategoryFileError:
                # left in place so it can be fixed and picked up next run;
                # a rescan still merges the archived copy of the same name
                continue
            processed_names.add(path.name)
            merged.extend(records)
            self._relocate(path, data, outcome)

        if self.rescan_destination:
            merged.extend(self._rescan(processed_names, result))
        elif not processed_names and self.catalog_path.exists():
            return self._keep_existing(result)

        if self.dedupe_key:
            before = len(merged)
            merged = dedupe_records(merged, self.dedupe_key)
            if before != len(merged):
                logger.info(f"Dropped {before - len(merged)} duplicate records by '{self.dedupe_key}'")

        write_json(self.catalog_path, merged)
        result.merged_count = len(merged)
        result.catalog_written = True

        logger.info(
            f"Moved {result.moved_count} files to {self.brand_dir} and wrote "
            f"{result.merged_count} items to {MERGED_FILENAME}"
        )
        return result

    def _rescan(self, processed_names: Set[str], result: ConsolidationResult) -> List[Any]:
        """Re-merge category files relocated by earlier runs."""
        merged: List[Any] = []
        for path in discover_files(self.brand_dir, self.match_file):
            if path.name in processed_names:
                continue
            outcome = FileOutcome(filename=path.name)
            result.files.append(outcome)
            try:
                _, records = self._read_records(path, outcome)
            except CategoryFileError:
                continue
            logger.info(f"merged: {path.name} ({len(records)} items)")
            merged.extend(records)
        return merged

    def _keep_existing(self, result: ConsolidationResult) -> ConsolidationResult:
        """Nothing new to merge; leave the previous catalog as the current one."""
        try:
            existing = load_category_file(self.catalog_path)
        except CategoryFileError as e:
            logger.warning(f"Existing {MERGED_FILENAME} is unreadable ({e}); leaving it untouched")
            existing = None
        result.merged_count = len(existing) if isinstance(existing, list) else 0
        logger.warning(
            f"No readable category files in {self.source_dir}; keeping existing "
            f"{self.catalog_path} ({result.merged_count} items)"
        )
        return result

    def remerge(self) -> ConsolidationResult:
        """Rebuild the catalog from category files already in brand_dir.

        No files are moved. Useful after re-scraping details into the
        archived category files.
        """
        result = ConsolidationResult(brand_dir=self.brand_dir, catalog_path=self.catalog_path)
        if not self.brand_dir.is_dir():
            logger.warning(f"{self.brand_dir} does not exist; nothing to re-merge")
            return result

        files = discover_files(self.brand_dir, self.match_file)
        logger.info(f"Found {len(files)} category files in {self.brand_dir}")

        merged: List[Any] = []
        for i, path in enumerate(files, start=1):
            outcome = FileOutcome(filename=path.name)
            result.files.append(outcome)
            try:
                _, records = self._read_records(path, outcome)
            except CategoryFileError:
                continue
            with_details = sum(
                1 for r in records if isinstance(r, dict) and r.get("detailImages")
            )
            logger.info(
                f"  [{i}/{len(files)}] {path.name}: {len(records)} products "
                f"({with_details} with detail images)"
            )
            merged.extend(records)

        if self.dedupe_key:
            merged = dedupe_records(merged, self.dedupe_key)

        write_json(self.catalog_path, merged)
        result.merged_count = len(merged)
        result.catalog_written = True
        logger.info(f"Wrote {result.merged_count} items to {self.catalog_path}")
        return result


def consolidate(
    source_dir: Path,
    brand_dir: Path,
    match_file: MatchFn,
    normalize: Optional[Normalizer] = None,
    **options: Any,
) -> ConsolidationResult:
    """Run a one-off consolidation; see BrandConsolidator for options."""
    return BrandConsolidator(source_dir, brand_dir, match_file, normalize, **options).run()


def _consolidator_for(
    config: BrandConfig,
    data_dir: Path,
    dedupe_key: Optional[str],
) -> BrandConsolidator:
    return BrandConsolidator(
        source_dir=data_dir,
        brand_dir=data_dir / config.name,
        match_file=make_matcher(config),
        normalize=get_normalizer(config),
        file_key=lambda name: category_from_filename(name, config.key),
        rescan_destination=config.rescan_destination,
        reformat_on_relocate=config.reformat_on_relocate,
        dedupe_key=dedupe_key or config.dedupe_key,
    )


def consolidate_brand(
    config: BrandConfig,
    data_dir: Path = Path(DATA_DIR),
    dedupe_key: Optional[str] = None,
) -> ConsolidationResult:
    """Consolidate one configured brand under data_dir/<brand name>/."""
    data_dir = Path(data_dir)
    log_organize_event("brand_start", {
        "message": f"Organizing {config.key} ({config.name})",
        "brand": config.key,
        "data_dir": str(data_dir),
    })
    result = _consolidator_for(config, data_dir, dedupe_key).run()
    log_organize_event("brand_complete", _summary_data(config, result))
    return result


def remerge_brand(
    config: BrandConfig,
    data_dir: Path = Path(DATA_DIR),
    dedupe_key: Optional[str] = None,
) -> ConsolidationResult:
    """Rebuild a brand's catalog from its already-relocated category files."""
    result = _consolidator_for(config, Path(data_dir), dedupe_key).remerge()
    log_organize_event("brand_remerged", _summary_data(config, result))
    return result


def _summary_data(config: BrandConfig, result: ConsolidationResult) -> Dict[str, Any]:
    return {
        "message": f"{config.key}: {result.moved_count} moved, {result.merged_count} merged",
        "brand": config.key,
        "moved": result.moved_count,
        "merged": result.merged_count,
        "failed_files": result.failed_files,
        "catalog_written": result.catalog_written,
    }
