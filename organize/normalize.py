"""Per-record normalizers applied while merging category files.

A normalizer takes a raw record and the category key derived from the
file it came from, and returns the record to merge (or None to drop it).
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from organize.logging_config import get_logger
from organize.models import BrandConfig

__all__ = [
    "Normalizer",
    "CANONICAL_FIELDS",
    "category_from_filename",
    "utc_timestamp",
    "canonical_normalizer",
    "tag_source_normalizer",
    "get_normalizer",
]

logger = get_logger("normalize")

Normalizer = Callable[[Any, str], Optional[Dict[str, Any]]]

# Fields copied from the raw record, defaulting to None
CANONICAL_FIELDS = ("title", "price", "productUrl", "imageUrl")


def category_from_filename(filename: str, prefix: str) -> str:
    """Strip '<prefix>-' and '.json' from a category filename.

    >>> category_from_filename("alloso-sofa.json", "alloso")
    'sofa'
    """
    name = filename
    lead = f"{prefix}-"
    if name.lower().startswith(lead.lower()):
        name = name[len(lead):]
    if name.lower().endswith(".json"):
        name = name[: -len(".json")]
    return name


def utc_timestamp() -> str:
    """Current time as ISO-8601 UTC with millisecond precision, e.g. 2025-01-01T00:00:00.000Z"""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def canonical_normalizer(source: str, brand: str) -> Normalizer:
    """Map raw records onto the fixed field subset used by the listing pages."""

    def normalize(record: Any, category: str) -> Optional[Dict[str, Any]]:
        if not isinstance(record, dict):
            logger.warning(f"Skipping non-object record in {source}-{category}: {record!r:.80}")
            return None

        normalized: Dict[str, Any] = {
            "source": source,
            "brand": brand,
            "category": category,
        }
        for key in CANONICAL_FIELDS:
            normalized[key] = record.get(key)
        normalized["capturedAt"] = record.get("capturedAt") or utc_timestamp()
        return normalized

    return normalize


def tag_source_normalizer(source: str) -> Normalizer:
    """Keep every raw field and stamp the record with its source."""

    def normalize(record: Any, category: str) -> Optional[Dict[str, Any]]:
        if not isinstance(record, dict):
            logger.warning(f"Skipping non-object record in {source}-{category}: {record!r:.80}")
            return None
        return {**record, "source": source}

    return normalize


def get_normalizer(config: BrandConfig) -> Optional[Normalizer]:
    """Build the normalizer for a brand, or None for pass-through brands.

    Raises:
        ValueError: If the brand names an unknown normalization mode
    """
    if config.normalize == "none":
        return None
    if config.normalize == "canonical":
        return canonical_normalizer(config.key, config.name)
    if config.normalize == "tag_source":
        return tag_source_normalizer(config.key)
    raise ValueError(f"Unknown normalization mode for {config.key}: {config.normalize}")
