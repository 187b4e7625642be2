"""Brand catalog organizer for scraped furniture product data."""

__version__ = "0.1.0"

# Re-export main components for convenient imports
from organize.config import BRANDS, DATA_DIR, MERGED_FILENAME, get_brand_config
from organize.consolidator import (
    BrandConsolidator,
    consolidate,
    consolidate_brand,
    remerge_brand,
)
from organize.models import (
    BrandConfig,
    ConsolidationResult,
    RelocationResult,
    RelocationStatus,
)
from organize.relocate import relocate_file

__all__ = [
    # Version
    "__version__",
    # Config
    "BRANDS",
    "DATA_DIR",
    "MERGED_FILENAME",
    "get_brand_config",
    # Models
    "BrandConfig",
    "ConsolidationResult",
    "RelocationResult",
    "RelocationStatus",
    # Core functions
    "BrandConsolidator",
    "consolidate",
    "consolidate_brand",
    "remerge_brand",
    "relocate_file",
]
