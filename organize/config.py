"""Configuration and constants for the brand organizer."""

import os
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

from organize.models import BrandConfig

__all__ = [
    "DATA_DIR",
    "MERGED_FILENAME",
    "JSON_INDENT",
    "BRANDS",
    "get_brand_config",
    "brand_keys",
    "load_env",
    "STORAGE_BUCKET",
    "STORAGE_PREFIX",
    "DOWNLOAD_HEADERS",
    "DOWNLOAD_TIMEOUT",
    "MAX_RETRIES",
    "RETRY_BACKOFF_BASE",
    "MAX_RETRY_BACKOFF",
    "UPLOAD_DELAY",
    "UPLOAD_MAX_WORKERS",
    "MANIFEST_PATH",
    "FAILED_PATH",
]

_PROJECT_ROOT = Path(__file__).parent.parent

# Flat directory holding raw <prefix>-<category>.json files
DATA_DIR = os.getenv("ORGANIZE_DATA_DIR", "data")

# Name of the merged catalog written into each brand directory
MERGED_FILENAME = "products.json"
JSON_INDENT = 2


# =============================================================================
# Brand Table
# =============================================================================
# One entry per brand. Variant behavior (deny-lists, normalization,
# destination rescans) lives here rather than in per-brand scripts.

BRANDS: Dict[str, BrandConfig] = {
    "alloso": BrandConfig(
        key="alloso",
        name="알로소",
        pattern=r"^alloso-.*\.json$",
        normalize="canonical",
    ),
    "casamia": BrandConfig(
        key="casamia",
        name="까사미아",
        pattern=r"^casamia-.*\.json$",
    ),
    "dongsuh": BrandConfig(
        key="dongsuh",
        name="동서가구",
        pattern=r"^dongsuh-.*\.json$",
        normalize="canonical",
    ),
    "flatpoint": BrandConfig(
        key="flatpoint",
        name="플랫포인트",
        pattern=r"^flatpoint-.*\.json$",
        ignore_case=True,
        reformat_on_relocate=True,
    ),
    "hanssem": BrandConfig(
        key="hanssem",
        name="한샘",
        pattern=r"^hanssem-.*\.json$",
    ),
    "iloom": BrandConfig(
        key="iloom",
        name="일룸",
        pattern=r"^iloom-[^/]+\.json$",
        normalize="tag_source",
        # XHR captures from the listing API, not category files
        exclude=("iloom-products-xhr.json", "iloom-products-multi.json"),
    ),
    "jangin": BrandConfig(
        key="jangin",
        name="장인가구",
        pattern=r"^jangin-.*\.json$",
        rescan_destination=True,
    ),
    "livart": BrandConfig(
        key="livart",
        name="리바트",
        pattern=r"^livart-.*\.json$",
    ),
    "villarecord": BrandConfig(
        key="villarecord",
        name="빌라레코드",
        pattern=r"^villarecord-.*\.json$",
    ),
    "wooami": BrandConfig(
        key="wooami",
        name="우아미",
        pattern=r"^wooami-.*\.json$",
        ignore_case=True,
        reformat_on_relocate=True,
    ),
}


def get_brand_config(key: str) -> Optional[BrandConfig]:
    """Get the configuration for a brand key (case-insensitive)."""
    return BRANDS.get(key.lower())


def brand_keys() -> List[str]:
    return list(BRANDS.keys())


# =============================================================================
# Environment
# =============================================================================

def load_env(root: Optional[Path] = None) -> Optional[Path]:
    """Load storage credentials from .env.local, falling back to .env.

    Args:
        root: Directory to look in (default: current working directory,
              then the project root)

    Returns:
        Path of the file that was loaded, or None if neither exists
    """
    candidates = [root] if root is not None else [Path.cwd(), _PROJECT_ROOT]
    for base in candidates:
        for name in (".env.local", ".env"):
            env_path = base / name
            if env_path.exists():
                load_dotenv(dotenv_path=env_path)
                return env_path
    return None


# =============================================================================
# Image Upload Settings
# =============================================================================

STORAGE_BUCKET = "product-images"
STORAGE_PREFIX = "products"

# Some brand CDNs reject non-browser clients
DOWNLOAD_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
}
DOWNLOAD_TIMEOUT = 30

# Retry settings with exponential backoff
MAX_RETRIES = 3
RETRY_BACKOFF_BASE = 2.0
MAX_RETRY_BACKOFF = 30.0

# Pause after each upload (seconds)
UPLOAD_DELAY = 0.1

UPLOAD_MAX_WORKERS = int(os.getenv("UPLOAD_MAX_WORKERS", "4"))

# Resumable progress and failure reports
MANIFEST_PATH = "image-upload-log.json"
FAILED_PATH = "image-upload-failed.json"
