"""Upload product images referenced by the merged catalogs to object storage.

Reads data/<brand>/products.json for the selected brands (or explicit
catalog paths), stores every distinct imageUrl in the bucket and records
the mapping in a resumable manifest. Credentials come from .env.local or
.env:

    STORAGE_ACCESS_KEY_ID, STORAGE_SECRET_ACCESS_KEY    (required)
    STORAGE_ENDPOINT_URL, STORAGE_REGION, STORAGE_BUCKET,
    STORAGE_PUBLIC_BASE_URL                             (optional)
"""

import argparse
import sys
import time
from pathlib import Path
from typing import List, Optional, Tuple

from organize.config import (
    BRANDS,
    DATA_DIR,
    FAILED_PATH,
    MANIFEST_PATH,
    MERGED_FILENAME,
    UPLOAD_MAX_WORKERS,
    get_brand_config,
    load_env,
)
from organize.logging_config import setup_logging
from organize.relocate import write_json
from organize.shutdown import get_shutdown_handler
from organize.storage import (
    ImageStorageUploader,
    StorageConfigError,
    StorageSettings,
    UploadManifest,
    annotate_catalog,
    collect_image_jobs,
)

__all__ = ["main", "parse_args", "resolve_catalogs"]

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Copy product images into object storage",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Upload images for every brand catalog under data/
  upload-images

  # Only alloso and iloom, 8 parallel uploads, write URLs back to the catalogs
  upload-images --brand alloso --brand iloom --workers 8 --annotate

  # See how many images would be uploaded
  upload-images --dry-run
        """,
    )
    parser.add_argument(
        "--brand",
        action="append",
        default=[],
        metavar="KEY",
        help="Brand key to upload (repeatable; default: all brands with a catalog)",
    )
    parser.add_argument(
        "--catalog",
        action="append",
        default=[],
        metavar="PATH",
        help="Explicit products.json path (repeatable)",
    )
    parser.add_argument(
        "--data-dir",
        default=DATA_DIR,
        help=f"Data directory (default: {DATA_DIR})",
    )
    parser.add_argument(
        "--manifest",
        default=MANIFEST_PATH,
        help=f"Progress manifest path (default: {MANIFEST_PATH})",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=UPLOAD_MAX_WORKERS,
        help=f"Parallel uploads (default: {UPLOAD_MAX_WORKERS})",
    )
    parser.add_argument(
        "--annotate",
        action="store_true",
        help="Write storageImageUrl into catalog records after uploading",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Count images to upload without downloading anything",
    )
    parser.add_argument(
        "--no-log-file",
        action="store_true",
        help="Don't write the JSONL log file",
    )
    return parser.parse_args(argv)


def resolve_catalogs(
    data_dir: Path,
    brand_keys: List[str],
    catalog_paths: List[str],
) -> List[Tuple[str, Path]]:
    """Turn CLI selections into (brand label, catalog path) pairs.

    Raises:
        ValueError: For unknown brand keys
    """
    catalogs: List[Tuple[str, Path]] = []

    for raw in catalog_paths:
        path = Path(raw)
        label = path.parent.name or "catalog"
        for config in BRANDS.values():
            if config.name == label:
                label = config.key
                break
        catalogs.append((label, path))

    if brand_keys:
        for key in brand_keys:
            config = get_brand_config(key)
            if config is None:
                raise ValueError(f"Unknown brand: {key}. Available: {list(BRANDS.keys())}")
            catalogs.append((config.key, data_dir / config.name / MERGED_FILENAME))
    elif not catalog_paths:
        for config in BRANDS.values():
            path = data_dir / config.name / MERGED_FILENAME
            if path.exists():
                catalogs.append((config.key, path))

    return catalogs


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(log_to_file=not args.no_log_file, prefix="upload")

    try:
        catalogs = resolve_catalogs(Path(args.data_dir), args.brand, args.catalog)
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return EXIT_CONFIG

    if not catalogs:
        print(f"No catalogs found under {args.data_dir}. Run organize-brands first.")
        return EXIT_OK

    jobs = collect_image_jobs(catalogs)
    manifest = UploadManifest.load(Path(args.manifest))
    remaining = sum(1 for _, url in jobs if url not in manifest.processed)

    print(f"\n{'=' * 60}")
    print(f"Catalogs: {len(catalogs)}")
    print(f"Distinct images: {len(jobs)}")
    print(f"Already stored: {len(jobs) - remaining}")
    print(f"Remaining: {remaining}")
    print(f"{'=' * 60}\n")

    if args.dry_run:
        return EXIT_OK

    env_file = load_env()
    if env_file:
        print(f"Loaded credentials from {env_file}")
    try:
        settings = StorageSettings.from_env()
    except StorageConfigError as e:
        print(str(e), file=sys.stderr)
        return EXIT_CONFIG

    start = time.time()
    with get_shutdown_handler() as shutdown:
        shutdown.register_cleanup(manifest.save)
        uploader = ImageStorageUploader.from_settings(
            settings,
            manifest=manifest,
            max_workers=args.workers,
            shutdown=shutdown,
        )
        summary = uploader.upload_all(jobs)
    elapsed = (time.time() - start) / 60

    if args.annotate:
        for label, path in catalogs:
            if not path.exists():
                continue
            updated = annotate_catalog(path, manifest.processed)
            print(f"{label}: annotated {updated} records in {path}")

    print(f"\n{'=' * 60}")
    print("Upload finished" + (" (interrupted)" if summary.interrupted else ""))
    print(f"{'=' * 60}")
    print(f"Uploaded: {summary.uploaded}")
    print(f"Skipped (already stored): {summary.skipped}")
    print(f"Failed: {summary.failed}")
    print(f"Elapsed: {elapsed:.1f} min")

    if manifest.failed:
        write_json(Path(FAILED_PATH), manifest.failed)
        print(f"Failed list: {FAILED_PATH}")

    return EXIT_OK if summary.ok else EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
