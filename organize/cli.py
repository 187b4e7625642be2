"""Command-line interface for consolidating brand category files."""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

__all__ = ["main", "parse_args", "run_brands", "brand_entry_point"]

from organize.config import BRANDS, DATA_DIR, MERGED_FILENAME, get_brand_config
from organize.consolidator import consolidate_brand, remerge_brand
from organize.logging_config import setup_logging
from organize.models import BrandConfig, ConsolidationResult

EXIT_OK = 0
EXIT_FILE_ERRORS = 1
EXIT_USAGE = 2


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Merge scraped category files per brand into data/<brand>/products.json",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Organize a single brand
  organize-brands alloso

  # Organize every configured brand
  organize-brands --all

  # Rebuild wooami's catalog from files already in data/우아미/
  organize-brands wooami --remerge-only

  # Use another data directory and drop repeated product URLs
  organize-brands iloom --data-dir /mnt/scrapes --dedupe-key productUrl

  # Show configured brands
  organize-brands --list-brands
        """,
    )

    parser.add_argument(
        "brands",
        nargs="*",
        metavar="BRAND",
        help=f"Brand keys to organize. Choices: {list(BRANDS.keys())}",
    )
    parser.add_argument(
        "--all",
        action="store_true",
        help="Organize every configured brand",
    )
    parser.add_argument(
        "--data-dir",
        default=DATA_DIR,
        help=f"Directory holding raw category files (default: {DATA_DIR})",
    )
    parser.add_argument(
        "--remerge-only",
        action="store_true",
        help=f"Rebuild {MERGED_FILENAME} from files already in the brand directory; move nothing",
    )
    parser.add_argument(
        "--dedupe-key",
        metavar="FIELD",
        help="Keep only the first record for each value of FIELD (e.g. productUrl)",
    )
    parser.add_argument(
        "--list-brands",
        action="store_true",
        help="List configured brands and exit",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Console log level (default: INFO)",
    )
    parser.add_argument(
        "--no-log-file",
        action="store_true",
        help="Don't write the JSONL log file",
    )

    return parser.parse_args(argv)


def list_brands() -> None:
    print("Configured brands:")
    for key, config in BRANDS.items():
        flags = []
        if config.normalize != "none":
            flags.append(f"normalize={config.normalize}")
        if config.rescan_destination:
            flags.append("rescan")
        if config.reformat_on_relocate:
            flags.append("reformat")
        if config.exclude:
            flags.append(f"exclude={','.join(config.exclude)}")
        suffix = f"  [{'; '.join(flags)}]" if flags else ""
        print(f"  {key}: {config.name}/ <- {config.pattern}{suffix}")


def _print_summary(config: BrandConfig, result: ConsolidationResult) -> None:
    if result.catalog_written:
        print(
            f"{config.key}: Moved {result.moved_count} files to {result.brand_dir} "
            f"and wrote {result.merged_count} items to {MERGED_FILENAME}"
        )
    elif not result.catalog_path.exists():
        print(f"{config.key}: no catalog at {result.catalog_path}; nothing written")
    else:
        print(
            f"{config.key}: nothing new; kept {result.catalog_path} "
            f"({result.merged_count} items)"
        )
    for name in result.failed_files:
        print(f"  failed: {name}")


def run_brands(
    configs: List[BrandConfig],
    data_dir: Path,
    remerge_only: bool = False,
    dedupe_key: Optional[str] = None,
) -> int:
    """Organize each brand in turn and return the process exit code."""
    exit_code = EXIT_OK
    for config in configs:
        if remerge_only:
            result = remerge_brand(config, data_dir, dedupe_key=dedupe_key)
        else:
            result = consolidate_brand(config, data_dir, dedupe_key=dedupe_key)
        _print_summary(config, result)
        if not result.ok:
            exit_code = EXIT_FILE_ERRORS
    return exit_code


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for CLI."""
    args = parse_args(argv)

    if args.list_brands:
        list_brands()
        return EXIT_OK

    setup_logging(
        level=getattr(logging, args.log_level),
        log_to_file=not args.no_log_file,
    )

    if args.all:
        configs = list(BRANDS.values())
    else:
        configs = []
        for key in args.brands:
            config = get_brand_config(key)
            if config is None:
                print(f"Unknown brand: {key}. Available: {list(BRANDS.keys())}", file=sys.stderr)
                return EXIT_USAGE
            configs.append(config)

    if not configs:
        print("No brands given. Pass brand keys or --all (see --list-brands).", file=sys.stderr)
        return EXIT_USAGE

    data_dir = Path(args.data_dir)
    if not data_dir.is_dir():
        print(f"Data directory not found: {data_dir}", file=sys.stderr)
        return EXIT_USAGE

    return run_brands(
        configs,
        data_dir,
        remerge_only=args.remerge_only,
        dedupe_key=args.dedupe_key,
    )


def brand_entry_point(key: str):
    """Zero-argument console script for one brand (e.g. `organize-alloso`)."""

    def run() -> int:
        return main([key])

    run.__name__ = f"organize_{key}"
    return run


organize_alloso = brand_entry_point("alloso")
organize_casamia = brand_entry_point("casamia")
organize_dongsuh = brand_entry_point("dongsuh")
organize_flatpoint = brand_entry_point("flatpoint")
organize_hanssem = brand_entry_point("hanssem")
organize_iloom = brand_entry_point("iloom")
organize_jangin = brand_entry_point("jangin")
organize_livart = brand_entry_point("livart")
organize_villarecord = brand_entry_point("villarecord")
organize_wooami = brand_entry_point("wooami")


if __name__ == "__main__":
    sys.exit(main())
