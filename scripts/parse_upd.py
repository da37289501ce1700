#!/usr/bin/env python3
"""Diagnostics script: parse a UPD archive or check MoySklad access.

Never creates documents in MoySklad.

Usage:
    python scripts/parse_upd.py path/to/upd.zip
    python scripts/parse_upd.py --status

Requirements:
    - APP_MOYSKLAD_API_TOKEN environment variable set for --status
"""

import argparse
import logging
import sys
import tempfile
from pathlib import Path

from upd_loader.parsing.parser import UPDParser
from upd_loader.processing.service import UPDProcessor
from upd_loader.shared.config import get_settings
from upd_loader.shared.context import RequestContext
from upd_loader.shared.errors import ParsingError
from upd_loader.shared.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def parse_archive(archive: Path) -> int:
    """Parse an archive and print the bundle as JSON.

    Args:
        archive: UPD ZIP archive

    Returns:
        Process exit code
    """
    settings = get_settings()
    parser = UPDParser(settings)
    ctx = RequestContext()

    with tempfile.TemporaryDirectory(prefix="upd_", dir=settings.ensure_temp_dir()) as scratch:
        try:
            bundle = parser.parse_archive(archive, Path(scratch) / "extract", ctx)
        except ParsingError as e:
            logger.error(f"Failed to parse {archive} ({e.kind.value}): {e.message}")
            return 1

    print(bundle.model_dump_json(indent=2))
    print()
    print(bundle.summary())
    return 0


def show_status() -> int:
    """Print MoySklad API access diagnostics.

    Returns:
        Process exit code
    """
    processor = UPDProcessor(get_settings())
    api_status = processor.get_moysklad_status()
    print(api_status.model_dump_json(indent=2, exclude_none=True))
    return 0 if api_status.success else 1


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Parse a UPD archive or check MoySklad access")
    parser.add_argument(
        "archive",
        type=Path,
        nargs="?",
        help="Path to the UPD ZIP archive",
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Check MoySklad API access instead of parsing",
    )
    args = parser.parse_args(argv)

    setup_logging(get_settings())

    if args.status:
        return show_status()
    if args.archive is None:
        parser.error("archive path is required unless --status is given")
    if not args.archive.is_file():
        parser.error(f"archive not found: {args.archive}")
    return parse_archive(args.archive)


if __name__ == "__main__":
    sys.exit(main())
