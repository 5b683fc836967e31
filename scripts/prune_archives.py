#!/usr/bin/env python3
"""
Prune archived guest exports, keeping the newest archive per date.

Archives are grouped by the date stamp in their filename (YYYY-MM-DD or
YYYYMMDD); within a group only the most recently modified file is kept.
Files without a date stamp are never touched.

Usage:
    python scripts/prune_archives.py [--dir DIR] [--delete]

Options:
    --dir DIR   Archive directory (default: INSTAY_ARCHIVE_PATH)
    --delete    Actually delete files (default is a dry run)
"""
# Load environment variables from .env FIRST, before any other imports
from pathlib import Path
from dotenv import load_dotenv
load_dotenv(Path(__file__).parent.parent / ".env")

import argparse
import logging
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import settings
from instay.services.snapshot_source import ArchiveSnapshotSource

logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


def prune_archives(directory: str = None, dry_run: bool = True) -> dict:
    """
    Prune superseded archives.

    Args:
        directory: Archive directory (default from settings)
        dry_run: If True, only report what would be removed

    Returns:
        Stats dict
    """
    source = ArchiveSnapshotSource(directory or settings.archive_path)
    plan = source.prune_plan()
    stats = {
        'archives': len(source.list_archives()),
        'removable': len(plan),
        'removed': 0,
    }

    if not plan:
        logger.info("Nothing to prune")
        return stats

    removed = source.prune(dry_run=dry_run)
    stats['removed'] = len(removed)

    if dry_run:
        logger.info(f"DRY RUN: {stats['removable']} archives would be removed. Use --delete to remove.")
    else:
        logger.info(f"Removed {stats['removed']} of {stats['removable']} archives")
    return stats


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Keep only the newest guest export archive per date')
    parser.add_argument('--dir', type=str, help='Archive directory')
    parser.add_argument('--delete', action='store_true', help='Actually delete files')
    args = parser.parse_args()

    prune_archives(directory=args.dir, dry_run=not args.delete)
