#!/usr/bin/env python3
"""
Force-sync the phone -> name map from the current guest export.

Every mapping present in the export overwrites the stored one; legacy
bare-string entries are converted to the structured shape.

Usage:
    python scripts/sync_name_map.py [--remote FILE]

Options:
    --remote FILE   Also adopt entries from another name-map JSON file
                    (only phones missing locally)
"""
# Load environment variables from .env FIRST, before any other imports
from pathlib import Path
from dotenv import load_dotenv
load_dotenv(Path(__file__).parent.parent / ".env")

import argparse
import json
import logging
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from instay.services.guest_service import get_guest_service

logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


def sync_name_map(remote_path: str = None) -> dict:
    """
    Sync the name map.

    Args:
        remote_path: Optional name-map file merged in before the sync

    Returns:
        {"updated": int, "total": int, "adopted": int}
    """
    service = get_guest_service()

    adopted = service.merge_remote_name_map_file(remote_path) if remote_path else 0

    result = service.sync_name_map_from_snapshot()
    result["adopted"] = adopted
    return result


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Force-sync phone name map from guest export')
    parser.add_argument('--remote', type=str, help='Name-map JSON file to merge first')
    args = parser.parse_args()

    result = sync_name_map(remote_path=args.remote)
    print(json.dumps(result))
