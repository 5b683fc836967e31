#!/usr/bin/env python3
"""
Ingest the current guest export and print the visible guest list.

Usage:
    python scripts/sync_guests.py [--rebuild-index] [--include-checked-out] [--include-failed]
                                  [--template NAME] [--status STATUS]

Options:
    --rebuild-index         Fold every archived/local export into the phone index first
    --include-checked-out   Keep guests whose checkout date has passed
    --include-failed        Keep guests whose last delivery failed
    --template NAME         Only guests whose last template matches
    --status STATUS         Only guests whose delivery status matches
"""
# Load environment variables from .env FIRST, before any other imports
from pathlib import Path
from dotenv import load_dotenv
load_dotenv(Path(__file__).parent.parent / ".env")

import argparse
import asyncio
import json
import logging
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from instay.services.guest_service import get_guest_service
from instay.services.visibility import GuestQuery

logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


async def sync_guests(query: GuestQuery, rebuild_index: bool = False) -> list[dict]:
    """
    Ingest the current export and return the visible guests.

    Args:
        query: Visibility options
        rebuild_index: Re-scan all archived exports into the phone index

    Returns:
        Guest dicts, most recently active first
    """
    service = get_guest_service()

    if rebuild_index:
        service.rebuild_occurrence_index()

    snapshot = service.load_snapshot()
    if snapshot is not None:
        service.ingest_snapshot(snapshot)

    guests = await service.get_guests(query)
    return [g.to_dict() for g in guests]


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Ingest guest export and list visible guests')
    parser.add_argument('--rebuild-index', action='store_true', help='Rebuild the phone index from all exports')
    parser.add_argument('--include-checked-out', action='store_true', help='Include checked-out guests')
    parser.add_argument('--include-failed', action='store_true', help='Include failed deliveries')
    parser.add_argument('--template', type=str, help='Filter by template name')
    parser.add_argument('--status', type=str, help='Filter by delivery status')
    args = parser.parse_args()

    query = GuestQuery(
        include_checked_out=args.include_checked_out,
        include_failed=args.include_failed,
        template=args.template,
        status=args.status,
    )
    guests = asyncio.run(sync_guests(query, rebuild_index=args.rebuild_index))
    print(json.dumps(guests, indent=2, ensure_ascii=False))
