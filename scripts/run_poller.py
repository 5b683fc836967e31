#!/usr/bin/env python3
"""
Run the guest export and message poller in the foreground.

New messages are logged as they arrive. Stop with Ctrl+C.

Usage:
    python scripts/run_poller.py
"""
# Load environment variables from .env FIRST, before any other imports
from pathlib import Path
from dotenv import load_dotenv
load_dotenv(Path(__file__).parent.parent / ".env")

import logging
import sys
import time

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from instay.services.snapshot_poller import get_snapshot_poller

logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


def log_message(message: dict) -> None:
    logger.info(f"[message] {message['direction']} {message['id']}: {message['body'][:80]}")


def run_poller(stop_after: float = None):
    """
    Start the poller and block until interrupted.

    Args:
        stop_after: Seconds to run before stopping (None runs until Ctrl+C)
    """
    poller = get_snapshot_poller()
    poller.add_listener(log_message)
    poller.start()
    started = time.monotonic()
    try:
        while stop_after is None or time.monotonic() - started < stop_after:
            time.sleep(0.2)
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        poller.stop()
    return poller


if __name__ == '__main__':
    run_poller()
