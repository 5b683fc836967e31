"""
Background polling for new guest exports and new messages.

On start it adopts the shared name map (when configured) and folds every
existing export into the phone index. It then runs three independent periodic
tasks on one asyncio loop in a daemon thread:
- local export changed -> archive a timestamped copy, ingest it, re-fold the index
- newer archived export -> copy it over the local export, ingest it, re-fold the index
- new Bird messages -> deliver normalized messages to listeners (oldest first)

A failure in one task is logged and never stops the others.
"""
import asyncio
import logging
import threading
from typing import Callable, Optional

from config.settings import settings
from instay.services.guest_service import GuestService, get_guest_service
from instay.services.messages import normalize_message
from instay.services.snapshot_source import SnapshotError
from instay.utils.datetime_utils import parse_timestamp

logger = logging.getLogger(__name__)

MessageListener = Callable[[dict], None]

# Message ids remembered for de-duplication
MAX_SEEN_IDS = 5000


class SnapshotPoller:
    """Background thread polling export sources and the message API."""

    def __init__(
        self,
        service: Optional[GuestService] = None,
        snapshot_interval: Optional[float] = None,
        archive_interval: Optional[float] = None,
        message_interval: Optional[float] = None,
    ):
        self.service = service or get_guest_service()
        self.snapshot_interval = snapshot_interval or settings.snapshot_poll_seconds
        self.archive_interval = archive_interval or settings.archive_poll_seconds
        self.message_interval = message_interval or settings.message_poll_seconds
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._listeners: list[MessageListener] = []
        self._seen_ids: dict[str, None] = {}
        self._local_version: Optional[str] = None
        self._archive_version: Optional[str] = None

    def add_listener(self, listener: MessageListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: MessageListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def start(self):
        self._stop_event.clear()
        self._local_version = self.service.local_source.version()
        self._archive_version = self.service.archive_source.version()
        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name="SnapshotPoller",
        )
        self._thread.start()
        logger.info("Snapshot poller started")

    def stop(self):
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        logger.info("Snapshot poller stopped")

    def _run(self):
        """Main poller loop."""
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(self._poll_all())
        except Exception as e:
            logger.error(f"Snapshot poller crashed: {e}")
        finally:
            loop.close()

    async def _poll_all(self):
        try:
            await asyncio.to_thread(self.prepare_stores)
        except Exception as e:
            logger.error(f"Poller startup indexing failed: {e}")
        tasks = [self._every(self.snapshot_interval, self.check_local_snapshot)]
        tasks.append(self._every(self.archive_interval, self.check_archive))
        if self.service.message_source.configured:
            await self.prime_messages()
            tasks.append(self._every(self.message_interval, self.poll_messages))
        else:
            logger.info("Bird API not configured, message polling disabled")
        await asyncio.gather(*tasks)

    async def _every(self, interval: float, step: Callable):
        while not self._stop_event.is_set():
            try:
                await step()
            except Exception as e:
                logger.error(f"Poller error in {step.__name__}: {e}")
            await self._sleep(interval)

    async def _sleep(self, seconds: float):
        """Sleep in short slices so stop() takes effect quickly."""
        remaining = seconds
        while remaining > 0 and not self._stop_event.is_set():
            step = min(1.0, remaining)
            await asyncio.sleep(step)
            remaining -= step

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def prepare_stores(self) -> None:
        """Adopt the shared name map, then fold every existing export into the index."""
        remote = settings.remote_name_map_path
        if remote is not None:
            self.service.merge_remote_name_map_file(remote)
        self.service.rebuild_occurrence_index()

    async def check_local_snapshot(self) -> bool:
        """Archive and ingest the local export when it changed."""
        return await asyncio.to_thread(self._check_local_snapshot)

    def _check_local_snapshot(self) -> bool:
        source = self.service.local_source
        version = source.version()
        if version is None or version == self._local_version:
            return False
        self._local_version = version
        logger.info(f"Local export changed ({version})")
        try:
            snapshot = source.fetch_latest()
        except SnapshotError as e:
            logger.warning(f"Local export unreadable: {e}")
            return False
        if snapshot is None:
            return False
        self.service.archive_source.archive(source.path.read_bytes())
        self._archive_version = self.service.archive_source.version()
        self.service.ingest_snapshot(snapshot)
        self.service.rebuild_occurrence_index()
        return True

    async def check_archive(self) -> bool:
        """Pull a newer archived export into the local export path and ingest it."""
        return await asyncio.to_thread(self._check_archive)

    def _check_archive(self) -> bool:
        archive = self.service.archive_source
        version = archive.version()
        if version is None or version == self._archive_version:
            return False
        self._archive_version = version
        latest = archive.latest_path()
        try:
            snapshot = archive.fetch_latest()
        except SnapshotError as e:
            logger.warning(f"Archived export unreadable: {e}")
            return False
        if snapshot is None or latest is None:
            return False
        logger.info(f"Found newer archived export {snapshot.name}")
        self.service.local_source.replace_content(latest.read_bytes())
        self._local_version = self.service.local_source.version()
        self.service.ingest_snapshot(snapshot)
        self.service.rebuild_occurrence_index()
        return True

    async def prime_messages(self) -> int:
        """Mark the current backlog as seen so only later messages are delivered."""
        events = await self.service.fetch_events()
        for event in events:
            if event.get("id"):
                self._remember(str(event["id"]))
        logger.info(f"Message poller primed with {len(self._seen_ids)} existing messages")
        return len(self._seen_ids)

    async def poll_messages(self) -> int:
        """
        Deliver messages not seen before to listeners, oldest first.

        Returns:
            Number of new messages delivered.
        """
        events = await self.service.fetch_events()
        fresh = [
            e for e in events
            if e.get("id") and str(e["id"]) not in self._seen_ids
        ]
        if not fresh:
            return 0

        fresh.sort(key=lambda e: (parse_timestamp(e.get("createdAt")) is None,
                                  parse_timestamp(e.get("createdAt")) or 0))
        for event in fresh:
            self._remember(str(event["id"]))
            normalized = normalize_message(event)
            if normalized is None:
                continue
            for listener in list(self._listeners):
                try:
                    listener(normalized)
                except Exception as e:
                    logger.warning(f"Message listener failed: {e}")
        logger.debug(f"Delivered {len(fresh)} new messages")
        return len(fresh)

    def _remember(self, message_id: str) -> None:
        self._seen_ids[message_id] = None
        while len(self._seen_ids) > MAX_SEEN_IDS:
            self._seen_ids.pop(next(iter(self._seen_ids)))


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_snapshot_poller: Optional[SnapshotPoller] = None


def get_snapshot_poller() -> SnapshotPoller:
    global _snapshot_poller
    if _snapshot_poller is None:
        _snapshot_poller = SnapshotPoller()
    return _snapshot_poller


def reset_snapshot_poller() -> None:
    global _snapshot_poller
    if _snapshot_poller is not None:
        _snapshot_poller.stop()
    _snapshot_poller = None
