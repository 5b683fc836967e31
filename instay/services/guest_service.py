"""
Guest service: the entry point callers use to get the dashboard guest list.

Ties together snapshot sources, the Bird message source, the durable stores,
the reconciler, and the visibility filter. Every degradable failure (missing
snapshot, unreachable message API, malformed rows) is absorbed here so callers
always get a usable, possibly smaller, guest list.
"""
import asyncio
import json
import logging
from datetime import date
from pathlib import Path
from typing import Optional

from config.settings import settings
from instay.services.bird_client import BirdClient, get_bird_client
from instay.services.guest_reconciler import GuestReconciler, GuestRecord
from instay.services.name_map import NameMapStore, get_name_map_store
from instay.services.occurrence_index import OccurrenceIndexStore, get_occurrence_index_store
from instay.services.resilience import graceful_degradation
from instay.services.snapshot_source import (
    ArchiveSnapshotSource,
    LocalSnapshotSource,
    Snapshot,
    SnapshotError,
    discover_local_exports,
    read_snapshot_file,
)
from instay.services.visibility import GuestQuery, filter_guests

logger = logging.getLogger(__name__)


class GuestService:
    """
    Builds the visible guest list.

    Collaborators default to the process-wide singletons; tests pass their own.
    """

    def __init__(
        self,
        name_map: Optional[NameMapStore] = None,
        occurrence_index: Optional[OccurrenceIndexStore] = None,
        local_source: Optional[LocalSnapshotSource] = None,
        archive_source: Optional[ArchiveSnapshotSource] = None,
        message_source: Optional[BirdClient] = None,
    ):
        self.name_map = name_map if name_map is not None else get_name_map_store()
        self.occurrence_index = (
            occurrence_index if occurrence_index is not None else get_occurrence_index_store()
        )
        self.local_source = local_source or LocalSnapshotSource(settings.snapshot_path)
        self.archive_source = archive_source or ArchiveSnapshotSource(settings.archive_path)
        self.message_source = message_source if message_source is not None else get_bird_client()
        self.reconciler = GuestReconciler(self.name_map)

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def load_snapshot(self) -> Optional[Snapshot]:
        """Latest archived export if any, else the local export, else None."""
        for source in (self.archive_source, self.local_source):
            try:
                snapshot = source.fetch_latest()
            except (SnapshotError, OSError) as e:
                logger.warning(f"Snapshot source unavailable: {e}")
                continue
            if snapshot is not None:
                return snapshot
        logger.info("No guest export available; using message data only")
        return None

    @graceful_degradation("Bird messages", fallback_value=list)
    async def fetch_events(self) -> list[dict]:
        return await self.message_source.fetch_recent_events(settings.message_fetch_limit)

    # ------------------------------------------------------------------
    # Guest list
    # ------------------------------------------------------------------

    async def get_guests(
        self,
        query: Optional[GuestQuery] = None,
        today: Optional[date] = None,
    ) -> list[GuestRecord]:
        """
        Run one reconciliation + visibility pass.

        Args:
            query: Visibility options (defaults hide checked-out and failed)
            today: Reference date for checkout filtering

        Returns:
            Visible guests, most recently active first.
        """
        query = query or GuestQuery()

        snapshot = await asyncio.to_thread(self.load_snapshot)
        records = snapshot.records if snapshot else []
        events = await self.fetch_events()

        guests = await asyncio.to_thread(self.reconciler.reconcile, records, events)
        visible = filter_guests(guests, query, name_map=self.name_map, today=today)

        self._log_display_names(visible)
        logger.info(
            f"[guests] returning {len(visible)} guests "
            f"(includeFailed={query.include_failed}, includeCheckedOut={query.include_checked_out})"
        )
        return visible

    def _log_display_names(self, guests: list[GuestRecord]) -> None:
        if not logger.isEnabledFor(logging.DEBUG):
            return
        for guest in guests:
            indexed = self.occurrence_index.get(guest.phone_key)
            mapped = self.name_map.info(guest.phone_key).name
            display = (
                guest.display_name
                or (indexed.name if indexed and indexed.name else "")
                or mapped
                or guest.identifier_value
            )
            logger.debug(
                f"[guest-debug] phone={guest.identifier_value} norm={guest.phone_key} "
                f'explicit="{guest.display_name}" persist={mapped or "no"} '
                f'index={(indexed.name or "yes") if indexed else "no"} -> display="{display}"'
            )

    # ------------------------------------------------------------------
    # Stores
    # ------------------------------------------------------------------

    def get_name_map(self) -> dict:
        return self.name_map.all()

    def get_occurrence_index(self) -> dict:
        """Stored index; built from the archived exports when nothing is stored yet."""
        if not len(self.occurrence_index):
            self.rebuild_occurrence_index()
        return self.occurrence_index.all()

    def sync_name_map_from_snapshot(self) -> dict:
        """Force-overwrite the name map from the current export."""
        snapshot = self.load_snapshot()
        records = snapshot.records if snapshot else []
        return self.name_map.sync_from_records(records)

    def merge_remote_name_map(self, remote: dict) -> int:
        return self.name_map.merge_remote(remote)

    def merge_remote_name_map_file(self, path: Path | str) -> int:
        """
        Adopt entries from a shared name-map JSON file.

        An unreadable file is logged and adopts nothing.
        """
        try:
            remote = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Cannot read remote name map {path}: {e}")
            return 0
        return self.name_map.merge_remote(remote)

    def ingest_snapshot(self, snapshot: Snapshot) -> int:
        """
        Fold a new export into the durable stores.

        Returns:
            Occurrences appended to the index.
        """
        records = snapshot.records
        updated = self.name_map.upsert_from_records(records)
        appended = self.occurrence_index.record_observations(snapshot.name, records)
        logger.info(
            f"Ingested {snapshot.name}: {len(records)} rows, "
            f"{updated} name mappings, {appended} new occurrences"
        )
        return appended

    def rebuild_occurrence_index(self, directories: Optional[list[Path]] = None) -> int:
        """
        Fold every archived and locally discovered export into the index.

        Returns:
            Occurrences appended.
        """
        snapshots = [(s.name, s.records) for s in self.archive_source.iter_snapshots()]
        seen = {name for name, _ in snapshots}

        if directories is None:
            directories = settings.local_archive_dirs
        for path in discover_local_exports(directories, settings.archive_keywords):
            if path.name in seen:
                continue
            try:
                snapshot = read_snapshot_file(path)
            except SnapshotError as e:
                logger.warning(f"Skipping local export: {e}")
                continue
            seen.add(path.name)
            snapshots.append((snapshot.name, snapshot.records))

        appended = self.occurrence_index.record_snapshots(snapshots)
        logger.info(f"Rebuilt phone index from {len(snapshots)} exports ({appended} new occurrences)")
        return appended


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_guest_service: Optional[GuestService] = None


def get_guest_service() -> GuestService:
    global _guest_service
    if _guest_service is None:
        _guest_service = GuestService()
    return _guest_service


def reset_guest_service() -> None:
    global _guest_service
    _guest_service = None
