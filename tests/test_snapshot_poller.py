"""
Tests for the background snapshot/message poller.

The periodic steps are exercised directly; one slow test covers the thread
lifecycle.
"""
import json
import os
import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from instay.services.guest_service import GuestService
from instay.services.snapshot_poller import SnapshotPoller, get_snapshot_poller, reset_snapshot_poller
from instay.services.snapshot_source import ArchiveSnapshotSource, LocalSnapshotSource

pytestmark = pytest.mark.unit

ROW = [("Ana", "Ruiz", "204", "+34600111222", "2024-03-10")]


def message(msg_id, created_at, text="hi"):
    return {
        "id": msg_id,
        "createdAt": created_at,
        "sender": {"contact": {"identifierValue": "+1555"}},
        "body": {"type": "text", "text": {"text": text}},
    }


@pytest.fixture
def bird():
    source = MagicMock()
    source.configured = True
    source.fetch_recent_events = AsyncMock(return_value=[])
    return source


@pytest.fixture
def service(mock_settings, tmp_path, name_map, occurrence_index, bird):
    return GuestService(
        name_map=name_map,
        occurrence_index=occurrence_index,
        local_source=LocalSnapshotSource(tmp_path / "instay_output.csv"),
        archive_source=ArchiveSnapshotSource(tmp_path / "archive"),
        message_source=bird,
    )


@pytest.fixture
def poller(service):
    return SnapshotPoller(service=service, snapshot_interval=0.1, archive_interval=0.1, message_interval=0.1)


class TestStartupPreparation:
    """Tests for the store preparation run before polling starts."""

    def test_existing_exports_indexed(self, poller, service, export_writer, occurrence_index):
        export_writer(service.archive_source.directory / "instay_output-2024-03-01.csv", ROW)
        export_writer(service.local_source.path, [("Tom", "Berg", "12", "+44700", "2024-03-12")])

        poller.prepare_stores()

        assert occurrence_index.get("34600111222") is not None
        assert occurrence_index.get("44700") is not None

    def test_remote_name_map_adopted(self, poller, mock_settings, tmp_path, name_map):
        remote = tmp_path / "shared_name_map.json"
        remote.write_text(json.dumps({"4470": {"name": "Remote Guest", "checkoutDate": "2024-03-09"}}))
        mock_settings.remote_name_map_path = remote

        poller.prepare_stores()

        assert name_map.info("4470").name == "Remote Guest"

    def test_missing_remote_name_map(self, poller, mock_settings, tmp_path, name_map):
        mock_settings.remote_name_map_path = tmp_path / "missing.json"
        poller.prepare_stores()
        assert len(name_map) == 0


class TestLocalSnapshotPolling:
    """Tests for local export change detection."""

    @pytest.mark.asyncio
    async def test_new_export_archived_and_ingested(self, poller, service, export_writer, name_map):
        export_writer(service.local_source.path, ROW)

        assert await poller.check_local_snapshot() is True

        assert len(service.archive_source.list_archives()) == 1
        assert name_map.info("34600111222").name == "Ana Ruiz"
        assert service.occurrence_index.get("34600111222") is not None

    @pytest.mark.asyncio
    async def test_unchanged_export_skipped(self, poller, service, export_writer):
        export_writer(service.local_source.path, ROW)
        await poller.check_local_snapshot()
        assert await poller.check_local_snapshot() is False
        assert len(service.archive_source.list_archives()) == 1

    @pytest.mark.asyncio
    async def test_missing_export(self, poller):
        assert await poller.check_local_snapshot() is False


class TestArchivePolling:
    """Tests for pulling newer archived exports."""

    @pytest.mark.asyncio
    async def test_newer_archive_copied_locally(self, poller, service, export_writer, name_map):
        archived = export_writer(service.archive_source.directory / "instay_output-2024-03-05.csv", ROW)

        assert await poller.check_archive() is True

        assert service.local_source.path.read_bytes() == archived.read_bytes()
        assert name_map.info("34600111222").name == "Ana Ruiz"
        assert await poller.check_archive() is False

    @pytest.mark.asyncio
    async def test_change_refolds_every_archive(self, poller, service, export_writer, occurrence_index):
        """A new archive re-merges older archives into the index too."""
        older = export_writer(
            service.archive_source.directory / "instay_output-2024-02-01.csv",
            [("Tom", "Berg", "12", "+44700", "2024-02-03")],
        )
        os.utime(older, (1_700_000_000, 1_700_000_000))
        export_writer(service.archive_source.directory / "instay_output-2024-03-05.csv", ROW)

        assert await poller.check_archive() is True

        assert occurrence_index.get("44700") is not None
        assert occurrence_index.get("34600111222") is not None

    @pytest.mark.asyncio
    async def test_own_archive_not_pulled_back(self, poller, service, export_writer):
        export_writer(service.local_source.path, ROW)
        await poller.check_local_snapshot()
        assert await poller.check_archive() is False


class TestMessagePolling:
    """Tests for new-message delivery."""

    @pytest.mark.asyncio
    async def test_delivers_new_messages_oldest_first(self, poller, bird):
        received = []
        poller.add_listener(received.append)
        bird.fetch_recent_events.return_value = [
            message("b", "2024-03-05T11:00:00Z", "second"),
            message("a", "2024-03-05T10:00:00Z", "first"),
        ]

        assert await poller.poll_messages() == 2
        assert [m["body"] for m in received] == ["first", "second"]
        assert received[0]["direction"] == "incoming"

    @pytest.mark.asyncio
    async def test_seen_messages_not_redelivered(self, poller, bird):
        received = []
        poller.add_listener(received.append)
        bird.fetch_recent_events.return_value = [message("a", "2024-03-05T10:00:00Z")]
        await poller.poll_messages()
        assert await poller.poll_messages() == 0
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_primed_backlog_not_delivered(self, poller, bird):
        received = []
        poller.add_listener(received.append)
        bird.fetch_recent_events.return_value = [message("old", "2024-03-05T10:00:00Z")]
        await poller.prime_messages()

        bird.fetch_recent_events.return_value = [
            message("old", "2024-03-05T10:00:00Z"),
            message("new", "2024-03-05T12:00:00Z"),
        ]
        assert await poller.poll_messages() == 1
        assert [m["id"] for m in received] == ["new"]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self, poller, bird):
        received = []
        poller.add_listener(MagicMock(side_effect=RuntimeError("boom")))
        poller.add_listener(received.append)
        bird.fetch_recent_events.return_value = [message("a", "2024-03-05T10:00:00Z")]
        await poller.poll_messages()
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_message_source_failure(self, poller, bird):
        bird.fetch_recent_events.side_effect = RuntimeError("down")
        assert await poller.poll_messages() == 0

    def test_remove_listener(self, poller):
        listener = MagicMock()
        poller.add_listener(listener)
        poller.remove_listener(listener)
        poller.remove_listener(listener)
        assert poller._listeners == []


@pytest.mark.slow
class TestPollerThread:
    """Thread lifecycle."""

    def test_start_and_stop(self, poller):
        poller.start()
        try:
            assert poller._thread.is_alive()
        finally:
            poller.stop()
        assert not poller._thread.is_alive()

    def test_start_indexes_existing_exports(self, poller, service, export_writer, occurrence_index):
        """Exports already on disk are indexed once the thread starts."""
        export_writer(service.archive_source.directory / "instay_output-2024-03-01.csv", ROW)
        export_writer(service.local_source.path, ROW)

        poller.start()
        try:
            deadline = time.monotonic() + 5
            while not len(occurrence_index) and time.monotonic() < deadline:
                time.sleep(0.05)
        finally:
            poller.stop()

        assert len(occurrence_index) == 1


class TestSingleton:
    """Tests for the process-wide poller accessor."""

    def test_get_snapshot_poller_reused(self, mock_settings):
        poller = get_snapshot_poller()
        assert get_snapshot_poller() is poller
        reset_snapshot_poller()
        assert get_snapshot_poller() is not poller
