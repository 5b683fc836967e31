"""
Tests for the archival occurrence index.

Covers signature dedupe, idempotent merges, merge-order independence of the
occurrence set, and latestCheckout resolution.
"""
import json

import pytest

from instay.services.occurrence_index import (
    IndexEntry,
    Occurrence,
    OccurrenceIndexStore,
    build_index,
    index_from_dict,
    index_to_dict,
    merge_indexes,
    resolve_latest_checkout,
)
from instay.services.record_extractor import GuestFields

pytestmark = pytest.mark.unit


def ana(checkout="2024-03-01", room="204", phone="+34600111222"):
    return GuestFields(first_name="Ana", last_name="Ruiz", phone=phone,
                       checkout_date=checkout, room_number=room)


def occurrence_sets(index):
    return {key: entry.signatures() for key, entry in index.items()}


class TestResolveLatestCheckout:
    """Tests for latestCheckout selection."""

    def test_latest_parseable_wins(self):
        assert resolve_latest_checkout(["2024-03-01", "05.03.2024", "2024-02-28"]) == "05.03.2024"

    def test_parseable_beats_unparseable(self):
        assert resolve_latest_checkout(["soon", "2024-03-01"]) == "2024-03-01"

    def test_unparseable_kept_when_nothing_parses(self):
        assert resolve_latest_checkout([None, "soon", "later"]) == "soon"

    def test_empty(self):
        assert resolve_latest_checkout([]) is None
        assert resolve_latest_checkout([None, ""]) is None


class TestBuildIndex:
    """Tests for indexing one export file."""

    def test_builds_entry(self):
        index = build_index("a.csv", [ana()])
        entry = index["34600111222"]
        assert entry.name == "Ana Ruiz"
        assert entry.latest_checkout == "2024-03-01"
        assert entry.occurrences == [Occurrence(
            file="a.csv", phone="+34600111222", checkout_date="2024-03-01",
            first_name="Ana", last_name="Ruiz", room_number="204",
        )]

    def test_skips_empty_phone(self):
        assert build_index("a.csv", [GuestFields(first_name="Nobody")]) == {}

    def test_dedupes_identical_rows(self):
        index = build_index("a.csv", [ana(), ana()])
        assert len(index["34600111222"].occurrences) == 1

    def test_raw_variants_share_key(self):
        index = build_index("a.csv", [ana(phone="+34600111222"), ana(phone="34600111222")])
        assert list(index) == ["34600111222"]
        assert len(index["34600111222"].occurrences) == 2

    def test_signature_includes_file(self):
        a = Occurrence.from_fields("a.csv", ana())
        b = Occurrence.from_fields("b.csv", ana())
        assert a.signature != b.signature


class TestMergeIndexes:
    """Tests for merge semantics."""

    def test_idempotent(self):
        existing = build_index("a.csv", [ana()])
        once, appended_once = merge_indexes({}, existing)
        twice, appended_twice = merge_indexes(once, existing)
        assert appended_once == 1
        assert appended_twice == 0
        assert index_to_dict(once) == index_to_dict(twice)

    def test_never_drops_occurrences(self):
        a = build_index("a.csv", [ana("2024-03-01")])
        b = build_index("b.csv", [ana("2024-03-04", room="301")])
        merged, appended = merge_indexes(a, b)
        assert appended == 1
        files = [o.file for o in merged["34600111222"].occurrences]
        assert files == ["a.csv", "b.csv"]
        assert merged["34600111222"].latest_checkout == "2024-03-04"

    def test_order_independent_occurrence_sets(self):
        a = build_index("a.csv", [ana("2024-03-01")])
        b = build_index("b.csv", [ana("2024-03-04"), GuestFields(first_name="Tom", phone="555")])
        c = build_index("c.csv", [ana("01.04.2024")])

        ab, _ = merge_indexes(a, b)
        abc, _ = merge_indexes(ab, c)
        bc, _ = merge_indexes(b, c)
        a_bc, _ = merge_indexes(a, bc)
        ca, _ = merge_indexes(c, a)
        cab, _ = merge_indexes(ca, b)

        assert occurrence_sets(abc) == occurrence_sets(a_bc) == occurrence_sets(cab)
        assert abc["34600111222"].latest_checkout == "01.04.2024"
        assert cab["34600111222"].latest_checkout == "01.04.2024"

    def test_existing_name_preferred(self):
        existing = {"1": IndexEntry(name="Existing")}
        incoming = {"1": IndexEntry(name="Incoming")}
        merged, _ = merge_indexes(existing, incoming)
        assert merged["1"].name == "Existing"

    def test_incoming_name_fills_gap(self):
        merged, _ = merge_indexes({"1": IndexEntry()}, {"1": IndexEntry(name="Incoming")})
        assert merged["1"].name == "Incoming"

    def test_previous_latest_checkout_considered(self):
        existing = {"1": IndexEntry(latest_checkout="2024-05-01")}
        incoming = build_index("a.csv", [GuestFields(phone="1", checkout_date="2024-03-01")])
        merged, _ = merge_indexes(existing, incoming)
        assert merged["1"].latest_checkout == "2024-05-01"

    def test_inputs_not_mutated(self):
        a = build_index("a.csv", [ana("2024-03-01")])
        before = index_to_dict(a)
        merge_indexes(a, build_index("b.csv", [ana("2024-03-04")]))
        assert index_to_dict(a) == before


class TestSerialization:
    """Tests for the camelCase wire format."""

    def test_round_trip(self):
        index = build_index("a.csv", [ana()])
        data = index_to_dict(index)
        assert data["34600111222"]["latestCheckout"] == "2024-03-01"
        assert data["34600111222"]["occurrences"][0]["roomNumber"] == "204"
        assert index_to_dict(index_from_dict(data)) == data

    def test_unreadable_entries_dropped(self):
        index = index_from_dict({"1": "garbage", "": {}, "2": {"name": "Ana", "occurrences": ["x"]}})
        assert list(index) == ["2"]
        assert index["2"].occurrences == []


class TestOccurrenceIndexStore:
    """Tests for the durable store."""

    def test_record_observations_persists(self, tmp_path):
        path = tmp_path / "index.json"
        store = OccurrenceIndexStore(file_path=str(path))
        assert store.record_observations("a.csv", [ana()]) == 1
        data = json.loads(path.read_text())
        assert data["34600111222"]["name"] == "Ana Ruiz"

    def test_reingest_adds_nothing(self, occurrence_index):
        occurrence_index.record_observations("a.csv", [ana()])
        before = occurrence_index.all()
        assert occurrence_index.record_observations("a.csv", [ana()]) == 0
        assert occurrence_index.all() == before

    def test_record_snapshots(self, occurrence_index):
        appended = occurrence_index.record_snapshots([
            ("a.csv", [ana("2024-03-01")]),
            ("b.csv", [ana("2024-03-04")]),
        ])
        assert appended == 2
        assert occurrence_index.get("34600111222").latest_checkout == "2024-03-04"

    def test_reload(self, tmp_path):
        path = tmp_path / "index.json"
        OccurrenceIndexStore(file_path=str(path)).record_observations("a.csv", [ana()])
        reloaded = OccurrenceIndexStore(file_path=str(path))
        assert len(reloaded) == 1
        assert reloaded.get("34600111222").name == "Ana Ruiz"

    def test_get_missing(self, occurrence_index):
        assert occurrence_index.get("999") is None
