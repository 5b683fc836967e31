"""
Archival occurrence index.

Aggregates every archived guest export into one PhoneKey-keyed index that only
ever grows. Each entry records:

- name: first non-empty full name seen for the phone
- occurrences: every distinct (source file, field tuple) observation,
  deduplicated by a signature over all fields including the file
- latestCheckout: the chronologically latest parseable checkout date across
  all occurrences; an unparseable value is kept only when nothing parses

Storage: JSON object at <data_path>/instay_archives_phone_index.json.

Merging is idempotent (signature dedupe) and the occurrence set is independent
of merge order. Existing occurrences are never rewritten or removed.
"""
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from config.settings import settings
from instay.services.json_store import JsonFileStore
from instay.services.record_extractor import GuestFields
from instay.utils.date_parser import parse_checkout_date

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Occurrence:
    """One observation of a phone in one export file."""
    file: str
    phone: str
    checkout_date: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    room_number: Optional[str] = None

    @property
    def signature(self) -> str:
        return "|".join([
            self.file or "",
            self.phone or "",
            self.checkout_date or "",
            self.first_name or "",
            self.last_name or "",
            self.room_number or "",
        ])

    def to_dict(self) -> dict:
        return {
            "file": self.file,
            "phone": self.phone,
            "checkoutDate": self.checkout_date,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "roomNumber": self.room_number,
        }

    @classmethod
    def from_dict(cls, data: dict, fallback_file: str = "") -> "Occurrence":
        def _opt(key: str) -> Optional[str]:
            value = data.get(key)
            return str(value) if value not in (None, "") else None

        return cls(
            file=str(data.get("file") or fallback_file or ""),
            phone=str(data.get("phone") or ""),
            checkout_date=_opt("checkoutDate"),
            first_name=_opt("firstName"),
            last_name=_opt("lastName"),
            room_number=_opt("roomNumber"),
        )

    @classmethod
    def from_fields(cls, source_file: str, fields: GuestFields) -> "Occurrence":
        return cls(
            file=source_file,
            phone=fields.phone,
            checkout_date=fields.checkout_date or None,
            first_name=fields.first_name or None,
            last_name=fields.last_name or None,
            room_number=fields.room_number or None,
        )


@dataclass
class IndexEntry:
    """Aggregated archival knowledge about one PhoneKey."""
    name: Optional[str] = None
    occurrences: list[Occurrence] = field(default_factory=list)
    latest_checkout: Optional[str] = None

    def signatures(self) -> set[str]:
        return {o.signature for o in self.occurrences}

    def to_dict(self) -> dict:
        return {
            "name": self.name or None,
            "occurrences": [o.to_dict() for o in self.occurrences],
            "latestCheckout": self.latest_checkout or None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "IndexEntry":
        occurrences = []
        for item in data.get("occurrences") or []:
            if isinstance(item, dict):
                occurrences.append(Occurrence.from_dict(item))
        return cls(
            name=(str(data.get("name")).strip() or None) if data.get("name") else None,
            occurrences=occurrences,
            latest_checkout=str(data["latestCheckout"]) if data.get("latestCheckout") else None,
        )


PhoneIndex = dict[str, IndexEntry]


def resolve_latest_checkout(candidates: Iterable[Optional[str]]) -> Optional[str]:
    """
    Pick the latest checkout value.

    Parseable dates always beat unparseable ones; among parseable values the
    chronologically latest wins (first seen on ties). An unparseable value is
    returned only when no candidate parses, and then the first one seen.
    """
    best: Optional[str] = None
    best_date = None
    fallback: Optional[str] = None
    for value in candidates:
        if not value:
            continue
        parsed = parse_checkout_date(value)
        if parsed is None:
            if fallback is None:
                fallback = value
            continue
        if best_date is None or parsed > best_date:
            best, best_date = value, parsed
    return best if best is not None else fallback


def build_index(source_file: str, rows: Iterable[GuestFields]) -> PhoneIndex:
    """Build an index from one export file's extracted rows."""
    index: PhoneIndex = {}
    for row in rows:
        try:
            key = row.phone_key
            if not key:
                continue
            entry = index.setdefault(key, IndexEntry())
            occurrence = Occurrence.from_fields(source_file, row)
            if occurrence.signature not in entry.signatures():
                entry.occurrences.append(occurrence)
            if not entry.name and row.full_name:
                entry.name = row.full_name
        except Exception as e:
            logger.warning(f"Skipping row from {source_file} during indexing: {e}")
    for entry in index.values():
        entry.latest_checkout = resolve_latest_checkout(
            o.checkout_date for o in entry.occurrences
        )
    return index


def merge_indexes(existing: PhoneIndex, incoming: PhoneIndex) -> tuple[PhoneIndex, int]:
    """
    Fold ``incoming`` into ``existing`` without losing anything.

    - occurrences: existing list kept as-is, unseen incoming ones appended
    - name: existing non-empty name preferred, else incoming
    - latestCheckout: recomputed over the existing value, the incoming value,
      and every occurrence's checkout date

    Inputs are not mutated.

    Returns:
        (merged index, number of occurrences appended)
    """
    merged: PhoneIndex = {
        key: IndexEntry(
            name=entry.name,
            occurrences=list(entry.occurrences),
            latest_checkout=entry.latest_checkout,
        )
        for key, entry in existing.items()
    }
    appended = 0
    for key, src in incoming.items():
        if not key:
            continue
        dst = merged.setdefault(key, IndexEntry())
        seen = dst.signatures()
        for occurrence in src.occurrences:
            if occurrence.signature in seen:
                continue
            dst.occurrences.append(occurrence)
            seen.add(occurrence.signature)
            appended += 1
        if not dst.name and src.name:
            dst.name = src.name
        candidates = [dst.latest_checkout, src.latest_checkout]
        candidates.extend(o.checkout_date for o in dst.occurrences)
        dst.latest_checkout = resolve_latest_checkout(candidates)
    return merged, appended


def index_to_dict(index: PhoneIndex) -> dict:
    return {key: entry.to_dict() for key, entry in index.items()}


def index_from_dict(data: dict) -> PhoneIndex:
    index: PhoneIndex = {}
    for key, value in (data or {}).items():
        if not key or not isinstance(value, dict):
            continue
        try:
            index[str(key)] = IndexEntry.from_dict(value)
        except Exception as e:
            logger.warning(f"Dropping unreadable index entry {key}: {e}")
    return index


class OccurrenceIndexStore:
    """
    Durable, append-only occurrence index.

    Thread-safe; each merge flushes before returning.
    """

    def __init__(self, file_path: Optional[str] = None):
        self._store = JsonFileStore(file_path or settings.occurrence_index_path, default=dict)
        self._lock = threading.Lock()
        self._index: PhoneIndex = index_from_dict(self._store.load())
        logger.info(f"Loaded phone index with {len(self._index)} phones from {self.file_path}")

    @property
    def file_path(self) -> Path:
        return self._store.file_path

    def get(self, phone_key: str) -> Optional[IndexEntry]:
        with self._lock:
            entry = self._index.get(phone_key)
            if entry is None:
                return None
            return IndexEntry.from_dict(entry.to_dict())

    def all(self) -> dict:
        """Current index in its persisted (camelCase) shape."""
        with self._lock:
            return index_to_dict(self._index)

    def __len__(self) -> int:
        return len(self._index)

    def merge(self, incoming: PhoneIndex) -> int:
        """Merge an index snapshot and flush. Returns occurrences appended."""
        with self._lock:
            merged, appended = merge_indexes(self._index, incoming)
            changed = appended or index_to_dict(merged) != index_to_dict(self._index)
            self._index = merged
            if changed:
                self._store.save(index_to_dict(self._index))
        if appended:
            logger.info(f"[phone-index] appended {appended} occurrences ({len(merged)} phones)")
        return appended

    def record_observations(self, source_file: str, rows: Iterable[GuestFields]) -> int:
        """Index one export file's rows. Returns occurrences appended."""
        return self.merge(build_index(source_file, rows))

    def record_snapshots(self, snapshots: Iterable[tuple[str, list[GuestFields]]]) -> int:
        """Index several export files in one merge/flush."""
        combined: PhoneIndex = {}
        for source_file, rows in snapshots:
            combined, _ = merge_indexes(combined, build_index(source_file, rows))
        return self.merge(combined)


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_occurrence_index_store: Optional[OccurrenceIndexStore] = None


def get_occurrence_index_store() -> OccurrenceIndexStore:
    global _occurrence_index_store
    if _occurrence_index_store is None:
        _occurrence_index_store = OccurrenceIndexStore()
    return _occurrence_index_store


def reset_occurrence_index_store() -> None:
    global _occurrence_index_store
    _occurrence_index_store = None
