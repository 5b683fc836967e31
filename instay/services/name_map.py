"""
Persistent phone -> name map.

Stores the name (and checkout date, when known) for every PhoneKey ever seen,
so guest identities survive export refreshes.

Storage: JSON object at <data_path>/phone_name_map.json keyed by PhoneKey.
Values are either a bare name string (legacy shape) or
``{"name": ..., "checkoutDate": ...}``. Both shapes round-trip unchanged.

Names are only ever enriched: a known name is never replaced by an absent
one, and a checkout date is only added when missing. The explicit sync from
the source-of-truth export is the one path that overwrites.
"""
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Union

from config.settings import settings
from instay.services.json_store import JsonFileStore
from instay.services.phone_utils import normalize_phone
from instay.services.record_extractor import GuestFields

logger = logging.getLogger(__name__)

NameMapEntry = Union[str, dict]


@dataclass(frozen=True)
class NameInfo:
    """Normalized view of one name-map entry."""
    name: str = ""
    checkout_date: str = ""

    @property
    def first_name(self) -> str:
        parts = self.name.split()
        return parts[0] if parts else ""

    @property
    def last_name(self) -> str:
        return " ".join(self.name.split()[1:])


def entry_info(entry: Optional[NameMapEntry]) -> NameInfo:
    """Read name/checkout from either entry shape."""
    if not entry:
        return NameInfo()
    if isinstance(entry, str):
        return NameInfo(name=entry.strip())
    if isinstance(entry, dict):
        return NameInfo(
            name=str(entry.get("name") or "").strip(),
            checkout_date=str(entry.get("checkoutDate") or "").strip(),
        )
    return NameInfo()


def _structured(name: str, checkout_date: Optional[str]) -> dict:
    entry = {"name": name}
    if checkout_date:
        entry["checkoutDate"] = checkout_date
    return entry


class NameMapStore:
    """
    Durable PhoneKey -> name map.

    Every mutating call flushes to disk before returning. Thread-safe;
    readers always get a copy taken under the lock.
    """

    def __init__(self, file_path: Optional[str] = None):
        self._store = JsonFileStore(file_path or settings.name_map_path, default=dict)
        self._lock = threading.Lock()
        self._entries: dict[str, NameMapEntry] = {}
        self._load()

    @property
    def file_path(self) -> Path:
        return self._store.file_path

    def _load(self):
        data = self._store.load()
        self._entries = {
            str(k): v for k, v in data.items()
            if k and isinstance(v, (str, dict))
        }
        logger.info(f"Loaded {len(self._entries)} phone mappings from {self.file_path}")

    def _save(self):
        self._store.save(self._entries)

    def get(self, phone: str) -> Optional[NameMapEntry]:
        key = normalize_phone(phone)
        if not key:
            return None
        with self._lock:
            entry = self._entries.get(key)
            return dict(entry) if isinstance(entry, dict) else entry

    def info(self, phone: str) -> NameInfo:
        return entry_info(self.get(phone))

    def all(self) -> dict[str, NameMapEntry]:
        with self._lock:
            return {
                k: dict(v) if isinstance(v, dict) else v
                for k, v in self._entries.items()
            }

    def __len__(self) -> int:
        return len(self._entries)

    def _upsert_locked(self, key: str, name: str, checkout_date: str) -> bool:
        existing = entry_info(self._entries.get(key))
        if not existing.name:
            # A stored checkout date survives a name being filled in
            self._entries[key] = _structured(name, existing.checkout_date or checkout_date)
            logger.info(f"[phone-map] imported {key} -> {name}")
            return True
        if checkout_date and not existing.checkout_date:
            current = self._entries[key]
            updated = dict(current) if isinstance(current, dict) else {"name": existing.name}
            updated["checkoutDate"] = checkout_date
            self._entries[key] = updated
            logger.info(f"[phone-map] updated checkout for {key} -> {checkout_date}")
            return True
        logger.debug(f"[phone-map] kept existing mapping for {key} ({existing.name})")
        return False

    def upsert_if_richer(
        self,
        phone: str,
        name: str,
        checkout_date: Optional[str] = None,
    ) -> bool:
        """
        Store a name only if it adds information.

        - No entry (or an entry without a name): store ``{name, checkoutDate?}``.
        - Entry with a name but no checkout date: add the checkout date.
        - Otherwise: no-op.

        Returns:
            True if a write occurred.
        """
        key = normalize_phone(phone)
        name = (name or "").strip()
        checkout_date = (checkout_date or "").strip()
        if not key or not name:
            return False
        with self._lock:
            changed = self._upsert_locked(key, name, checkout_date)
            if changed:
                self._save()
            return changed

    def upsert_many(self, items: Iterable[tuple[str, str, Optional[str]]]) -> int:
        """
        Apply upsert_if_richer to many (phone, name, checkout_date) items.

        Flushes once at the end when anything changed.

        Returns:
            Number of entries written.
        """
        changed = 0
        with self._lock:
            for phone, name, checkout_date in items:
                key = normalize_phone(phone)
                name = (name or "").strip()
                if key and name and self._upsert_locked(key, name, (checkout_date or "").strip()):
                    changed += 1
            if changed:
                self._save()
        return changed

    def upsert_from_records(self, records: Iterable[GuestFields]) -> int:
        """Apply upsert_if_richer for every export record; flush once."""
        return self.upsert_many(
            (record.phone, record.full_name, record.checkout_date) for record in records
        )

    def merge_remote(self, remote: dict) -> int:
        """
        Adopt remote entries for keys with no local entry.

        Local always wins on conflict.

        Returns:
            Number of entries adopted.
        """
        if not isinstance(remote, dict):
            return 0
        adopted = 0
        with self._lock:
            for key, value in remote.items():
                key = normalize_phone(key)
                if not key or not isinstance(value, (str, dict)):
                    continue
                if not self._entries.get(key):
                    self._entries[key] = dict(value) if isinstance(value, dict) else value
                    adopted += 1
            if adopted:
                self._save()
        logger.info(f"Merged {adopted} remote phone mappings")
        return adopted

    def overwrite(self, phone: str, name: str, checkout_date: Optional[str] = None) -> bool:
        """Unconditionally replace the entry for a phone."""
        key = normalize_phone(phone)
        name = (name or "").strip()
        if not key or not name:
            return False
        with self._lock:
            self._entries[key] = _structured(name, (checkout_date or "").strip())
            self._save()
        return True

    def set_entry(self, phone: str, name: str, checkout_date: Optional[str] = None) -> dict:
        """Manual mapping entry. Raises ValueError if phone or name is missing."""
        if not normalize_phone(phone) or not (name or "").strip():
            raise ValueError("phone and name required")
        self.overwrite(phone, name, checkout_date)
        return self.all()

    def sync_from_records(self, records: Iterable[GuestFields]) -> dict:
        """
        Force-sync from the source-of-truth export.

        Overwrites every mapping the export provides, then converts remaining
        legacy string entries to the structured shape (name preserved).

        Returns:
            {"updated": <records applied>, "total": <mappings after sync>}
        """
        updated = 0
        with self._lock:
            for record in records:
                key = record.phone_key
                name = record.full_name
                if key and name:
                    self._entries[key] = _structured(name, record.checkout_date)
                    updated += 1
            for key, value in list(self._entries.items()):
                if isinstance(value, str):
                    self._entries[key] = {"name": value}
            self._save()
            total = len(self._entries)
        logger.info(f"[phone-map] sync applied {updated} mappings ({total} total)")
        return {"updated": updated, "total": total}


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_name_map_store: Optional[NameMapStore] = None


def get_name_map_store() -> NameMapStore:
    global _name_map_store
    if _name_map_store is None:
        _name_map_store = NameMapStore()
    return _name_map_store


def reset_name_map_store() -> None:
    global _name_map_store
    _name_map_store = None
