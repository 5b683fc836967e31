"""
Sent-template blocklist.

PhoneKeys that already received a templated outbound message. The set only
grows; membership permanently blocks further template sends to that phone.

Storage: JSON list at <data_path>/sent_template_blocklist.json.
"""
import logging
import threading
from typing import Optional

from config.settings import settings
from instay.services.json_store import JsonFileStore
from instay.services.phone_utils import normalize_phone

logger = logging.getLogger(__name__)


class TemplateBlocklist:
    """Durable, monotonic set of PhoneKeys. Thread-safe."""

    def __init__(self, file_path: Optional[str] = None):
        self._store = JsonFileStore(file_path or settings.blocklist_path, default=list)
        self._lock = threading.Lock()
        self._phones: set[str] = set()
        for item in self._store.load():
            key = normalize_phone(str(item)) if item else ""
            if key:
                self._phones.add(key)

    def add(self, phone: str) -> bool:
        """Block a phone. Returns True if it was newly added."""
        key = normalize_phone(phone)
        if not key:
            return False
        with self._lock:
            if key in self._phones:
                return False
            self._phones.add(key)
            self._store.save(sorted(self._phones))
        logger.info(f"[blocklist] blocked further template sends to {key}")
        return True

    def contains(self, phone: str) -> bool:
        key = normalize_phone(phone)
        return bool(key) and key in self._phones

    def can_send(self, phone: str) -> bool:
        """True if a templated message may still be sent to this phone."""
        return bool(normalize_phone(phone)) and not self.contains(phone)

    def all(self) -> list[str]:
        with self._lock:
            return sorted(self._phones)

    def __len__(self) -> int:
        return len(self._phones)


_template_blocklist: Optional[TemplateBlocklist] = None


def get_template_blocklist() -> TemplateBlocklist:
    global _template_blocklist
    if _template_blocklist is None:
        _template_blocklist = TemplateBlocklist()
    return _template_blocklist


def reset_template_blocklist() -> None:
    global _template_blocklist
    _template_blocklist = None
