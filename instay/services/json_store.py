"""
Durable JSON document storage.

Each store (name map, occurrence index, template blocklist) is a single JSON
document on disk. Writes go to a temp file in the same directory, are fsynced,
then renamed over the target, all under a per-store lock, so a reader never
sees a half-written document and two writers never interleave.
"""
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable

logger = logging.getLogger(__name__)


class JsonFileStore:
    """
    One JSON document with atomic, serialized flushes.

    Unreadable or corrupt content loads as ``default()``; the corrupt file is
    left in place until the next successful flush replaces it.
    """

    def __init__(self, file_path: Path | str, default: Callable[[], Any] = dict):
        self.file_path = Path(file_path)
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        self._default = default
        self.lock = threading.RLock()

    def load(self) -> Any:
        """Read the document, or the default value if absent or corrupt."""
        with self.lock:
            if not self.file_path.exists():
                return self._default()
            try:
                with open(self.file_path, "r", encoding="utf-8") as f:
                    text = f.read()
                if not text.strip():
                    return self._default()
                data = json.loads(text)
            except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
                logger.warning(f"Error loading {self.file_path}: {e}. Starting fresh.")
                return self._default()

            expected = type(self._default())
            if not isinstance(data, expected):
                logger.warning(
                    f"Unexpected content in {self.file_path} "
                    f"(got {type(data).__name__}, want {expected.__name__}). Starting fresh."
                )
                return self._default()
            return data

    def save(self, data: Any) -> None:
        """Flush the document to disk atomically before returning."""
        with self.lock:
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.file_path.name}.",
                suffix=".tmp",
                dir=self.file_path.parent,
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, ensure_ascii=False, default=str)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self.file_path)
            except BaseException:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
                raise
