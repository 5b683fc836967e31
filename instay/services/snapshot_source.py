"""
Guest export (snapshot) sources.

- LocalSnapshotSource: the locally cached export file
- ArchiveSnapshotSource: a directory of timestamped archived exports; the
  newest archive is the source of truth when present

Each source exposes a version marker (name + modification time) so pollers
can skip unchanged exports.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional, Protocol

from instay.services.record_extractor import GuestFields, extract_all, parse_csv_rows

logger = logging.getLogger(__name__)

ARCHIVE_PREFIX = "instay_output"
DATE_KEY_DASHED = re.compile(r"(20\d{2}-[01]\d-[0-3]\d)")
DATE_KEY_COMPACT = re.compile(r"(20\d{2}[01]\d[0-3]\d)")


class SnapshotError(Exception):
    """A snapshot exists but could not be read."""
    pass


@dataclass
class Snapshot:
    """One point-in-time guest export."""
    name: str
    version: str
    rows: list[dict[str, str]] = field(default_factory=list)

    @property
    def records(self) -> list[GuestFields]:
        return extract_all(self.rows)


class SnapshotSource(Protocol):
    def version(self) -> Optional[str]: ...

    def fetch_latest(self) -> Optional[Snapshot]: ...


def _mtime_iso(path: Path) -> str:
    return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc).isoformat()


def read_snapshot_file(path: Path) -> Snapshot:
    """Read and parse one CSV export. Raises SnapshotError if unreadable."""
    try:
        text = path.read_text(encoding="utf-8-sig")
        version = f"{path.name}@{_mtime_iso(path)}"
    except (OSError, UnicodeDecodeError) as e:
        raise SnapshotError(f"Cannot read {path}: {e}") from e
    return Snapshot(name=path.name, version=version, rows=parse_csv_rows(text))


class LocalSnapshotSource:
    """The locally cached guest export file."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def version(self) -> Optional[str]:
        try:
            return f"{self.path.name}@{_mtime_iso(self.path)}"
        except OSError:
            return None

    def fetch_latest(self) -> Optional[Snapshot]:
        if not self.path.exists():
            return None
        return read_snapshot_file(self.path)

    def replace_content(self, content: bytes) -> None:
        """Overwrite the cached export (used when a newer archive is pulled)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_bytes(content)


def archive_filename(now: Optional[datetime] = None) -> str:
    """Timestamped archive name, e.g. instay_output-2024-03-05-20240305T101500123456.csv"""
    now = now or datetime.now(timezone.utc)
    date_part = now.strftime("%Y-%m-%d")
    time_part = now.strftime("%Y%m%dT%H%M%S%f")
    return f"{ARCHIVE_PREFIX}-{date_part}-{time_part}.csv"


def derive_date_key(name: str) -> Optional[str]:
    """YYYYMMDD date stamp embedded in an archive filename, if any."""
    if not name:
        return None
    match = DATE_KEY_DASHED.search(name)
    if match:
        return match.group(1).replace("-", "")
    match = DATE_KEY_COMPACT.search(name)
    if match:
        return match.group(1)
    return None


class ArchiveSnapshotSource:
    """Directory of archived guest exports."""

    def __init__(self, directory: Path | str):
        self.directory = Path(directory)

    def list_archives(self) -> list[Path]:
        """CSV archives, newest modification time first."""
        if not self.directory.is_dir():
            return []
        stamped = []
        for path in self.directory.iterdir():
            if path.suffix.lower() != ".csv":
                continue
            # Archives can disappear mid-listing (concurrent prune)
            try:
                stat = path.stat()
            except FileNotFoundError:
                continue
            if path.is_file():
                stamped.append((stat.st_mtime, path))
        stamped.sort(key=lambda item: item[0], reverse=True)
        return [path for _, path in stamped]

    def latest_path(self) -> Optional[Path]:
        archives = self.list_archives()
        return archives[0] if archives else None

    def version(self) -> Optional[str]:
        latest = self.latest_path()
        if latest is None:
            return None
        return f"{latest.name}@{_mtime_iso(latest)}"

    def fetch_latest(self) -> Optional[Snapshot]:
        latest = self.latest_path()
        if latest is None:
            return None
        return read_snapshot_file(latest)

    def iter_snapshots(self) -> Iterable[Snapshot]:
        """Every readable archive; unreadable ones are logged and skipped."""
        for path in self.list_archives():
            try:
                yield read_snapshot_file(path)
            except SnapshotError as e:
                logger.warning(f"Skipping archive: {e}")

    def archive(self, content: bytes, now: Optional[datetime] = None) -> Path:
        """Store a new timestamped copy of an export."""
        self.directory.mkdir(parents=True, exist_ok=True)
        target = self.directory / archive_filename(now)
        target.write_bytes(content)
        logger.info(f"[archive] stored {target.name}")
        return target

    def prune_plan(self) -> list[tuple[str, Path, Path]]:
        """
        Archives superseded by a newer archive with the same date stamp.

        Returns:
            (date_key, kept, removable) tuples
        """
        groups: dict[str, list[Path]] = {}
        for path in self.list_archives():
            key = derive_date_key(path.name)
            if key:
                groups.setdefault(key, []).append(path)
        plan = []
        for key in sorted(groups):
            keep, *remove = groups[key]
            plan.extend((key, keep, path) for path in remove)
        return plan

    def prune(self, dry_run: bool = True) -> list[Path]:
        """Delete superseded archives (only reports them when dry_run)."""
        removed = []
        for key, keep, path in self.prune_plan():
            logger.info(f"Date {key}: keep={keep.name} remove={path.name}")
            if dry_run:
                continue
            try:
                path.unlink()
                removed.append(path)
            except OSError as e:
                logger.warning(f"Failed to delete {path.name}: {e}")
        return removed


def discover_local_exports(directories: Iterable[Path], keywords: Iterable[str]) -> list[Path]:
    """CSV files in the given directories whose name contains a keyword."""
    keywords = [k.lower() for k in keywords if k]
    found: list[Path] = []
    seen: set[Path] = set()
    for directory in directories:
        directory = Path(directory)
        if not directory.is_dir():
            continue
        for path in sorted(directory.iterdir()):
            lower = path.name.lower()
            if not path.is_file() or not lower.endswith(".csv"):
                continue
            if keywords and not any(k in lower for k in keywords):
                continue
            resolved = path.resolve()
            if resolved not in seen:
                seen.add(resolved)
                found.append(path)
    return found
