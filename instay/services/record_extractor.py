"""
Guest export row extraction.

Maps loosely-structured spreadsheet rows (live export or archived export) onto
canonical guest fields. Column names vary between exports, so each canonical
field is resolved from an ordered list of header aliases; the first alias with
a non-empty value wins.
"""
import csv
import io
import logging
from dataclasses import dataclass, asdict
from typing import Iterable, Mapping

from instay.services.phone_utils import normalize_phone, strip_whitespace

logger = logging.getLogger(__name__)

# Header aliases per canonical field, in priority order
COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "first_name": ("First Name", "Firstname", "Given Name", "Name", "Guest Name", "Guest"),
    "last_name": ("Last Name", "Lastname", "Surname", "Family Name"),
    "room_number": ("Room Number", "Room", "room", "RoomNumber"),
    "phone": ("Ph.", "Phone", "Telephone", "Mobile", "Contact"),
    "email": ("Email", "E-mail", "Email Address"),
    "checkout_date": ("Checkout Date", "Check Out", "Departure Date", "Departure", "CheckOut"),
    "checkin_date": ("Checkin Date", "Check-In", "Check In", "Arrival Date", "Arrival", "CheckIn"),
    "available_in": ("Available In", "Available in", "Available"),
}


@dataclass(frozen=True)
class GuestFields:
    """Canonical fields extracted from one export row."""
    first_name: str = ""
    last_name: str = ""
    room_number: str = ""
    phone: str = ""
    email: str = ""
    checkout_date: str = ""
    checkin_date: str = ""
    available_in: str = ""

    @property
    def phone_key(self) -> str:
        return normalize_phone(self.phone)

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)

    def to_dict(self) -> dict:
        return asdict(self)


def _resolve(row: Mapping, aliases: tuple[str, ...]) -> str:
    for alias in aliases:
        value = row.get(alias)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return ""


def extract_fields(row: Mapping) -> GuestFields:
    """
    Extract canonical guest fields from one export row.

    Never raises for dirty input: a missing or non-mapping row yields empty
    fields. Phone values have all whitespace removed (a leading "+" is kept);
    every other field is trimmed.
    """
    if not isinstance(row, Mapping):
        return GuestFields()
    values = {field: _resolve(row, aliases) for field, aliases in COLUMN_ALIASES.items()}
    values["phone"] = strip_whitespace(values["phone"])
    return GuestFields(**values)


def extract_all(rows: Iterable[Mapping]) -> list[GuestFields]:
    """Extract every row, skipping (and logging) rows that fail."""
    records = []
    for i, row in enumerate(rows):
        try:
            records.append(extract_fields(row))
        except Exception as e:
            logger.warning(f"Skipping malformed export row {i}: {e}")
    return records


def parse_csv_rows(text: str) -> list[dict[str, str]]:
    """
    Parse CSV export text into header-keyed rows.

    Blank lines are skipped. Unparseable content yields an empty list.
    """
    if not text:
        return []
    if text.startswith("\ufeff"):
        text = text[1:]
    try:
        reader = csv.DictReader(io.StringIO(text))
        return [
            {k: v for k, v in row.items() if k is not None}
            for row in reader
            if any((v or "").strip() for v in row.values() if isinstance(v, str))
        ]
    except csv.Error as e:
        logger.error(f"Guest export parse error: {e}")
        return []
