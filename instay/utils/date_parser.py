"""Date parsing utilities for guest export checkout/checkin columns."""
import logging
import re
from datetime import date, datetime
from typing import Optional

logger = logging.getLogger(__name__)

MONTH_NAMES = {
    'january': 1, 'jan': 1, 'february': 2, 'feb': 2,
    'march': 3, 'mar': 3, 'april': 4, 'apr': 4,
    'may': 5, 'june': 6, 'jun': 6, 'july': 7, 'jul': 7,
    'august': 8, 'aug': 8, 'september': 9, 'sep': 9, 'sept': 9,
    'october': 10, 'oct': 10, 'november': 11, 'nov': 11,
    'december': 12, 'dec': 12,
}

# Export formats, tried in order before the generic fallbacks
PRIMARY_FORMATS = [
    "%d.%m.%Y",
    "%Y-%m-%d",
    "%m/%d/%Y",
]

FALLBACK_FORMATS = [
    "%d/%m/%Y",
    "%Y/%m/%d",
    "%d-%m-%Y",
    "%d.%m.%y",
    "%m/%d/%y",
    "%Y%m%d",
]


def parse_checkout_date(text) -> Optional[date]:
    """
    Parse a checkout/checkin value from a guest export to a calendar date.

    Supported formats:
    - DD.MM.YYYY: 01.03.2024
    - ISO: 2024-03-01, 2024-03-01T11:00:00Z
    - US: 03/01/2024
    - Generic fallbacks: 25/03/2024, 2024/03/01, "1 March 2024",
      "March 1, 2024", "Mar 1 2024"

    Returns:
        The parsed date, or None when the value is empty or unparseable.
    """
    if text is None:
        return None
    if isinstance(text, datetime):
        return text.date()
    if isinstance(text, date):
        return text

    text = str(text).strip()
    if not text:
        return None

    for fmt in PRIMARY_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    # ISO timestamp with time part
    iso = text[:-1] + "+00:00" if text.endswith("Z") else text
    try:
        return datetime.fromisoformat(iso).date()
    except ValueError:
        pass

    for fmt in FALLBACK_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    # Long month: "March 1, 2024", "Mar 1 2024"
    match = re.search(r'([A-Za-z]+)\.?\s+(\d{1,2}),?\s+(\d{4})', text)
    if match:
        result = _build_date(match.group(3), match.group(1), match.group(2))
        if result:
            return result

    # Day Month Year: "1 March 2024"
    match = re.search(r'(\d{1,2})\s+([A-Za-z]+)\.?,?\s+(\d{4})', text)
    if match:
        result = _build_date(match.group(3), match.group(2), match.group(1))
        if result:
            return result

    logger.debug(f"Could not parse date: {text}")
    return None


def _build_date(year: str, month_name: str, day: str) -> Optional[date]:
    month = MONTH_NAMES.get(month_name.lower())
    if not month:
        return None
    try:
        return date(int(year), month, int(day))
    except ValueError:
        return None


def has_checkout_passed(checkout_value, today: Optional[date] = None) -> bool:
    """
    Check whether a checkout date is strictly before today (date-only).

    Empty or unparseable values never count as checked out, so a parse
    failure can never hide a guest.
    """
    checkout = parse_checkout_date(checkout_value)
    if checkout is None:
        if checkout_value and str(checkout_value).strip():
            logger.warning(f"Failed to parse checkout date: {checkout_value!r}")
        return False
    return checkout < (today or date.today())
