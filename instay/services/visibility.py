"""
Guest visibility filtering.

Decides which reconciled guests are shown, applying in this fixed order:
1. excluded display names (system/bot senders)
2. checked-out guests (unless include_checked_out)
3. optional template / delivery-status equality filters
4. failed deliveries (unless include_failed)
"""
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Mapping, Optional

from config.settings import settings
from instay.services.guest_reconciler import GuestRecord
from instay.services.name_map import NameMapStore
from instay.utils.date_parser import has_checkout_passed

logger = logging.getLogger(__name__)

_AVAILABLE_IN_CHARS = re.compile(r"[^0-9\-]")
_LEADING_INT = re.compile(r"^-?\d+")


def _flag(value) -> bool:
    return str(value).strip().lower() in ("1", "true") if value is not None else False


@dataclass
class GuestQuery:
    """Options for one guest-list request."""
    include_checked_out: bool = False
    include_failed: bool = False
    template: Optional[str] = None
    status: Optional[str] = None

    @classmethod
    def from_params(cls, params: Mapping[str, str]) -> "GuestQuery":
        """
        Build from request-style query parameters.

        Recognized: include_checkedout / show_all, include_failed,
        exclude_failed (wins over include_failed), template, status.
        """
        include_failed = _flag(params.get("include_failed"))
        if _flag(params.get("exclude_failed")):
            include_failed = False
        return cls(
            include_checked_out=_flag(params.get("include_checkedout")) or _flag(params.get("show_all")),
            include_failed=include_failed,
            template=params.get("template") or None,
            status=params.get("status") or None,
        )


def parse_available_in(value) -> Optional[int]:
    """Leading integer of a legacy "available in N days" value, if any."""
    if value in (None, ""):
        return None
    match = _LEADING_INT.match(_AVAILABLE_IN_CHARS.sub("", str(value)))
    return int(match.group(0)) if match else None


def is_excluded_name(guest: GuestRecord, excluded: Iterable[str]) -> bool:
    names = {guest.first_name.strip(), guest.display_name}
    return any(name in names for name in excluded if name)


def effective_checkout(guest: GuestRecord, name_map: Optional[NameMapStore] = None) -> str:
    """Guest's own checkout date, else the one remembered in the name map."""
    if guest.checkout_date:
        return guest.checkout_date
    if name_map is None:
        return ""
    return name_map.info(guest.phone_key).checkout_date


def is_checked_out(
    guest: GuestRecord,
    name_map: Optional[NameMapStore] = None,
    today: Optional[date] = None,
) -> bool:
    """
    Checked out when the resolved checkout date is before today, or when the
    legacy available-in field is a non-positive number of days.
    """
    try:
        if has_checkout_passed(effective_checkout(guest, name_map), today=today):
            return True
        days = parse_available_in(guest.available_in)
        return days is not None and days <= 0
    except Exception as e:
        logger.warning(f"Error checking checkout status for {guest.identifier_value}: {e}")
        return False


def is_failed_delivery(guest: GuestRecord) -> bool:
    return "failed" in (guest.delivery_status or "").lower()


def filter_guests(
    guests: Iterable[GuestRecord],
    query: Optional[GuestQuery] = None,
    name_map: Optional[NameMapStore] = None,
    excluded_names: Optional[Iterable[str]] = None,
    today: Optional[date] = None,
) -> list[GuestRecord]:
    """
    Apply the visibility rules to reconciled guests.

    Args:
        guests: Reconciled, deduplicated guests
        query: Request options (defaults hide checked-out and failed guests)
        name_map: Name map consulted for checkout dates missing on a guest
        excluded_names: Names to hide (default from settings)
        today: Reference date (default: today)

    Returns:
        Visible guests, input order preserved.
    """
    query = query or GuestQuery()
    excluded = list(settings.excluded_names if excluded_names is None else excluded_names)

    visible = [g for g in guests if not is_excluded_name(g, excluded)]

    if not query.include_checked_out:
        visible = [g for g in visible if not is_checked_out(g, name_map, today)]

    if query.template:
        visible = [g for g in visible if g.template_name == query.template]
    if query.status:
        visible = [g for g in visible if g.delivery_status == query.status]

    if not query.include_failed:
        visible = [g for g in visible if not is_failed_delivery(g)]

    return visible
