"""
Guest reconciliation.

Builds one canonical guest record per PhoneKey from:
- the current guest export (source of truth for room/checkout data)
- recent Bird message/contact events
- the persistent phone -> name map

Records are rebuilt on every pass and never persisted; only names learned
along the way are written back to the name map.

Name precedence for a guest without an export name (first hit wins, later
sources never overwrite it within a pass):
1. contact annotation name
2. name inferred from the message (template variables, then body greeting)
3. persistent name map
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from instay.services.messages import (
    contact_name,
    contact_phone,
    delivery_code,
    extract_name_from_message,
    message_contacts,
    message_preview,
    message_time,
    primary_contact_name,
    primary_phone_key,
    room_from_template,
    template_name,
)
from instay.services.name_map import NameMapStore
from instay.services.phone_utils import lookup_keys, normalize_phone
from instay.services.record_extractor import GuestFields

logger = logging.getLogger(__name__)


@dataclass
class GuestRecord:
    """One guest, keyed by PhoneKey for the duration of a pass."""
    phone_key: str
    identifier_value: str
    first_name: str = ""
    last_name: str = ""
    room_number: str = ""
    email: str = ""
    checkout_date: str = ""
    checkin_date: str = ""
    available_in: str = ""
    last_message: str = ""
    last_seen: Optional[datetime] = None
    last_direction: str = ""
    template_name: Optional[str] = None
    delivery_status: Optional[str] = None
    delivery_reason: Optional[str] = None
    delivery_code: Optional[str] = None

    @property
    def display_name(self) -> str:
        return " ".join(p for p in (self.first_name.strip(), self.last_name.strip()) if p)

    @property
    def has_name(self) -> bool:
        return bool(self.first_name.strip())

    def set_name(self, name: str) -> None:
        parts = (name or "").split()
        if not parts:
            return
        self.first_name = parts[0]
        if not self.last_name:
            self.last_name = " ".join(parts[1:])

    def fill_from(self, fields: GuestFields) -> None:
        """Copy export fields this record does not have yet."""
        self.first_name = self.first_name or fields.first_name
        self.last_name = self.last_name or fields.last_name
        self.room_number = self.room_number or fields.room_number
        self.email = self.email or fields.email
        self.checkout_date = self.checkout_date or fields.checkout_date
        self.checkin_date = self.checkin_date or fields.checkin_date
        self.available_in = self.available_in or fields.available_in

    def to_dict(self) -> dict:
        return {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "roomNumber": self.room_number,
            "identifierValue": self.identifier_value,
            "email": self.email,
            "checkoutDate": self.checkout_date,
            "checkinDate": self.checkin_date,
            "availableIn": self.available_in,
            "lastMessage": self.last_message,
            "lastSeen": self.last_seen.isoformat() if self.last_seen else None,
            "lastDirection": self.last_direction,
            "templateName": self.template_name,
            "deliveryStatus": self.delivery_status,
            "deliveryReason": self.delivery_reason,
            "deliveryCode": self.delivery_code,
        }


def build_export_lookup(records: Iterable[GuestFields]) -> dict[str, GuestFields]:
    """Export records keyed by PhoneKey and by both raw phone forms."""
    lookup: dict[str, GuestFields] = {}
    for record in records:
        if not record.phone_key:
            continue
        for key in lookup_keys(record.phone):
            lookup[key] = record
    return lookup


def dedupe_guests(guests: Iterable[GuestRecord]) -> list[GuestRecord]:
    """Collapse records that resolve to the same PhoneKey (first one kept)."""
    unique: list[GuestRecord] = []
    seen: set[str] = set()
    for guest in guests:
        key = normalize_phone(guest.identifier_value) or guest.phone_key
        if key in seen:
            continue
        seen.add(key)
        unique.append(guest)
    return unique


def sort_by_last_seen(guests: Iterable[GuestRecord]) -> list[GuestRecord]:
    """Most recent activity first; guests without activity last."""
    return sorted(
        guests,
        key=lambda g: (g.last_seen is None, -g.last_seen.timestamp() if g.last_seen else 0.0),
    )


class GuestReconciler:
    """
    Merges one export snapshot with message events into guest records.

    Stateless across passes; each reconcile() call starts from scratch.
    """

    def __init__(self, name_map: NameMapStore):
        self.name_map = name_map

    def reconcile(
        self,
        records: list[GuestFields],
        events: Optional[list[dict]] = None,
    ) -> list[GuestRecord]:
        """
        Run one reconciliation pass.

        Args:
            records: Extracted rows of the current export
            events: Raw Bird message events (any order)

        Returns:
            Deduplicated guest records, most recently active first.
        """
        events = events or []

        self.name_map.upsert_from_records(records)
        export_lookup = build_export_lookup(records)

        guests: dict[str, GuestRecord] = {}
        self._seed_from_export(guests, records, export_lookup)

        for event in events:
            try:
                self._apply_event(guests, event, export_lookup)
            except Exception as e:
                logger.warning(f"Skipping malformed message {_event_id(event)}: {e}")

        self._infer_names_from_earliest(guests, events)
        self._apply_name_map(guests.values())

        return sort_by_last_seen(dedupe_guests(guests.values()))

    def _seed_from_export(
        self,
        guests: dict[str, GuestRecord],
        records: list[GuestFields],
        export_lookup: dict[str, GuestFields],
    ) -> None:
        for record in records:
            try:
                key = record.phone_key
                if not key:
                    continue
                guest = guests.get(key)
                if guest is None:
                    guest = GuestRecord(phone_key=key, identifier_value=record.phone)
                    guests[key] = guest
                guest.fill_from(record)
                for alias in lookup_keys(record.phone):
                    match = export_lookup.get(alias)
                    if match is not None:
                        guest.fill_from(match)
            except Exception as e:
                logger.warning(f"Skipping malformed export record: {e}")

    def _guest_for(
        self,
        guests: dict[str, GuestRecord],
        raw_phone: str,
        export_lookup: dict[str, GuestFields],
    ) -> Optional[GuestRecord]:
        key = normalize_phone(raw_phone)
        if not key:
            return None
        guest = guests.get(key)
        if guest is None:
            guest = GuestRecord(phone_key=key, identifier_value=raw_phone)
            for alias in lookup_keys(raw_phone):
                match = export_lookup.get(alias)
                if match is not None:
                    guest.fill_from(match)
                    break
            guests[key] = guest
        return guest

    def _apply_event(
        self,
        guests: dict[str, GuestRecord],
        event: dict,
        export_lookup: dict[str, GuestFields],
    ) -> None:
        if not isinstance(event, dict):
            raise ValueError("message is not an object")

        for contact in message_contacts(event):
            guest = self._guest_for(guests, contact_phone(contact), export_lookup)
            if guest is None:
                continue

            if not guest.has_name:
                self._resolve_name(guest, contact, event)

            if not guest.room_number:
                guest.room_number = room_from_template(event)

            self._apply_activity(guest, event)
            self._apply_delivery(guest, event)

    def _resolve_name(self, guest: GuestRecord, contact: dict, event: dict) -> None:
        name = contact_name(contact) or extract_name_from_message(event)
        if name:
            guest.set_name(name)
            return
        info = self.name_map.info(guest.phone_key)
        if info.name:
            guest.first_name = info.first_name
            guest.last_name = guest.last_name or info.last_name
            guest.checkout_date = guest.checkout_date or info.checkout_date

    @staticmethod
    def _apply_activity(guest: GuestRecord, event: dict) -> None:
        """Keep the chronologically latest message, whatever the arrival order."""
        sent_at = message_time(event)
        direction = event.get("direction")
        if sent_at is not None:
            if guest.last_seen is not None and sent_at <= guest.last_seen:
                return
            guest.last_seen = sent_at
        elif guest.last_seen is not None or guest.last_message:
            return
        guest.last_message = message_preview(event)
        guest.last_direction = str(direction) if direction else guest.last_direction

    @staticmethod
    def _apply_delivery(guest: GuestRecord, event: dict) -> None:
        name = template_name(event)
        if name:
            guest.template_name = name

        status = event.get("status")
        failure = event.get("failure")
        if status:
            guest.delivery_status = str(status)
        elif failure:
            guest.delivery_status = guest.delivery_status or "failed"

        if isinstance(failure, dict) and failure.get("description"):
            guest.delivery_reason = str(failure["description"])
        code = delivery_code(event)
        if code:
            guest.delivery_code = code

    def _infer_names_from_earliest(
        self,
        guests: dict[str, GuestRecord],
        events: list[dict],
    ) -> None:
        """
        Name each phone from its chronologically earliest message that carries
        one, and remember that name in the name map.
        """
        by_phone: dict[str, list[dict]] = {}
        for event in events:
            try:
                key = primary_phone_key(event)
            except Exception:
                continue
            if key:
                by_phone.setdefault(key, []).append(event)

        learned: list[tuple[str, str, Optional[str]]] = []
        for key, messages in by_phone.items():
            ordered = sorted(
                messages,
                key=lambda m: (message_time(m) is None, message_time(m) or datetime.min),
            )
            found = None
            for message in ordered:
                try:
                    found = primary_contact_name(message) or extract_name_from_message(message)
                except Exception as e:
                    logger.debug(f"Name inference skipped for {_event_id(message)}: {e}")
                if found:
                    break
            if not found:
                continue

            guest = guests.get(key)
            if guest is not None and not guest.has_name:
                guest.set_name(found)
            learned.append((key, " ".join(found.split()), None))

        if learned:
            self.name_map.upsert_many(learned)

    def _apply_name_map(self, guests: Iterable[GuestRecord]) -> None:
        """Final pass: name any guest still missing one from the name map."""
        for guest in guests:
            if guest.has_name:
                continue
            info = self.name_map.info(guest.phone_key)
            if not info.name:
                continue
            guest.first_name = info.first_name
            guest.last_name = info.last_name
            guest.checkout_date = guest.checkout_date or info.checkout_date
            logger.debug(
                f"[phone-map] applied mapping for {guest.identifier_value} -> {guest.display_name}"
            )


def _event_id(event) -> str:
    if isinstance(event, dict):
        return str(event.get("id") or "?")
    return "?"
