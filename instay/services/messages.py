"""
Bird message event helpers.

Reads the loosely-structured message/contact events returned by the Bird
conversations API: body text, contacts, template variables, delivery status,
and the heuristics that infer a guest name from a message.

Name inference order (first hit wins):
1. template variable whose key looks like a name (first/name/guest)
2. any short alphabetic template variable value
3. greeting in the body ("Hi Robert," / "Dear Emma Stone,")
4. a bare leading word followed by a comma ("John, your room is ready")
5. "Dear: Name" anywhere in the body

The order matters: different heuristics can disagree for the same message, and
reordering them changes which name a guest ends up with.
"""
import json
import logging
import re
from typing import Any, Optional

from instay.services.phone_utils import normalize_phone, strip_whitespace
from instay.utils.datetime_utils import parse_timestamp

logger = logging.getLogger(__name__)

NAME_KEY_HINTS = ("first", "name", "guest")
ROOM_KEYS = ("room_number", "room")

SHORT_ALPHA_VALUE = re.compile(r"^[A-Za-z\-' ]{2,60}$")
GREETING = re.compile(
    r"""^(?:hi|hello|dear|hey)\s+["']?([A-Za-z\-']+(?:\s+[A-Za-z\-']{1,40})?)["']?[,.!\s]""",
    re.IGNORECASE,
)
LEADING_WORD = re.compile(r"""^["']?([A-Za-z\-']{2,40})["']?,""")
DEAR_ANYWHERE = re.compile(
    r"""Dear[:\s]+["']?([A-Za-z\-']+(?:\s+[A-Za-z\-']{1,40})?)["']?""",
    re.IGNORECASE,
)
GREETING_WORDS = {"hi", "hello", "dear", "hey"}


def _get(obj: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(obj, dict):
            return None
        obj = obj.get(key)
    return obj


def message_body_text(message: dict) -> str:
    """Text of a message from its text, list, or image body variant."""
    body = message.get("body") if isinstance(message, dict) else None
    for variant in ("text", "list", "image"):
        text = _get(body, variant, "text")
        if isinstance(text, str) and text:
            return text
    return ""


def message_preview(message: dict) -> str:
    """Body text, or a JSON rendering for audio/file/unknown bodies."""
    text = message_body_text(message)
    if text:
        return text
    body = message.get("body") if isinstance(message, dict) else None
    if body is None:
        return ""
    return json.dumps(body, default=str)


def message_direction(message: dict) -> str:
    direction = message.get("direction")
    if direction:
        return str(direction)
    return "outgoing" if _get(message, "sender", "connector") else "incoming"


def normalize_message(message: dict) -> Optional[dict]:
    """
    Normalize a Bird message for listeners.

    Returns:
        {"id", "direction", "createdAt", "body", "raw"} or None for empty input.
    """
    if not message or not isinstance(message, dict):
        return None
    return {
        "id": message.get("id"),
        "direction": message_direction(message),
        "createdAt": message.get("createdAt"),
        "body": message_body_text(message),
        "raw": message,
    }


def message_contacts(message: dict) -> list[dict]:
    """Receiver contacts followed by the sender contact, each a contact dict."""
    contacts = []
    receivers = _get(message, "receiver", "contacts")
    if isinstance(receivers, list):
        contacts.extend(c for c in receivers if isinstance(c, dict))
    sender = _get(message, "sender", "contact")
    if isinstance(sender, dict):
        contacts.append(sender)
    return contacts


def contact_phone(contact: dict) -> str:
    """Whitespace-stripped raw phone of a contact."""
    return strip_whitespace(str(contact.get("identifierValue") or ""))


def contact_name(contact: dict) -> str:
    name = _get(contact, "annotations", "name")
    return str(name).strip() if name else ""


def primary_phone(message: dict) -> str:
    """Phone a message is about: first receiver contact, else the sender."""
    receivers = _get(message, "receiver", "contacts")
    if isinstance(receivers, list) and receivers and isinstance(receivers[0], dict):
        phone = contact_phone(receivers[0])
        if phone:
            return phone
    sender = _get(message, "sender", "contact")
    if isinstance(sender, dict):
        return contact_phone(sender)
    return ""


def primary_phone_key(message: dict) -> str:
    return normalize_phone(primary_phone(message))


def primary_contact_name(message: dict) -> str:
    """Annotation name of the first receiver contact, else of the sender."""
    receivers = _get(message, "receiver", "contacts")
    if isinstance(receivers, list) and receivers and isinstance(receivers[0], dict):
        name = contact_name(receivers[0])
        if name:
            return name
    sender = _get(message, "sender", "contact")
    if isinstance(sender, dict):
        return contact_name(sender)
    return ""


def message_time(message: dict):
    return parse_timestamp(message.get("createdAt"))


def template_name(message: dict) -> str:
    name = _get(message, "template", "name")
    return str(name) if name else ""


def template_variables(message: dict) -> dict:
    """Template variables as a dict (list-of-{key,value} shape accepted)."""
    variables = _get(message, "template", "variables")
    if isinstance(variables, dict):
        return variables
    if isinstance(variables, list):
        result = {}
        for item in variables:
            if isinstance(item, dict) and item.get("key"):
                result[str(item["key"])] = item.get("value")
        return result
    return {}


def room_from_template(message: dict) -> str:
    variables = template_variables(message)
    for key in ROOM_KEYS:
        value = variables.get(key)
        if value not in (None, ""):
            return str(value).strip()
    return ""


def name_from_template(message: dict) -> Optional[str]:
    variables = template_variables(message)
    for key, value in variables.items():
        text = str(value or "").strip()
        if not text:
            continue
        lowered = str(key or "").lower()
        if any(hint in lowered for hint in NAME_KEY_HINTS):
            return text
    for value in variables.values():
        text = str(value or "").strip()
        if text and SHORT_ALPHA_VALUE.match(text):
            return text
    return None


def name_from_body(body: str) -> Optional[str]:
    text = (body or "").strip()
    if not text:
        return None
    match = GREETING.match(text)
    if match:
        return match.group(1).strip()
    match = LEADING_WORD.match(text)
    if match and match.group(1).lower() not in GREETING_WORDS:
        return match.group(1).strip()
    match = DEAR_ANYWHERE.search(text)
    if match:
        return match.group(1).strip()
    return None


def extract_name_from_message(message: dict) -> Optional[str]:
    """Infer a guest name from template variables or the body text."""
    try:
        return name_from_template(message) or name_from_body(message_body_text(message))
    except Exception as e:
        logger.debug(f"Name inference failed for message {message.get('id')}: {e}")
        return None


def delivery_code(message: dict) -> str:
    failure = message.get("failure")
    if not isinstance(failure, dict):
        return ""
    code = failure.get("code") or _get(failure, "source", "code")
    return str(code) if code not in (None, "") else ""
