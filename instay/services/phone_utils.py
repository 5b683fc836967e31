"""
Phone number utilities for the guest dashboard.

Provides the digits-only comparison key used for every identity merge, plus
the alternate raw representations upstream sources use for the same number.
"""
import re
from typing import NamedTuple

_NON_DIGIT = re.compile(r'\D')
_WHITESPACE = re.compile(r'\s+')


class PhoneForms(NamedTuple):
    """Raw representations of one phone number."""
    with_plus: str
    without_plus: str


def normalize_phone(raw: str) -> str:
    """
    Normalize a raw phone value to its PhoneKey (digits only).

    Args:
        raw: Raw phone number in any common format

    Returns:
        Digits-only key, or "" when the value carries no digits.
        An empty key means "no identity" and must never be indexed.

    Examples:
        >>> normalize_phone("+1 555 0100")
        '15550100'
        >>> normalize_phone("(901) 229-5017")
        '9012295017'
        >>> normalize_phone("n/a")
        ''
    """
    if not raw:
        return ""
    return _NON_DIGIT.sub('', str(raw))


def strip_whitespace(raw: str) -> str:
    """Remove all whitespace from a raw phone value, keeping any leading +."""
    if not raw:
        return ""
    return _WHITESPACE.sub('', str(raw))


def alternate_forms(raw: str) -> PhoneForms:
    """
    Return the with/without leading "+" forms of a raw phone value.

    Examples:
        >>> alternate_forms("+34600111222")
        PhoneForms(with_plus='+34600111222', without_plus='34600111222')
        >>> alternate_forms("34 600 111 222")
        PhoneForms(with_plus='+34600111222', without_plus='34600111222')
    """
    compact = strip_whitespace(raw)
    bare = compact[1:] if compact.startswith("+") else compact
    if not bare:
        return PhoneForms("", "")
    return PhoneForms(f"+{bare}", bare)


def lookup_keys(raw: str) -> list[str]:
    """Every key a record for this phone may be indexed under, PhoneKey first."""
    keys = []
    norm = normalize_phone(raw)
    if norm:
        keys.append(norm)
    compact = strip_whitespace(raw)
    forms = alternate_forms(raw)
    for key in (compact, forms.with_plus, forms.without_plus):
        if key and key not in keys:
            keys.append(key)
    return keys
