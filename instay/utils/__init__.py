# Instay Dashboard Utilities
"""
Shared utility functions for the guest dashboard services.
"""

from instay.utils.datetime_utils import make_aware, parse_timestamp
from instay.utils.date_parser import parse_checkout_date, has_checkout_passed

__all__ = ["make_aware", "parse_timestamp", "parse_checkout_date", "has_checkout_passed"]
