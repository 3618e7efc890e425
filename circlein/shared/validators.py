"""Shared validation utilities"""

import re
from datetime import datetime
from typing import Optional

from .timeutils import to_naive_utc

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
FLAT_NUMBER_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9 /-]{0,19}$")


def normalize_email(email: Optional[str]) -> str:
    """
    Lowercase and strip an email address.

    Raises:
        ValueError: If the address is empty or malformed
    """
    if not email:
        raise ValueError("Email is required")
    cleaned = email.strip().lower()
    if not EMAIL_PATTERN.match(cleaned):
        raise ValueError("Invalid email address")
    return cleaned


def validate_flat_number(flat_number: Optional[str]) -> str:
    """Flat numbers like 'A-101', 'B 12', '7/3'"""
    if not flat_number or not flat_number.strip():
        raise ValueError("Flat number is required")
    cleaned = flat_number.strip().upper()
    if not FLAT_NUMBER_PATTERN.match(cleaned):
        raise ValueError("Invalid flat number")
    return cleaned


def parse_timestamp(value) -> datetime:
    """
    Accept a datetime or an ISO 8601 string (a trailing 'Z' is allowed) and
    return naive UTC.

    Raises:
        ValueError: If the value cannot be parsed
    """
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if not isinstance(value, str) or not value:
        raise ValueError("Invalid date format")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise ValueError("Invalid date format") from e
    return to_naive_utc(parsed)
