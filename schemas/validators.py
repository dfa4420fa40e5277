"""
Input validation for contact fingerprints
Pure predicates and normalizers used by both the request schema and the
identity service, so the same rules apply before any database access.
"""

import re
from typing import Optional, Tuple

from errors import ValidationError

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^\+?[0-9\s\-()]+$")
MIN_PHONE_DIGITS = 7

# Widths of the contacts.email and contacts.phone_number columns
MAX_EMAIL_LENGTH = 255
MAX_PHONE_LENGTH = 20

# Values clients send when they mean "no value"
_NULL_MARKERS = {"", "null", "none"}


def _clean(value, field: str) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError(f"{field} must not be fractional", field=field)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(int(value))
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", field=field)
    value = value.strip()
    if value.lower() in _NULL_MARKERS:
        return None
    return value


def is_valid_email(email: str) -> bool:
    """Check the local@domain.tld shape and the column width"""
    if len(email) > MAX_EMAIL_LENGTH:
        return False
    return bool(EMAIL_PATTERN.match(email))


def is_valid_phone_number(phone: str) -> bool:
    """
    Check that a phone number contains only digits, spaces, dashes,
    parentheses and an optional leading +, with enough digits to dial
    """
    if len(phone) > MAX_PHONE_LENGTH or not PHONE_PATTERN.match(phone):
        return False
    return len(re.sub(r"\D", "", phone)) >= MIN_PHONE_DIGITS


def normalize_email(email) -> Optional[str]:
    """Strip and lower-case an email; null markers become None"""
    cleaned = _clean(email, "email")
    return cleaned.lower() if cleaned else None


def normalize_phone_number(phone) -> Optional[str]:
    """Strip a phone number, accepting JSON numbers; null markers become None"""
    return _clean(phone, "phoneNumber")


def validate_email(email) -> Optional[str]:
    email = normalize_email(email)
    if email is not None and not is_valid_email(email):
        raise ValidationError("Invalid email format", field="email")
    return email


def validate_phone_number(phone) -> Optional[str]:
    phone = normalize_phone_number(phone)
    if phone is not None and not is_valid_phone_number(phone):
        raise ValidationError("Invalid phone number format", field="phoneNumber")
    return phone


def validate_observation(email, phone) -> Tuple[Optional[str], Optional[str]]:
    """
    Normalize and validate an (email, phone) observation

    Returns the normalized pair. Raises ValidationError naming the offending
    field, or "contact" when neither value is present.
    """
    email = validate_email(email)
    phone = validate_phone_number(phone)
    if email is None and phone is None:
        raise ValidationError(
            "At least one of email or phoneNumber must be provided",
            field="contact"
        )
    return email, phone
