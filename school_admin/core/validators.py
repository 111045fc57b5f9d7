"""Input normalization for emails, names, phones, credentials and free text."""

from __future__ import annotations

import re
from datetime import datetime

from school_admin.core.errors import ValidationError

_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
_PHONE_DIGITS_RE = re.compile(r"^[6-9]\d{9}$")
_NAME_DISALLOWED_RE = re.compile(r"[^a-zA-Z\s\-']")
_SPECIAL_CHARS = set("!@#$%^&*()_+-=[]{};':\"\\|,.<>/?")
_DANGEROUS_PROTOCOL_RE = re.compile(r"(javascript|data|vbscript):", re.IGNORECASE)


def normalize_email(email: str) -> str:
    """Lower-case, trim and validate an email address."""
    if not isinstance(email, str) or not email.strip():
        raise ValidationError("Invalid email format")

    normalized = email.strip().lower()
    if not _EMAIL_RE.match(normalized):
        raise ValidationError("Invalid email format")
    if ".." in normalized or normalized.startswith(".") or normalized.endswith("."):
        raise ValidationError("Invalid email format")
    if len(normalized) < 5 or len(normalized) > 100:
        raise ValidationError("Email length must be between 5 and 100 characters")
    return normalized


def normalize_name(name: str, *, field: str = "Name") -> str:
    """Strip disallowed characters, collapse whitespace and title-case."""
    cleaned = _NAME_DISALLOWED_RE.sub("", name or "")
    cleaned = " ".join(cleaned.split())[:50].strip()
    if not cleaned:
        raise ValidationError(f"{field} must contain at least one letter")
    return " ".join(part[:1].upper() + part[1:].lower() for part in cleaned.split(" "))


def normalize_phone(phone: str, *, country_code: str = "+91") -> str:
    """Return ``<country_code><10 digits>`` or raise on malformed input."""
    digits = re.sub(r"[^\d+]", "", phone or "")
    if digits.startswith(country_code):
        digits = digits[len(country_code):]
    if not _PHONE_DIGITS_RE.match(digits):
        raise ValidationError("Phone number must be 10 digits starting with 6-9.")
    return f"{country_code}{digits}"


def validate_credential_strength(password: str) -> str:
    """Require 8-100 chars with upper, lower, digit and special character."""
    if not isinstance(password, str) or len(password) < 8:
        raise ValidationError("Password must be at least 8 characters long.")
    if len(password) > 100:
        raise ValidationError("Password too long.")
    has_upper = any(char.isupper() for char in password)
    has_lower = any(char.islower() for char in password)
    has_digit = any(char.isdigit() for char in password)
    has_special = any(char in _SPECIAL_CHARS for char in password)
    if not (has_upper and has_lower and has_digit and has_special):
        raise ValidationError(
            "Password must contain at least one uppercase letter, one lowercase "
            "letter, one number, and one special character."
        )
    return password


def sanitize_text(value: str | None, max_length: int = 500) -> str:
    """Remove markup and script-like fragments from log/audit strings."""
    if not value or not isinstance(value, str):
        return "unknown"
    cleaned = re.sub(r"<[^>]*>", "", value)
    cleaned = re.sub(r"[<>'\"&`]", "", cleaned)
    cleaned = _DANGEROUS_PROTOCOL_RE.sub("", cleaned)
    return cleaned.strip()[:max_length]


def is_valid_timestamp(value: object) -> bool:
    """Return whether value is an ISO-8601 timestamp string."""
    if not isinstance(value, str) or not value.strip():
        return False
    try:
        datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return False
    return True
