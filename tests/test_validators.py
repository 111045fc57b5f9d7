from __future__ import annotations

import pytest

from school_admin.core.errors import ValidationError
from school_admin.core.validators import (
    is_valid_timestamp,
    normalize_email,
    normalize_name,
    normalize_phone,
    sanitize_text,
    validate_credential_strength,
)


def test_normalize_email_lowercases_and_trims() -> None:
    assert normalize_email("  Jane.Doe@Example.COM ") == "jane.doe@example.com"


@pytest.mark.parametrize(
    "email",
    ["", "plain", "a@b", "jane..doe@example.com", ".jane@example.com", "jane@example.com.", "x" * 95 + "@example.com"],
)
def test_normalize_email_rejects_malformed(email: str) -> None:
    with pytest.raises(ValidationError):
        normalize_email(email)


def test_normalize_name_title_cases_and_strips_symbols() -> None:
    assert normalize_name("  aNNa   maRIA<script> ") == "Anna Mariascript"
    assert normalize_name("jean-luc") == "Jean-luc"
    assert len(normalize_name("a" * 80)) == 50


def test_normalize_name_requires_a_letter() -> None:
    with pytest.raises(ValidationError, match="First name"):
        normalize_name("1234 !!", field="First name")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("9876543210", "+919876543210"),
        ("+91 98765-43210", "+919876543210"),
        ("(987) 654 3210", "+919876543210"),
    ],
)
def test_normalize_phone_prefixes_country_code(raw: str, expected: str) -> None:
    assert normalize_phone(raw) == expected


@pytest.mark.parametrize("raw", ["5876543210", "98765432", "98765432101", "", "+1 9876543210"])
def test_normalize_phone_rejects_invalid_numbers(raw: str) -> None:
    with pytest.raises(ValidationError):
        normalize_phone(raw)


def test_normalize_phone_honors_configured_country_code() -> None:
    assert normalize_phone("9876543210", country_code="+44") == "+449876543210"


@pytest.mark.parametrize("password", ["Sh0rt!", "alllower1!", "ALLUPPER1!", "NoDigits!!", "NoSpecial12", "A1!a" * 30])
def test_validate_credential_strength_rejects_weak_passwords(password: str) -> None:
    with pytest.raises(ValidationError):
        validate_credential_strength(password)


def test_validate_credential_strength_accepts_strong_password() -> None:
    assert validate_credential_strength("Str0ng!Pass") == "Str0ng!Pass"


def test_sanitize_text_strips_markup_and_protocols() -> None:
    assert sanitize_text("<img src=x>javascript:alert(1)") == "alert(1)"
    assert sanitize_text("Mozilla/5.0 \"quoted\"", 10) == "Mozilla/5."
    assert sanitize_text(None) == "unknown"
    assert sanitize_text("") == "unknown"


def test_is_valid_timestamp_accepts_iso_strings_only() -> None:
    assert is_valid_timestamp("2024-05-01T09:00:00Z")
    assert is_valid_timestamp("2024-05-01T09:00:00+00:00")
    assert not is_valid_timestamp("yesterday")
    assert not is_valid_timestamp(1714554000)
    assert not is_valid_timestamp("")
