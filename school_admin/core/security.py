"""Credential hashing, signed tokens and storage-key hashing.

Password hashes use the self-describing ``pbkdf2_sha256$rounds$salt$digest``
format so the round count can be raised without invalidating stored hashes.
Signed tokens are three dot-separated base64url parts (header, claims,
HMAC-SHA256 signature); session and password-reset tokens share the format
and are told apart by their ``type`` claim.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
import time
from typing import Any

PBKDF2_ALGORITHM = "pbkdf2_sha256"
PBKDF2_ROUNDS = 120_000
SALT_BYTES = 16

_TOKEN_HEADER = {"alg": "HS256", "typ": "JWT"}


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64url_decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def _derive(password: str, salt: bytes, rounds: int) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)


def hash_password(password: str) -> str:
    """Return a salted PBKDF2 hash of ``password``."""
    salt = secrets.token_bytes(SALT_BYTES)
    digest = _derive(password, salt, PBKDF2_ROUNDS)
    return "$".join(
        (PBKDF2_ALGORITHM, str(PBKDF2_ROUNDS), _b64url_encode(salt), _b64url_encode(digest))
    )


def verify_password(password: str, stored_hash: str) -> bool:
    """Check ``password`` against a hash from :func:`hash_password`.

    Unknown algorithms and malformed hashes never verify.
    """
    parts = stored_hash.split("$")
    if len(parts) != 4 or parts[0] != PBKDF2_ALGORITHM:
        return False
    try:
        rounds = int(parts[1])
        salt = _b64url_decode(parts[2])
        expected = _b64url_decode(parts[3])
    except ValueError:
        return False
    return hmac.compare_digest(_derive(password, salt, rounds), expected)


def _encode_json(value: dict[str, Any]) -> str:
    return _b64url_encode(json.dumps(value, separators=(",", ":")).encode("utf-8"))


def _signature(signing_input: str, secret_key: str) -> bytes:
    return hmac.new(
        secret_key.encode("utf-8"), signing_input.encode("ascii"), hashlib.sha256
    ).digest()


def build_signed_token(payload: dict[str, Any], secret_key: str) -> str:
    """Sign ``payload`` claims into a compact token."""
    signing_input = f"{_encode_json(_TOKEN_HEADER)}.{_encode_json(payload)}"
    return f"{signing_input}.{_b64url_encode(_signature(signing_input, secret_key))}"


def decode_signed_token(
    token: str, secret_key: str, *, now: float | None = None
) -> dict[str, Any]:
    """Return the claims of a token signed with ``secret_key``.

    Raises ``ValueError`` when the token is malformed, the signature does not
    match, or its ``exp`` claim lies before ``now`` (wall clock by default).
    """
    signing_input, _, signature_part = token.rpartition(".")
    if signing_input.count(".") != 1:
        raise ValueError("Malformed token")
    try:
        provided = _b64url_decode(signature_part)
    except ValueError as exc:
        raise ValueError("Malformed token") from exc
    if not hmac.compare_digest(_signature(signing_input, secret_key), provided):
        raise ValueError("Invalid token signature")

    try:
        claims = json.loads(_b64url_decode(signing_input.split(".", 1)[1]))
    except ValueError as exc:
        raise ValueError("Invalid token payload") from exc
    if not isinstance(claims, dict):
        raise ValueError("Invalid token payload")

    expires_at = int(claims.get("exp") or 0)
    current = time.time() if now is None else now
    if expires_at and expires_at < int(current):
        raise ValueError("Token expired")
    return claims


def fingerprint(value: str) -> str:
    """Short SHA-256 digest used to bind a token to a secret it must not reveal."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:16]


def hash_identifier(identifier: str) -> str:
    """Map an arbitrary identifier to a short storage key.

    Uses the classic 31-multiplier string hash truncated to a signed 32-bit
    integer. Not a secrecy measure: it only bounds key length and charset.
    """
    value = 0
    for char in identifier:
        value = (value * 31 + ord(char)) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return f"rate_{abs(value)}"


def constant_time_equals(left: str, right: str) -> bool:
    return hmac.compare_digest(left.encode("utf-8"), right.encode("utf-8"))
