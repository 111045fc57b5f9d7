from __future__ import annotations

from school_admin.auth.csrf import TOKEN_KEY, TOKEN_TIMESTAMP_KEY, CSRFGuard


class _Clock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _guard(storage: dict[str, str] | None = None, clock: _Clock | None = None) -> CSRFGuard:
    return CSRFGuard(
        storage if storage is not None else {},
        current_origin="https://school.example.org",
        allowed_origins=["https://admin.example.org"],
        max_age_seconds=24 * 60 * 60,
        clock=clock or _Clock(),
    )


def _flip(token: str, index: int) -> str:
    replacement = "0" if token[index] != "0" else "1"
    return token[:index] + replacement + token[index + 1 :]


def test_csrf_token_is_64_hex_chars_and_stable_within_max_age() -> None:
    storage: dict[str, str] = {}
    clock = _Clock()
    guard = _guard(storage, clock)

    token = guard.get_token()
    clock.now += 60

    assert len(token) == 64
    assert all(char in "0123456789abcdef" for char in token)
    assert guard.get_token() == token
    assert storage[TOKEN_KEY] == token
    assert storage[TOKEN_TIMESTAMP_KEY] == "1000.0"


def test_csrf_token_rotates_after_max_age() -> None:
    clock = _Clock()
    guard = _guard(clock=clock)
    token = guard.get_token()

    clock.now += 24 * 60 * 60

    assert guard.current_token() is None
    assert guard.get_token() != token


def test_csrf_validate_request_rejects_single_character_difference() -> None:
    guard = _guard()
    token = guard.get_token()

    assert guard.validate_request(token, token, origin="https://school.example.org") is True
    for index in (0, 31, 63):
        assert (
            guard.validate_request(_flip(token, index), token, origin="https://school.example.org")
            is False
        )


def test_csrf_validate_token_checks_shape_before_comparing() -> None:
    guard = _guard()

    assert guard.validate_token(None, "abcd" * 16) is False
    assert guard.validate_token("abc", "abc") is False
    assert guard.validate_token("zz" * 32, "zz" * 32) is False
    assert guard.validate_token("ab" * 32, "ab" * 31) is False
    assert guard.validate_token("AB" * 32, "AB" * 32) is True


def test_csrf_validate_request_rejects_expired_expected_token() -> None:
    clock = _Clock()
    guard = _guard(clock=clock)
    token = guard.get_token()

    clock.now += 24 * 60 * 60 + 1

    assert guard.validate_request(token, token) is False


def test_csrf_origin_falls_back_to_referrer_then_own_origin() -> None:
    guard = _guard()

    assert guard.validate_origin("https://admin.example.org") is True
    assert guard.validate_origin(None, "https://school.example.org/admin/requests?x=1") is True
    assert guard.validate_origin() is True
    assert guard.validate_origin("https://evil.example.com") is False
    assert guard.validate_origin(None, "https://evil.example.com/page") is False
    assert guard.validate_origin("not a url") is False


def test_csrf_allowed_origins_include_local_https_development_hosts() -> None:
    origins = _guard().allowed_origins

    assert "https://localhost:3000" in origins
    assert "https://127.0.0.1:3000" in origins
    assert "https://school.example.org" in origins
    assert "https://admin.example.org" in origins
