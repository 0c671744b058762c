from __future__ import annotations

import jwt
import pytest

from app.core.errors import InvalidToken
from app.services.claims_service import derive_email, extract_profile

KEY = "some-provider-key-that-is-never-checked-0123"


def _token(claims: dict) -> str:
    return jwt.encode(claims, KEY, algorithm="HS256")


def test_extract_profile_maps_standard_claims() -> None:
    profile = extract_profile(
        _token(
            {
                "sub": "abc123",
                "email": "jane@example.com",
                "given_name": "Jane",
                "family_name": "Doe",
                "name": "Jane Doe",
                "tid": "tenant-123",
            }
        )
    )
    assert profile.subject == "abc123"
    assert profile.email == "jane@example.com"
    assert profile.given_name == "Jane"
    assert profile.family_name == "Doe"
    assert profile.display_name == "Jane Doe"
    assert profile.email_was_synthesized is False
    # The full claim set is kept for the snapshot.
    assert profile.claims["tid"] == "tenant-123"


def test_signature_is_not_verified() -> None:
    token = jwt.encode({"sub": "abc123"}, "a-completely-different-key-0123456789", algorithm="HS256")
    assert extract_profile(token).subject == "abc123"


def test_expired_token_still_decodes() -> None:
    assert extract_profile(_token({"sub": "abc123", "exp": 1})).subject == "abc123"


def test_subject_only_synthesizes_placeholder_email() -> None:
    profile = extract_profile(_token({"sub": "abc123"}))
    assert profile.email == "abc123@unknown.local"
    assert profile.email_was_synthesized is True


def test_placeholder_email_is_logged_as_warning(caplog: pytest.LogCaptureFixture) -> None:
    extract_profile(_token({"sub": "abc123"}))
    assert any("placeholder" in r.getMessage() for r in caplog.records)


@pytest.mark.parametrize(
    ("claims", "expected"),
    [
        ({"email": "a@x.io", "emails": ["b@x.io"], "preferred_username": "c@x.io"}, "a@x.io"),
        ({"emails": ["b@x.io", "z@x.io"], "preferred_username": "c@x.io"}, "b@x.io"),
        ({"preferred_username": "c@x.io", "upn": "d@x.io"}, "c@x.io"),
        ({"upn": "d@x.io", "mail": "e@x.io"}, "d@x.io"),
        ({"mail": "e@x.io", "unique_name": "f@x.io"}, "e@x.io"),
        ({"unique_name": "f@x.io"}, "f@x.io"),
        ({"email": "", "emails": [], "upn": "d@x.io"}, "d@x.io"),
        ({"email": "   ", "preferred_username": "c@x.io"}, "c@x.io"),
    ],
)
def test_email_fallback_order(claims: dict, expected: str) -> None:
    email, synthesized = derive_email(claims, "sub-1")
    assert email == expected
    assert synthesized is False


def test_missing_subject_is_invalid() -> None:
    with pytest.raises(InvalidToken):
        extract_profile(_token({"email": "jane@example.com"}))


def test_blank_subject_is_invalid() -> None:
    with pytest.raises(InvalidToken):
        extract_profile(_token({"sub": "  "}))


@pytest.mark.parametrize("token", ["", "not-a-jwt", "a.b.c", "x.eyJzdWIiOiJhYmMifQ"])
def test_undecodable_token_is_invalid(token: str) -> None:
    with pytest.raises(InvalidToken):
        extract_profile(token)


def test_non_string_claims_are_ignored() -> None:
    profile = extract_profile(_token({"sub": "abc", "given_name": 42, "email": ["x"]}))
    assert profile.given_name is None
    assert profile.email == "abc@unknown.local"
