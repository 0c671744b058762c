"""Identity-token decoding and claim normalization.

The ID token arrives straight from the provider's token endpoint over TLS
and its payload is decoded WITHOUT verifying the signature against the
provider's published keys.  That is a known hardening gap, not an
assumption of safety: a JWKS-backed verification step belongs in
extract_profile() before the payload is trusted any further.
"""

from __future__ import annotations

import logging
from typing import Any

import jwt

from app.core.errors import InvalidToken
from app.models.profile import NormalizedProfile

logger = logging.getLogger(__name__)

PLACEHOLDER_EMAIL_DOMAIN = "unknown.local"

# Single-valued claims that may carry an email, in priority order.  The
# multi-valued ``emails`` claim is consulted right after ``email``.
_EMAIL_FALLBACK_CLAIMS = ("preferred_username", "upn", "mail", "unique_name")


def decode_claims(id_token: str) -> dict[str, Any]:
    """Decode the token payload into a claim mapping (signature NOT verified)."""
    try:
        claims = jwt.decode(
            id_token,
            options={
                "verify_signature": False,
                "verify_exp": False,
                "verify_aud": False,
                "verify_iss": False,
            },
        )
    except jwt.PyJWTError as e:
        logger.warning("ID token could not be decoded: %s", type(e).__name__)
        raise InvalidToken("undecodable id token") from None

    if not isinstance(claims, dict):
        raise InvalidToken("id token payload is not an object")
    return claims


def _text(value: Any) -> str | None:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return None


def derive_email(claims: dict[str, Any], subject: str) -> tuple[str, bool]:
    """Pick the user's email from the claims.  Returns (email, synthesized).

    First non-empty wins: ``email``, first entry of ``emails``, then the
    username-style claims.  With nothing usable, a placeholder
    ``<subject>@unknown.local`` is synthesized.  Two subjects can never
    share a placeholder, but a placeholder is not a deliverable address.
    """
    direct = _text(claims.get("email"))
    if direct:
        return direct, False

    emails = claims.get("emails")
    if isinstance(emails, list) and emails:
        first = _text(emails[0])
        if first:
            return first, False

    for name in _EMAIL_FALLBACK_CLAIMS:
        value = _text(claims.get(name))
        if value:
            return value, False

    return f"{subject}@{PLACEHOLDER_EMAIL_DOMAIN}", True


def normalize_claims(claims: dict[str, Any]) -> NormalizedProfile:
    subject = _text(claims.get("sub"))
    if not subject:
        raise InvalidToken("id token has no subject")

    email, synthesized = derive_email(claims, subject)
    if synthesized:
        logger.warning("No email claim present; using placeholder address  sub=%s", subject)

    return NormalizedProfile(
        subject=subject,
        email=email,
        given_name=_text(claims.get("given_name")),
        family_name=_text(claims.get("family_name")),
        display_name=_text(claims.get("name")),
        email_was_synthesized=synthesized,
        claims=dict(claims),
    )


def extract_profile(id_token: str) -> NormalizedProfile:
    """Decode an ID token and map its claims onto a NormalizedProfile.

    Raises InvalidToken if the token is structurally undecodable or has no
    subject.
    """
    return normalize_claims(decode_claims(id_token))
