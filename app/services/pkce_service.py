from __future__ import annotations

import base64
import hashlib
import hmac
import secrets

# One-time secrets that protect the login handshake:
#
#   code verifier  - kept in the session, sent only to the token endpoint
#   code challenge - S256 digest of the verifier, sent in the authorize redirect
#   csrf state     - echoed back by the provider on the callback
#
# All three are URL-safe base64 without padding.

CODE_CHALLENGE_METHOD = "S256"

# 32 bytes = 256 bits of entropy -> 43 chars after base64url, the RFC 7636 minimum.
_VERIFIER_BYTES = 32
_STATE_BYTES = 32


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def generate_code_verifier() -> str:
    return _b64url(secrets.token_bytes(_VERIFIER_BYTES))


def compute_code_challenge(code_verifier: str) -> str:
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return _b64url(digest)


def generate_csrf_state() -> str:
    # Independent draw; never derived from the verifier.
    return _b64url(secrets.token_bytes(_STATE_BYTES))


def states_match(received: str | None, expected: str | None) -> bool:
    """Compare the callback ``state`` with the stored one.

    Absence on either side is a mismatch, never a pass.
    """
    if not received or not expected:
        return False
    return hmac.compare_digest(received.encode("utf-8"), expected.encode("utf-8"))
