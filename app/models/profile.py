from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class NormalizedProfile:
    """Provider claims mapped onto the fields the rest of the service uses.

    Produced once by the claims extractor; nothing downstream reads raw
    provider claim names.  ``claims`` keeps the full decoded payload as the
    snapshot stored on the user record.
    """

    subject: str
    email: str
    given_name: str | None = None
    family_name: str | None = None
    display_name: str | None = None
    email_was_synthesized: bool = False
    claims: dict[str, Any] = field(default_factory=dict)
