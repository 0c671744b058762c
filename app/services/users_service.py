from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace

from app.core.errors import DuplicateExternalIdError, ReconciliationConflict
from app.core.metrics import USER_RECONCILIATIONS
from app.models.profile import NormalizedProfile
from app.models.user import ADMIN_ROLE, DEFAULT_ROLE, NewUser, UserRecord
from app.repos.user_repo import UserRepo

logger = logging.getLogger(__name__)

# Register-or-authenticate plus the profile operations behind /api.
# Every function takes its repository explicitly.

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

_USER_PERMISSIONS = frozenset({"profile:read", "profile:update"})


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    user: UserRecord
    is_new_user: bool


class UserValidationError(ValueError):
    pass


class UserNotFoundError(LookupError):
    pass


def split_display_name(display_name: str | None) -> tuple[str | None, str | None]:
    """Split "Jane Q Doe" on the first space into ("Jane", "Q Doe").

    A single word is a first name only; the last name stays unset.
    """
    if not display_name or not display_name.strip():
        return None, None
    first, _, rest = display_name.strip().partition(" ")
    return first, (rest.strip() or None)


def derive_names(profile: NormalizedProfile) -> tuple[str | None, str | None]:
    split_first, split_last = split_display_name(profile.display_name)
    return profile.given_name or split_first, profile.family_name or split_last


async def _touch_existing(repo: UserRepo, user: UserRecord, profile: NormalizedProfile) -> UserRecord:
    # Replace, not merge: the snapshot becomes exactly this callback's claims.
    await repo.update_claims(user.id, profile.claims)
    await repo.update_last_login(user.id)
    refreshed = await repo.get_by_id(user.id)
    return refreshed if refreshed is not None else user


async def reconcile(repo: UserRepo, profile: NormalizedProfile) -> ReconcileResult:
    """Map a provider identity onto a local user, creating one on first sight.

    No locking here: two first logins for one subject race on the
    repository's unique constraint.  The loser takes the existing-user
    path once; if the winner's row is still not visible the conflict is
    surfaced rather than retried, so a partial create is never repeated.
    """
    existing = await repo.get_by_external_id(profile.subject)
    if existing is not None:
        user = await _touch_existing(repo, existing, profile)
        USER_RECONCILIATIONS.labels(outcome="existing").inc()
        logger.info("Existing user authenticated  user_id=%s", user.id)
        return ReconcileResult(user=user, is_new_user=False)

    first_name, last_name = derive_names(profile)
    new_user = NewUser(
        external_subject_id=profile.subject,
        email=profile.email,
        first_name=first_name,
        last_name=last_name,
        claims_snapshot=profile.claims,
        role=DEFAULT_ROLE,
        email_verified=True,
    )

    try:
        user = await repo.create(new_user)
    except DuplicateExternalIdError:
        winner = await repo.get_by_external_id(profile.subject)
        if winner is None:
            logger.error("Unique violation but no visible user for subject  sub=%s", profile.subject)
            raise ReconciliationConflict("concurrent registration not resolvable") from None
        user = await _touch_existing(repo, winner, profile)
        USER_RECONCILIATIONS.labels(outcome="race_lost").inc()
        logger.info("Concurrent first login resolved to existing user  user_id=%s", user.id)
        return ReconcileResult(user=user, is_new_user=False)

    USER_RECONCILIATIONS.labels(outcome="created").inc()
    logger.info("New user registered  user_id=%s", user.id)
    return ReconcileResult(user=user, is_new_user=True)


# ---------------------------------------------------------------------------
# Profile operations
# ---------------------------------------------------------------------------


async def get_user(repo: UserRepo, user_id: int) -> UserRecord:
    user = await repo.get_by_id(user_id)
    if user is None:
        raise UserNotFoundError(user_id)
    return user


def _sanitize(value: str) -> str:
    return value.strip().replace("<", "").replace(">", "")


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email))


@dataclass(frozen=True, slots=True)
class ProfileChanges:
    """Sanitized profile edits.  None means "leave unchanged"."""

    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None

    def apply_to(self, user: UserRecord) -> UserRecord:
        """The record as it will read once these changes are saved."""
        changes = {
            name: value
            for name, value in (
                ("first_name", self.first_name),
                ("last_name", self.last_name),
                ("email", self.email),
            )
            if value is not None
        }
        return replace(user, **changes)


def validate_profile_changes(
    user_id: int,
    *,
    first_name: str | None = None,
    last_name: str | None = None,
    email: str | None = None,
) -> ProfileChanges:
    if first_name is None and last_name is None and email is None:
        raise UserValidationError("At least one field must be provided")

    if first_name is not None:
        first_name = _sanitize(first_name)
    if last_name is not None:
        last_name = _sanitize(last_name)
    if email is not None:
        email = _sanitize(email).lower()
        if not is_valid_email(email):
            logger.warning("Rejected malformed email  user_id=%s", user_id)
            raise UserValidationError("email is not a valid address")

    return ProfileChanges(first_name=first_name, last_name=last_name, email=email)


async def save_profile_changes(
    repo: UserRepo, user_id: int, changes: ProfileChanges
) -> UserRecord:
    updated = await repo.update_profile(
        user_id,
        first_name=changes.first_name,
        last_name=changes.last_name,
        email=changes.email,
    )
    if updated is None:
        raise UserNotFoundError(user_id)
    logger.info("Profile updated  user_id=%s", user_id)
    return updated


async def update_profile(
    repo: UserRepo,
    user_id: int,
    *,
    first_name: str | None = None,
    last_name: str | None = None,
    email: str | None = None,
) -> UserRecord:
    changes = validate_profile_changes(
        user_id, first_name=first_name, last_name=last_name, email=email
    )
    return await save_profile_changes(repo, user_id, changes)


async def deactivate_user(repo: UserRepo, user_id: int) -> None:
    try:
        await repo.set_active(user_id, False)
    except KeyError:
        raise UserNotFoundError(user_id) from None
    logger.info("User deactivated  user_id=%s", user_id)


async def list_active_users(repo: UserRepo) -> list[UserRecord]:
    return await repo.list_active()


async def user_has_permission(repo: UserRepo, user_id: int, permission: str) -> bool:
    user = await repo.get_by_id(user_id)
    if user is None or not user.is_active:
        return False
    if user.role == ADMIN_ROLE:
        return True
    return permission in _USER_PERMISSIONS
