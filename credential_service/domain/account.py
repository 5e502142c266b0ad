from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from .errors import InvalidPasswordError


def normalize_email(email: str) -> str:
    """Return the case-insensitive identity key for an email address."""
    return email.strip().lower()


@dataclass(slots=True)
class Account:
    """Aggregate root for a single password credential and its reset state."""

    account_id: str
    email: str
    credential_digest: str
    created_at: datetime
    updated_at: datetime
    reset_digest: str | None = None
    reset_expires_at: datetime | None = None

    def has_pending_reset(self, now: datetime) -> bool:
        """Return ``True`` while a reset is outstanding and ``now`` is before its expiry."""
        return (
            self.reset_digest is not None
            and self.reset_expires_at is not None
            and now < self.reset_expires_at
        )


@dataclass(frozen=True, slots=True)
class AuthenticatedIdentity:
    """Identity bound to a request by a verified session token."""

    account_id: str
    email: str


@dataclass(frozen=True, slots=True)
class SessionGrant:
    """Session issued after registration or login."""

    account_id: str
    email: str
    session_token: str
    expires_in: int


MIN_PASSWORD_LENGTH = 6
# bcrypt ignores everything past 72 bytes.
MAX_PASSWORD_BYTES = 72


def password_policy_violation(password: str) -> str | None:
    """Return why ``password`` cannot become a credential, or ``None`` if it is acceptable."""
    if len(password) < MIN_PASSWORD_LENGTH:
        return f"password must be at least {MIN_PASSWORD_LENGTH} characters long"
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        return f"password must not exceed {MAX_PASSWORD_BYTES} bytes"
    return None


def require_password_policy(password: str) -> None:
    """Raise :class:`~credential_service.domain.errors.InvalidPasswordError` for unusable passwords."""
    violation = password_policy_violation(password)
    if violation is not None:
        raise InvalidPasswordError(violation)
