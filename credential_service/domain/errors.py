"""Error kinds returned by credential operations.

Every public operation of :class:`~credential_service.domain.service.AccountService`
fails with exactly one of these kinds. Messages are fixed strings so that no
secret, digest or token can leak through an error payload or a log line.
"""

from __future__ import annotations

from contextlib import contextmanager
from enum import Enum
from typing import Iterator


class ErrorKind(str, Enum):
    conflict = "conflict"
    invalid_credentials = "invalid_credentials"
    invalid_or_expired_reset = "invalid_or_expired_reset"
    unauthenticated = "unauthenticated"
    not_found = "not_found"
    invalid_password = "invalid_password"
    unavailable = "unavailable"


class AuthError(Exception):
    """Base class for credential operation failures."""

    kind: ErrorKind
    message: str = "request failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.unavailable


class ConflictError(AuthError):
    kind = ErrorKind.conflict
    message = "account already exists"


class InvalidCredentialsError(AuthError):
    kind = ErrorKind.invalid_credentials
    message = "invalid credentials"


class InvalidOrExpiredResetError(AuthError):
    kind = ErrorKind.invalid_or_expired_reset
    message = "invalid or expired reset token"


class UnauthenticatedError(AuthError):
    kind = ErrorKind.unauthenticated
    message = "authentication required"


class NotFoundError(AuthError):
    kind = ErrorKind.not_found
    message = "account not found"


class InvalidPasswordError(AuthError):
    kind = ErrorKind.invalid_password
    message = "password does not meet the password policy"


class UnavailableError(AuthError):
    kind = ErrorKind.unavailable
    message = "service temporarily unavailable"


class StoreUnavailableError(Exception):
    """Raised by credential stores when the backing database times out or is unreachable."""


class DuplicateAccountError(Exception):
    """Raised by credential stores when the normalised email is already registered."""


class NotificationError(Exception):
    """Raised by notifiers when a reset link could not be handed off for delivery."""


@contextmanager
def store_failures_as_unavailable() -> Iterator[None]:
    """Translate backend timeouts raised inside the block into :class:`UnavailableError`."""
    try:
        yield
    except StoreUnavailableError as exc:
        raise UnavailableError() from exc
