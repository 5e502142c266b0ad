"""Account service orchestrating hashing, session tokens, persistence and resets."""

from __future__ import annotations

import logging
import secrets
from contextlib import contextmanager
from typing import Iterator

from .account import (
    Account,
    AuthenticatedIdentity,
    SessionGrant,
    normalize_email,
    require_password_policy,
)
from .contracts import CreateAccountInput, CredentialStore, Notifier
from .errors import (
    AuthError,
    ConflictError,
    DuplicateAccountError,
    InvalidCredentialsError,
    NotFoundError,
    UnauthenticatedError,
    store_failures_as_unavailable,
)
from .reset import ResetWorkflow
from .. import metrics
from ..config import Settings
from ..security.passwords import PasswordHasher
from ..security.tokens import Clock, SessionTokenService, utcnow

logger = logging.getLogger(__name__)


@contextmanager
def _observe(operation: str) -> Iterator[None]:
    try:
        yield
    except AuthError as exc:
        metrics.record(operation, exc.kind.value)
        raise
    metrics.record(operation, "success")


class AccountService:
    """Credential workflows backed by an injected store, hasher, token service and reset workflow."""

    def __init__(
        self,
        repository: CredentialStore,
        hasher: PasswordHasher,
        tokens: SessionTokenService,
        resets: ResetWorkflow,
    ) -> None:
        """Store collaborators; all are process-wide and shared across requests."""
        self._repository = repository
        self._hasher = hasher
        self._tokens = tokens
        self._resets = resets
        # Verified against on unknown-email logins so both failure paths cost one hash check.
        self._dummy_digest = hasher.hash(secrets.token_urlsafe(16))

    def register(self, email: str, password: str) -> SessionGrant:
        """Create an account and open a session for it."""
        with _observe("register"), store_failures_as_unavailable():
            require_password_policy(password)
            normalized = normalize_email(email)
            if self._repository.find_by_email(normalized) is not None:
                raise ConflictError()
            digest = self._hasher.hash(password)
            try:
                account = self._repository.create(
                    CreateAccountInput(email=normalized, credential_digest=digest)
                )
            except DuplicateAccountError as exc:
                raise ConflictError() from exc
            logger.info("account %s registered", account.account_id)
            return self._grant(account)

    def login(self, email: str, password: str) -> SessionGrant:
        """Verify a password and open a session.

        Unknown email and wrong password raise the same error after the same
        amount of hashing work.
        """
        with _observe("login"), store_failures_as_unavailable():
            account = self._repository.find_by_email(normalize_email(email))
            if account is None:
                self._hasher.verify(password, self._dummy_digest)
                raise InvalidCredentialsError()
            if not self._hasher.verify(password, account.credential_digest):
                raise InvalidCredentialsError()

            if self._hasher.needs_rehash(account.credential_digest):
                upgraded = self._repository.update_credential(
                    account.account_id,
                    self._hasher.hash(password),
                    expected_digest=account.credential_digest,
                )
                if upgraded:
                    logger.info("credential digest upgraded for account %s", account.account_id)
            return self._grant(account)

    def authenticate(self, token: str) -> AuthenticatedIdentity:
        """Resolve a session token to a live account identity."""
        with _observe("authenticate"), store_failures_as_unavailable():
            account_id = self._tokens.verify(token) if token else None
            if account_id is None:
                raise UnauthenticatedError()
            account = self._repository.find_by_id(account_id)
            if account is None:
                # Token outlived its account.
                raise UnauthenticatedError()
            return AuthenticatedIdentity(account_id=account.account_id, email=account.email)

    def get_account(self, identity: AuthenticatedIdentity) -> Account:
        """Return the stored record behind ``identity``; raises ``NotFoundError`` once deleted."""
        with store_failures_as_unavailable():
            account = self._repository.find_by_id(identity.account_id)
        if account is None:
            raise NotFoundError()
        return account

    def change_password(
        self, identity: AuthenticatedIdentity, current_password: str, new_password: str
    ) -> None:
        """Replace the password of an authenticated account after re-checking the current one."""
        with _observe("change_password"), store_failures_as_unavailable():
            require_password_policy(new_password)
            account = self._repository.find_by_id(identity.account_id)
            if account is None:
                raise NotFoundError()
            if not self._hasher.verify(current_password, account.credential_digest):
                raise InvalidCredentialsError()

            updated = self._repository.update_credential(
                account.account_id,
                self._hasher.hash(new_password),
                expected_digest=account.credential_digest,
            )
            if not updated:
                if self._repository.find_by_id(account.account_id) is None:
                    raise NotFoundError()
                # Digest changed underneath us; the verified password is stale.
                raise InvalidCredentialsError()
            logger.info("password changed for account %s", account.account_id)

    def delete_account(self, identity: AuthenticatedIdentity) -> None:
        """Permanently remove the authenticated account."""
        with _observe("delete_account"), store_failures_as_unavailable():
            if not self._repository.delete(identity.account_id):
                raise NotFoundError()
            logger.info("account %s deleted", identity.account_id)

    def initiate_reset(self, email: str) -> None:
        with _observe("initiate_reset"):
            self._resets.initiate(email)

    def complete_reset(self, secret: str, new_password: str) -> None:
        with _observe("complete_reset"):
            self._resets.complete(secret, new_password)

    def expire_stale_resets(self) -> int:
        return self._resets.expire_stale()

    def _grant(self, account: Account) -> SessionGrant:
        return SessionGrant(
            account_id=account.account_id,
            email=account.email,
            session_token=self._tokens.issue(account.account_id),
            expires_in=self._tokens.ttl_seconds,
        )


def build_account_service(
    repository: CredentialStore,
    notifier: Notifier,
    settings: Settings,
    *,
    clock: Clock = utcnow,
) -> AccountService:
    """Wire an :class:`AccountService` from settings; called once at startup."""
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    tokens = SessionTokenService(
        secret=settings.jwt_secret,
        issuer=settings.jwt_issuer,
        ttl_seconds=settings.session_ttl_seconds,
        clock=clock,
    )
    resets = ResetWorkflow(
        repository,
        hasher,
        notifier,
        ttl_seconds=settings.reset_ttl_seconds,
        url_base=settings.reset_url_base,
        clock=clock,
    )
    return AccountService(repository, hasher, tokens, resets)
