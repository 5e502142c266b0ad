"""Self-service password reset: one-time, time-boxed secrets."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta

from .account import Account, normalize_email, require_password_policy
from .contracts import CredentialStore, Notifier
from .errors import (
    InvalidOrExpiredResetError,
    NotificationError,
    store_failures_as_unavailable,
)
from ..security.passwords import PasswordHasher
from ..security.tokens import Clock, utcnow

logger = logging.getLogger(__name__)

RESET_SECRET_BYTES = 32


class ResetWorkflow:
    """Drive an account from ``NoPendingReset`` to ``PendingReset`` and back.

    Only the digest of a reset secret is stored. The plaintext leaves the process
    once, through the notifier, embedded in a reset link.
    """

    def __init__(
        self,
        repository: CredentialStore,
        hasher: PasswordHasher,
        notifier: Notifier,
        *,
        ttl_seconds: int = 3600,
        url_base: str = "",
        clock: Clock = utcnow,
    ) -> None:
        self._repository = repository
        self._hasher = hasher
        self._notifier = notifier
        self._ttl = timedelta(seconds=ttl_seconds)
        self._url_base = url_base.rstrip("/")
        self._clock = clock

    def initiate(self, email: str) -> None:
        """Start a reset for ``email``, replacing any reset already pending.

        Unknown addresses are accepted silently so the caller cannot probe for
        registered accounts.

        Delivery is fire-and-forget: a notifier failure is logged and the call
        still returns normally, so a failing relay does not reveal which
        addresses are registered. The pending reset stays recorded and calling
        ``initiate`` again overwrites it.

        Raises
        ------
        UnavailableError
            When the store times out.
        """

        with store_failures_as_unavailable():
            account = self._repository.find_by_email(normalize_email(email))
            if account is None:
                logger.info("reset requested for unknown address")
                return

            secret = secrets.token_urlsafe(RESET_SECRET_BYTES)
            expires_at = self._clock() + self._ttl
            if not self._repository.update_reset_state(
                account.account_id, self._hasher.hash(secret), expires_at
            ):
                logger.info("account %s vanished before reset could be recorded", account.account_id)
                return

        try:
            self._notifier.send(account.email, self.reset_link(secret))
        except NotificationError as exc:
            logger.warning("reset delivery failed for account %s: %s", account.account_id, exc)
            return
        logger.info("reset initiated for account %s", account.account_id)

    def complete(self, secret: str, new_password: str) -> Account:
        """Consume ``secret`` and set ``new_password``; returns the account as it was matched.

        Wrong, absent, already-consumed and expired secrets all fail with
        :class:`InvalidOrExpiredResetError` and leave stored state unchanged. A
        password rejected by the policy fails with :class:`InvalidPasswordError`
        before any secret is checked.
        """

        require_password_policy(new_password)
        now = self._clock()
        with store_failures_as_unavailable():
            match = self._match_pending(secret, now)
            if match is None:
                raise InvalidOrExpiredResetError()

            completed = self._repository.complete_reset(
                match.account_id,
                self._hasher.hash(new_password),
                reset_digest=match.reset_digest,
                now=now,
            )
        if not completed:
            # Lost to a concurrent completion, re-initiation or deletion.
            raise InvalidOrExpiredResetError()
        logger.info("reset completed for account %s", match.account_id)
        return match

    def expire_stale(self) -> int:
        """Clear every reset whose window has closed and return how many were cleared."""
        with store_failures_as_unavailable():
            cleared = self._repository.purge_expired_resets(self._clock())
        if cleared:
            logger.info("cleared %d expired password resets", cleared)
        return cleared

    def reset_link(self, secret: str) -> str:
        """Embed ``secret`` in the configured reset URL (the bare secret when none is set)."""
        return f"{self._url_base}/{secret}" if self._url_base else secret

    def _match_pending(self, secret: str, now: datetime) -> Account | None:
        if not secret:
            return None
        for candidate in self._repository.find_candidates_with_pending_reset(now):
            if not candidate.has_pending_reset(now):
                continue
            if self._hasher.verify(secret, candidate.reset_digest):
                return candidate
        return None
