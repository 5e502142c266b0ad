"""Domain-level contracts shared by the service and its collaborators."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from .account import Account


@dataclass(slots=True)
class CreateAccountInput:
    """Validated inputs required to persist a new account."""

    email: str
    credential_digest: str


class CredentialStore(Protocol):
    """Durable record of accounts and their credential/reset state.

    Implementations raise :class:`~credential_service.domain.errors.StoreUnavailableError`
    when the backend times out and
    :class:`~credential_service.domain.errors.DuplicateAccountError` when ``create``
    hits an existing email. Mutations return ``False`` when their guard did not
    match any row, so concurrent writers on one account never interleave.
    """

    def find_by_email(self, email: str) -> Account | None: ...

    def find_by_id(self, account_id: str) -> Account | None: ...

    def create(self, payload: CreateAccountInput) -> Account: ...

    def update_credential(self, account_id: str, digest: str, *, expected_digest: str) -> bool: ...

    def update_reset_state(self, account_id: str, digest: str, expires_at: datetime) -> bool: ...

    def clear_reset_state(self, account_id: str) -> bool: ...

    def complete_reset(
        self, account_id: str, digest: str, *, reset_digest: str, now: datetime
    ) -> bool: ...

    def delete(self, account_id: str) -> bool: ...

    def find_candidates_with_pending_reset(self, now: datetime) -> list[Account]: ...

    def purge_expired_resets(self, now: datetime) -> int: ...


class Notifier(Protocol):
    """Out-of-band delivery of reset links."""

    def send(self, email: str, reset_link: str) -> None: ...
