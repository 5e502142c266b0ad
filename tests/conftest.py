from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from credential_service.api import routes
from credential_service.config import Settings
from credential_service.domain.account import Account, normalize_email
from credential_service.domain.contracts import CreateAccountInput
from credential_service.domain.errors import DuplicateAccountError, NotificationError
from credential_service.domain.service import AccountService, build_account_service

RESET_URL_BASE = "https://app.test/reset-password"


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2030, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeRepository:
    """In-memory credential store mimicking the Postgres repository's guarded updates."""

    def __init__(self, clock: FakeClock) -> None:
        self._clock = clock
        self._accounts: dict[str, Account] = {}
        self.candidate_queries: list[datetime] = []

    def _by_email(self, email: str) -> Account | None:
        email = normalize_email(email)
        for account in self._accounts.values():
            if account.email == email:
                return account
        return None

    def find_by_email(self, email: str):
        account = self._by_email(email)
        return replace(account) if account else None

    def find_by_id(self, account_id: str):
        account = self._accounts.get(account_id)
        return replace(account) if account else None

    def create(self, payload: CreateAccountInput):
        if self._by_email(payload.email) is not None:
            raise DuplicateAccountError("email already registered")
        now = self._clock()
        account = Account(
            account_id=str(uuid.uuid4()),
            email=normalize_email(payload.email),
            credential_digest=payload.credential_digest,
            created_at=now,
            updated_at=now,
        )
        self._accounts[account.account_id] = account
        return replace(account)

    def update_credential(self, account_id: str, digest: str, *, expected_digest: str) -> bool:
        account = self._accounts.get(account_id)
        if account is None or account.credential_digest != expected_digest:
            return False
        account.credential_digest = digest
        account.updated_at = self._clock()
        return True

    def update_reset_state(self, account_id: str, digest: str, expires_at: datetime) -> bool:
        account = self._accounts.get(account_id)
        if account is None:
            return False
        account.reset_digest = digest
        account.reset_expires_at = expires_at
        return True

    def clear_reset_state(self, account_id: str) -> bool:
        account = self._accounts.get(account_id)
        if account is None or account.reset_digest is None:
            return False
        account.reset_digest = None
        account.reset_expires_at = None
        return True

    def complete_reset(self, account_id: str, digest: str, *, reset_digest: str, now: datetime) -> bool:
        account = self._accounts.get(account_id)
        if (
            account is None
            or account.reset_digest != reset_digest
            or account.reset_expires_at is None
            or not account.reset_expires_at > now
        ):
            return False
        account.credential_digest = digest
        account.reset_digest = None
        account.reset_expires_at = None
        account.updated_at = now
        return True

    def delete(self, account_id: str) -> bool:
        return self._accounts.pop(account_id, None) is not None

    def find_candidates_with_pending_reset(self, now: datetime):
        self.candidate_queries.append(now)
        return [
            replace(account)
            for account in self._accounts.values()
            if account.reset_digest is not None and account.reset_expires_at > now
        ]

    def purge_expired_resets(self, now: datetime) -> int:
        cleared = 0
        for account in self._accounts.values():
            if account.reset_expires_at is not None and account.reset_expires_at <= now:
                account.reset_digest = None
                account.reset_expires_at = None
                cleared += 1
        return cleared

    def raw(self, account_id: str) -> Account:
        return self._accounts[account_id]


class RecordingNotifier:
    """Notifier capturing reset links; can be told to fail."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail = False

    def send(self, email: str, reset_link: str) -> None:
        if self.fail:
            raise NotificationError("relay down")
        self.sent.append((email, reset_link))

    def last_secret(self) -> str:
        return self.sent[-1][1].rsplit("/", 1)[-1]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        jwt_secret="test-signing-secret",
        jwt_issuer="credential-service.test",
        session_ttl_seconds=900,
        reset_ttl_seconds=3600,
        bcrypt_rounds=4,
        reset_url_base=RESET_URL_BASE,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repository(clock: FakeClock) -> FakeRepository:
    return FakeRepository(clock)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def service(repository, notifier, settings, clock) -> AccountService:
    return build_account_service(repository, notifier, settings, clock=clock)


@pytest.fixture
def api_client(service):
    """Provide a FastAPI test client with isolated state."""
    app = FastAPI()
    app.include_router(routes.router)
    app.state.account_service = service

    with TestClient(app) as client:
        yield client
