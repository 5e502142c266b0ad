"""Repository tests against a stub connection pool (no Postgres required)."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone

import psycopg
import pytest
from psycopg_pool import PoolTimeout

from credential_service.domain.contracts import CreateAccountInput
from credential_service.domain.errors import DuplicateAccountError, StoreUnavailableError
from credential_service.repository import AccountRepository

NOW = datetime(2030, 1, 1, tzinfo=timezone.utc)


class StubCursor:
    def __init__(self, rows=None, rowcount=0, error=None) -> None:
        self.rows = rows or []
        self.rowcount = rowcount
        self.error = error
        self.executed: list[tuple[str, tuple]] = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, query, params=None):
        if self.error is not None:
            raise self.error
        self.executed.append((query, params))

    def fetchone(self):
        return self.rows[0] if self.rows else None

    def fetchall(self):
        return self.rows


class StubConnection:
    def __init__(self, cursor: StubCursor) -> None:
        self._cursor = cursor
        self.committed = False

    def cursor(self, row_factory=None):
        return self._cursor

    def commit(self):
        self.committed = True


class StubPool:
    def __init__(self, cursor: StubCursor | None = None, error: Exception | None = None) -> None:
        self.conn = StubConnection(cursor or StubCursor())
        self.error = error
        self.timeouts: list[float] = []

    @contextmanager
    def connection(self, timeout=None):
        self.timeouts.append(timeout)
        if self.error is not None:
            raise self.error
        yield self.conn


def _row(account_id="acc-1", reset_digest=None, reset_expires_at=None):
    return (account_id, "a@x.com", "$2b$04$digest", NOW, NOW, reset_digest, reset_expires_at)


def test_find_by_email_normalises_and_maps_row():
    cursor = StubCursor(rows=[_row()])
    repo = AccountRepository(StubPool(cursor), timeout=2.5)

    account = repo.find_by_email("  A@X.com ")

    assert account.account_id == "acc-1"
    assert account.credential_digest == "$2b$04$digest"
    assert account.reset_digest is None
    assert cursor.executed[0][1] == ("a@x.com",)


def test_pool_timeout_is_store_unavailable():
    pool = StubPool(error=PoolTimeout("couldn't get a connection after 2.5 sec"))
    repo = AccountRepository(pool, timeout=2.5)
    with pytest.raises(StoreUnavailableError):
        repo.find_by_id("acc-1")
    assert pool.timeouts == [2.5]


def test_statement_timeout_is_store_unavailable():
    cursor = StubCursor(error=psycopg.errors.QueryCanceled("canceling statement due to statement timeout"))
    repo = AccountRepository(StubPool(cursor))
    with pytest.raises(StoreUnavailableError):
        repo.purge_expired_resets(NOW)


def test_unique_violation_is_duplicate_account():
    cursor = StubCursor(error=psycopg.errors.UniqueViolation("duplicate key"))
    repo = AccountRepository(StubPool(cursor))
    with pytest.raises(DuplicateAccountError):
        repo.create(CreateAccountInput(email="a@x.com", credential_digest="$2b$04$digest"))


def test_complete_reset_is_guarded_and_commits():
    cursor = StubCursor(rowcount=1)
    pool = StubPool(cursor)
    repo = AccountRepository(pool)

    assert repo.complete_reset("acc-1", "$2b$04$new", reset_digest="$2b$04$reset", now=NOW)

    query, params = cursor.executed[0]
    assert "reset_digest = NULL" in query
    assert "reset_expires_at > %s" in query
    assert params == ("$2b$04$new", "acc-1", "$2b$04$reset", NOW)
    assert pool.conn.committed


def test_guard_miss_returns_false():
    repo = AccountRepository(StubPool(StubCursor(rowcount=0)))
    assert not repo.update_credential("acc-1", "$2b$04$new", expected_digest="$2b$04$old")
    assert not repo.delete("acc-1")


def test_candidates_query_uses_validity_range():
    cursor = StubCursor(rows=[_row(reset_digest="$2b$04$reset", reset_expires_at=NOW)])
    repo = AccountRepository(StubPool(cursor))

    candidates = repo.find_candidates_with_pending_reset(NOW)

    assert [c.reset_digest for c in candidates] == ["$2b$04$reset"]
    query, params = cursor.executed[0]
    assert "reset_expires_at > %s" in query
    assert params == (NOW,)
