"""Database repository for account credentials and reset state."""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

import psycopg
from psycopg import Cursor
from psycopg.rows import tuple_row
from psycopg_pool import ConnectionPool

from .domain.account import Account, normalize_email
from .domain.contracts import CreateAccountInput
from .domain.errors import DuplicateAccountError, StoreUnavailableError

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS credential_accounts (
    account_id TEXT PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    credential_digest TEXT NOT NULL CHECK (credential_digest <> ''),
    reset_digest TEXT,
    reset_expires_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL,
    CONSTRAINT reset_state_paired CHECK ((reset_digest IS NULL) = (reset_expires_at IS NULL))
);
CREATE INDEX IF NOT EXISTS credential_accounts_reset_expires_idx
    ON credential_accounts (reset_expires_at)
    WHERE reset_expires_at IS NOT NULL;
"""

_COLUMNS = (
    "account_id, email, credential_digest, created_at, updated_at, reset_digest, reset_expires_at"
)


class AccountRepository:
    """Postgres-backed credential store.

    Every mutation is a single conditional statement, so read-modify-write on one
    account is atomic without explicit row locks: a writer whose guard no longer
    matches simply updates zero rows.
    """

    def __init__(self, pool: ConnectionPool, *, timeout: float = 5.0) -> None:
        """Store the connection pool and the checkout timeout used for all calls."""
        self._pool = pool
        self._timeout = timeout

    @contextmanager
    def _cursor(self) -> Iterator[Cursor]:
        try:
            with self._pool.connection(timeout=self._timeout) as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    yield cur
                conn.commit()
        except psycopg.errors.UniqueViolation as exc:
            raise DuplicateAccountError("email already registered") from exc
        except psycopg.OperationalError as exc:
            # Covers PoolTimeout and statement_timeout cancellations.
            raise StoreUnavailableError("credential store unavailable") from exc

    def ensure_schema(self) -> None:
        """Create the accounts table and its indexes if they do not exist."""
        with self._cursor() as cur:
            cur.execute(SCHEMA_SQL)

    def find_by_email(self, email: str) -> Account | None:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_COLUMNS} FROM credential_accounts WHERE email = %s",
                (normalize_email(email),),
            )
            row = cur.fetchone()
        return self._map_record(row) if row else None

    def find_by_id(self, account_id: str) -> Account | None:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_COLUMNS} FROM credential_accounts WHERE account_id = %s",
                (account_id,),
            )
            row = cur.fetchone()
        return self._map_record(row) if row else None

    def create(self, payload: CreateAccountInput) -> Account:
        """Insert a new account; the unique index on ``email`` rejects duplicates."""
        account_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        with self._cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO credential_accounts (account_id, email, credential_digest, created_at, updated_at)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING {_COLUMNS}
                """,
                (account_id, normalize_email(payload.email), payload.credential_digest, now, now),
            )
            row = cur.fetchone()
        return self._map_record(row)

    def update_credential(self, account_id: str, digest: str, *, expected_digest: str) -> bool:
        """Replace the credential digest only if it still equals ``expected_digest``."""
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE credential_accounts
                SET credential_digest = %s, updated_at = NOW()
                WHERE account_id = %s AND credential_digest = %s
                """,
                (digest, account_id, expected_digest),
            )
            return cur.rowcount == 1

    def update_reset_state(self, account_id: str, digest: str, expires_at: datetime) -> bool:
        """Record a pending reset, overwriting any earlier one."""
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE credential_accounts
                SET reset_digest = %s, reset_expires_at = %s, updated_at = NOW()
                WHERE account_id = %s
                """,
                (digest, expires_at, account_id),
            )
            return cur.rowcount == 1

    def clear_reset_state(self, account_id: str) -> bool:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE credential_accounts
                SET reset_digest = NULL, reset_expires_at = NULL, updated_at = NOW()
                WHERE account_id = %s AND reset_digest IS NOT NULL
                """,
                (account_id,),
            )
            return cur.rowcount == 1

    def complete_reset(
        self, account_id: str, digest: str, *, reset_digest: str, now: datetime
    ) -> bool:
        """Write the new credential and clear the reset in one statement.

        The update applies only while the matched reset is still the pending one
        and has not expired, so a secret can be consumed at most once.
        """
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE credential_accounts
                SET credential_digest = %s,
                    reset_digest = NULL,
                    reset_expires_at = NULL,
                    updated_at = NOW()
                WHERE account_id = %s AND reset_digest = %s AND reset_expires_at > %s
                """,
                (digest, account_id, reset_digest, now),
            )
            return cur.rowcount == 1

    def delete(self, account_id: str) -> bool:
        with self._cursor() as cur:
            cur.execute("DELETE FROM credential_accounts WHERE account_id = %s", (account_id,))
            return cur.rowcount == 1

    def find_candidates_with_pending_reset(self, now: datetime) -> list[Account]:
        """Return accounts whose pending reset is still inside its validity window."""
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT {_COLUMNS}
                FROM credential_accounts
                WHERE reset_digest IS NOT NULL AND reset_expires_at > %s
                ORDER BY reset_expires_at DESC
                """,
                (now,),
            )
            rows = cur.fetchall()
        return [self._map_record(row) for row in rows]

    def purge_expired_resets(self, now: datetime) -> int:
        """Clear reset state for every account whose reset window has closed."""
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE credential_accounts
                SET reset_digest = NULL, reset_expires_at = NULL, updated_at = NOW()
                WHERE reset_expires_at IS NOT NULL AND reset_expires_at <= %s
                """,
                (now,),
            )
            return cur.rowcount

    def _map_record(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            account_id=row[0],
            email=row[1],
            credential_digest=row[2],
            created_at=row[3],
            updated_at=row[4],
            reset_digest=row[5],
            reset_expires_at=row[6],
        )
