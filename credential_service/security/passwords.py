"""Salted, deliberately slow hashing for passwords and reset secrets."""

from __future__ import annotations

import logging

import bcrypt

logger = logging.getLogger(__name__)

MIN_ROUNDS = 4
MAX_SECRET_BYTES = 72


class PasswordHasher:
    """Bcrypt hashing utility with a tunable cost factor."""

    def __init__(self, rounds: int = 12) -> None:
        """Initialise with the bcrypt cost factor (log2 of the iteration count)."""
        if rounds < MIN_ROUNDS:
            raise ValueError(f"bcrypt rounds must be at least {MIN_ROUNDS}")
        self.rounds = rounds

    def hash(self, secret: str) -> str:
        """Return a digest of ``secret`` using a fresh salt for every call."""
        encoded = secret.encode("utf-8")
        if not encoded:
            raise ValueError("cannot hash an empty secret")
        if len(encoded) > MAX_SECRET_BYTES:
            raise ValueError(f"secret exceeds {MAX_SECRET_BYTES} bytes")
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(encoded, salt).decode("utf-8")

    def verify(self, secret: str, digest: str) -> bool:
        """Return ``True`` iff ``digest`` was produced by hashing ``secret``."""
        encoded = secret.encode("utf-8")
        if not encoded or len(encoded) > MAX_SECRET_BYTES:
            return False
        try:
            return bcrypt.checkpw(encoded, digest.encode("utf-8"))
        except ValueError:
            logger.warning("stored digest could not be parsed")
            return False

    def needs_rehash(self, digest: str) -> bool:
        """Check whether ``digest`` was produced with fewer rounds than configured."""
        parts = digest.split("$")
        if len(parts) < 4:
            return False
        try:
            return int(parts[2]) < self.rounds
        except ValueError:
            return False
