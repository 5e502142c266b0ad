"""Utilities for issuing and validating session JWTs."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

import jwt

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionTokenService:
    """Stateless, signed session tokens bound to an account identifier.

    The signing key is supplied once at construction and never rotated for the
    lifetime of the instance. There is no revocation list: a token verifies until
    its ``exp`` claim passes.
    """

    algorithm = "HS256"

    def __init__(
        self,
        *,
        secret: str,
        issuer: str,
        ttl_seconds: int,
        clock: Clock = utcnow,
    ) -> None:
        if not secret:
            raise ValueError("session signing secret must not be empty")
        if ttl_seconds <= 0:
            raise ValueError("session ttl must be positive")
        self._secret = secret
        self._issuer = issuer
        self._clock = clock
        self.ttl_seconds = ttl_seconds

    def issue(self, account_id: str) -> str:
        """Create a signed token for ``account_id``.

        Parameters
        ----------
        account_id:
            Account identifier to embed in the token ``sub`` claim.

        Returns
        -------
        str
            The encoded JWT. ``exp`` is the exact issuance instant plus the
            configured TTL, kept fractional so sub-second issuance is not rounded away.
        """

        issued_at = self._clock().timestamp()
        payload: dict[str, Any] = {
            "iss": self._issuer,
            "sub": account_id,
            "iat": int(issued_at),
            "exp": round(issued_at + self.ttl_seconds, 6),
        }
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def verify(self, token: str) -> str | None:
        """Return the bound account identifier, or ``None`` if the token is invalid.

        Malformed tokens, bad signatures, foreign issuers and expired tokens are
        indistinguishable to the caller. Expiry is checked against the injected
        clock: the token is accepted up to and including its ``exp`` instant.
        """

        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                issuer=self._issuer,
                options={
                    "require": ["iss", "sub", "iat", "exp"],
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
            expires_at = round(float(claims["exp"]), 6)
        except (jwt.PyJWTError, TypeError, ValueError):
            logger.debug("session token rejected")
            return None

        # Both sides at microsecond resolution, the precision of the clock.
        if round(self._clock().timestamp(), 6) > expires_at:
            logger.debug("session token expired")
            return None
        subject = claims["sub"]
        return subject if isinstance(subject, str) and subject else None
