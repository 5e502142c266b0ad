"""Domain aggregates, contracts and workflows."""

from .account import Account, AuthenticatedIdentity, SessionGrant
from .errors import AuthError, ErrorKind
from .service import AccountService, build_account_service

__all__ = [
    "Account",
    "AccountService",
    "AuthError",
    "AuthenticatedIdentity",
    "ErrorKind",
    "SessionGrant",
    "build_account_service",
]
