"""HTTP route definitions for the credential service."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from pydantic import AfterValidator, BaseModel, EmailStr, Field

from ..domain.account import (
    Account,
    AuthenticatedIdentity,
    SessionGrant,
    password_policy_violation,
)
from ..domain.errors import AuthError, ErrorKind, UnauthenticatedError
from ..domain.service import AccountService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/auth")


def _check_password(value: str) -> str:
    violation = password_policy_violation(value)
    if violation is not None:
        raise ValueError(violation)
    return value


Password = Annotated[str, AfterValidator(_check_password)]


class AccountResponse(BaseModel):
    """Public view of an account; digests and reset state never leave the service."""

    account_id: str
    email: EmailStr
    created_at: str

    @classmethod
    def from_domain(cls, account: Account) -> "AccountResponse":
        """Build a response model from the domain aggregate."""
        return cls(
            account_id=account.account_id,
            email=account.email,
            created_at=account.created_at.isoformat(),
        )


class RegisterRequest(BaseModel):
    """Payload accepted when creating an account."""

    email: EmailStr
    password: Password


class LoginRequest(BaseModel):
    """Login credentials; the password policy is not re-applied to existing passwords."""

    email: EmailStr
    password: str = Field(..., min_length=1)


class SessionResponse(BaseModel):
    """Session issued after registration or login."""

    account_id: str
    email: EmailStr
    session_token: str
    token_type: str = "bearer"
    expires_in: int

    @classmethod
    def from_grant(cls, grant: SessionGrant) -> "SessionResponse":
        """Build a response model from a session grant."""
        return cls(
            account_id=grant.account_id,
            email=grant.email,
            session_token=grant.session_token,
            expires_in=grant.expires_in,
        )


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    """Reset secret from the delivered link plus the replacement password."""

    token: str = Field(..., min_length=1)
    new_password: Password


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: Password


class MessageResponse(BaseModel):
    message: str


_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.conflict: status.HTTP_409_CONFLICT,
    ErrorKind.invalid_credentials: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.invalid_or_expired_reset: status.HTTP_400_BAD_REQUEST,
    ErrorKind.unauthenticated: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.not_found: status.HTTP_404_NOT_FOUND,
    ErrorKind.invalid_password: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.unavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _http_error(exc: AuthError) -> HTTPException:
    headers: dict[str, str] | None = None
    if exc.kind is ErrorKind.unauthenticated:
        headers = {"WWW-Authenticate": "Bearer"}
    elif exc.retryable:
        headers = {"Retry-After": "1"}
    return HTTPException(status_code=_STATUS_BY_KIND[exc.kind], detail=str(exc), headers=headers)


def get_service(request: Request) -> AccountService:
    """Resolve the `AccountService` stored on the FastAPI application state."""
    service: AccountService = request.app.state.account_service
    return service


def get_identity(
    authorization: str | None = Header(default=None, alias="Authorization"),
    service: AccountService = Depends(get_service),
) -> AuthenticatedIdentity:
    """Verify the bearer session token and return the identity it is bound to."""
    scheme, _, token = (authorization or "").partition(" ")
    try:
        if scheme.lower() != "bearer" or not token.strip():
            raise UnauthenticatedError()
        return service.authenticate(token.strip())
    except AuthError as exc:
        raise _http_error(exc) from exc


@router.post("/register", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterRequest,
    service: AccountService = Depends(get_service),
) -> SessionResponse:
    """Create an account and return a session for it."""
    try:
        grant = service.register(payload.email, payload.password)
    except AuthError as exc:
        raise _http_error(exc) from exc
    return SessionResponse.from_grant(grant)


@router.post("/login", response_model=SessionResponse)
def login(
    payload: LoginRequest,
    service: AccountService = Depends(get_service),
) -> SessionResponse:
    try:
        grant = service.login(payload.email, payload.password)
    except AuthError as exc:
        raise _http_error(exc) from exc
    return SessionResponse.from_grant(grant)


@router.post(
    "/forgot-password", response_model=MessageResponse, status_code=status.HTTP_202_ACCEPTED
)
def forgot_password(
    payload: ForgotPasswordRequest,
    service: AccountService = Depends(get_service),
) -> MessageResponse:
    """Start a password reset; the response is identical whether or not the email is registered."""
    try:
        service.initiate_reset(payload.email)
    except AuthError as exc:
        raise _http_error(exc) from exc
    return MessageResponse(message="if the account exists a reset link has been sent")


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(
    payload: ResetPasswordRequest,
    service: AccountService = Depends(get_service),
) -> MessageResponse:
    try:
        service.complete_reset(payload.token, payload.new_password)
    except AuthError as exc:
        raise _http_error(exc) from exc
    return MessageResponse(message="password reset successful")


@router.post("/change-password", response_model=MessageResponse)
def change_password(
    payload: ChangePasswordRequest,
    identity: AuthenticatedIdentity = Depends(get_identity),
    service: AccountService = Depends(get_service),
) -> MessageResponse:
    try:
        service.change_password(identity, payload.current_password, payload.new_password)
    except AuthError as exc:
        raise _http_error(exc) from exc
    return MessageResponse(message="password changed")


@router.delete("/account", status_code=status.HTTP_204_NO_CONTENT)
def delete_account(
    identity: AuthenticatedIdentity = Depends(get_identity),
    service: AccountService = Depends(get_service),
) -> Response:
    """Permanently delete the authenticated account."""
    try:
        service.delete_account(identity)
    except AuthError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/me", response_model=AccountResponse)
def me(
    identity: AuthenticatedIdentity = Depends(get_identity),
    service: AccountService = Depends(get_service),
) -> AccountResponse:
    try:
        account = service.get_account(identity)
    except AuthError as exc:
        raise _http_error(exc) from exc
    return AccountResponse.from_domain(account)
