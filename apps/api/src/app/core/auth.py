"""
Authentication Module

Resolves the caller's identity from a bearer token. This is the boundary to
the external authentication provider: a valid token yields the account id and
role claims, which the admissions module combines with the stored account to
build the acting principal.

SECURITY NOTE:
- Development tokens are ONLY accepted when PYTHON_ENV=development
- Production environments MUST set PYTHON_ENV=production to disable them
"""

import logging
import os
from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import settings
from app.core.security import decode_token

logger = logging.getLogger(__name__)

security = HTTPBearer(
    auto_error=True,
    description="JWT Bearer token for authentication",
)

KNOWN_ROLES = {"candidate", "staff", "admin"}


@dataclass(frozen=True)
class CallerIdentity:
    """
    Identity claims of an authenticated caller.

    Attributes:
        account_id: Account the token was issued for
        role: Role claim (candidate, staff, admin)
        email: Email claim (optional)
    """

    account_id: UUID
    role: str
    email: str | None = None


class InvalidCredentialsError(Exception):
    """Raised when a token cannot be resolved to an identity."""

    def __init__(self, error_code: str, message: str):
        self.error_code = error_code
        self.message = message
        super().__init__(message)


def _is_dev_mode_safe() -> bool:
    """
    Check if development tokens may be accepted.

    Requires settings.is_development, not settings.is_production, and a
    PYTHON_ENV environment variable that is neither production nor staging.
    """
    env_var = os.getenv("PYTHON_ENV", "").lower()
    is_safe = (
        settings.is_development
        and not settings.is_production
        and env_var not in {"production", "staging"}
    )

    if is_safe:
        logger.warning(
            "SECURITY: Development auth mode is ENABLED. This MUST NOT be used in production!"
        )

    return is_safe


_DEVELOPMENT_MODE = _is_dev_mode_safe()

DEV_ADMIN_ID = UUID("00000000-0000-0000-0000-000000000001")


def _resolve_dev_token(token: str) -> CallerIdentity | None:
    """
    Resolve development tokens.

    Accepted forms: "dev-admin", "dev-staff:<uuid>", "dev-candidate:<uuid>".
    """
    if token == "dev-admin":
        return CallerIdentity(account_id=DEV_ADMIN_ID, role="admin", email="admin@admissions.dev")

    prefix, _, raw_id = token.partition(":")
    if prefix not in {"dev-staff", "dev-candidate"} or not raw_id:
        return None

    try:
        account_id = UUID(raw_id)
    except ValueError:
        return None

    return CallerIdentity(account_id=account_id, role=prefix.removeprefix("dev-"))


def resolve_caller_identity(token: str, *, allow_dev_tokens: bool | None = None) -> CallerIdentity:
    """
    Resolve a bearer token to the caller's identity.

    Args:
        token: Raw bearer token
        allow_dev_tokens: Override for development-token acceptance

    Returns:
        CallerIdentity built from the token claims

    Raises:
        InvalidCredentialsError: If the token is invalid, expired or malformed
    """
    dev_mode = _DEVELOPMENT_MODE if allow_dev_tokens is None else allow_dev_tokens
    if dev_mode:
        identity = _resolve_dev_token(token)
        if identity is not None:
            logger.debug(f"Development mode: resolved test token for {identity.account_id}")
            return identity

    payload = decode_token(token)
    if payload is None:
        raise InvalidCredentialsError("INVALID_TOKEN", "Invalid or expired authentication token.")

    if payload.get("type", "access") != "access":
        raise InvalidCredentialsError(
            "INVALID_TOKEN_TYPE", "This endpoint requires an access token."
        )

    try:
        account_id = UUID(payload["sub"])
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidCredentialsError(
            "INVALID_TOKEN_CLAIMS", "Token contains invalid or missing claims."
        ) from e

    role = payload.get("role", "")
    if role not in KNOWN_ROLES:
        raise InvalidCredentialsError("INVALID_TOKEN_CLAIMS", f"Unknown role claim: {role!r}")

    return CallerIdentity(account_id=account_id, role=role, email=payload.get("email"))


async def get_caller_identity(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CallerIdentity:
    """
    FastAPI dependency that validates the bearer token.

    Raises:
        HTTPException 401: If the token is missing, invalid, or expired
    """
    try:
        identity = resolve_caller_identity(credentials.credentials)
    except InvalidCredentialsError as e:
        logger.warning(f"Authentication failed: {e.error_code}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": e.error_code, "message": e.message},
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    logger.debug(f"Authenticated caller: {identity.account_id} ({identity.role})")
    return identity


__all__ = [
    "CallerIdentity",
    "InvalidCredentialsError",
    "get_caller_identity",
    "resolve_caller_identity",
]
