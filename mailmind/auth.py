"""JWT identity assertion and the FastAPI dependency that checks it."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Annotated

import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from mailmind.config import Settings
from mailmind.deps import get_settings

logger = structlog.get_logger()

_bearer_scheme = HTTPBearer(auto_error=False)


def normalize_account(raw: str, domain: str) -> str:
    """``alice`` → ``alice@<domain>``; full addresses are lower-cased."""
    account = raw.strip().lower()
    return account if "@" in account else f"{account}@{domain}"


def create_access_token(account: str, settings: Settings) -> str:
    """Create a signed token asserting *account*."""
    expire = datetime.now(timezone.utc) + timedelta(days=settings.jwt_expire_days)
    payload = {
        "sub": account,
        "email": account,
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(
        payload,
        settings.jwt_secret.get_secret_value(),
        algorithm=settings.jwt_algorithm,
    )


def decode_token(token: str, settings: Settings) -> dict:
    """Decode and validate a token. Raises ``JWTError`` on failure."""
    return jwt.decode(
        token,
        settings.jwt_secret.get_secret_value(),
        algorithms=[settings.jwt_algorithm],
    )


async def get_current_account(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> str:
    """Return the mail account asserted by the bearer token."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token required",
        )

    try:
        payload = decode_token(credentials.credentials, settings)
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or expired token",
        )

    account = payload.get("sub")
    if payload.get("type") != "access" or not account:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or expired token",
        )
    return account
