"""Authentication endpoints: login against the mailbox, current account."""

from __future__ import annotations

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from mailmind.auth import create_access_token, get_current_account, normalize_account
from mailmind.config import Settings
from mailmind.deps import get_retrieval, get_settings
from mailmind.errors import MailboxError, RetrievalTimeoutError
from mailmind.retrieval import RetrievalService
from mailmind.schemas import LoginRequest, LoginResponse, UserInfo

logger = structlog.get_logger()
router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    settings: Annotated[Settings, Depends(get_settings)],
    retrieval: Annotated[RetrievalService, Depends(get_retrieval)],
):
    """Check the credentials by opening a mailbox session, then issue a token."""
    if not body.email or not body.password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email and password are required",
        )

    account = normalize_account(body.email, settings.mail_domain)
    if not account.endswith(f"@{settings.mail_domain}"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid email address: expected an @{settings.mail_domain} account",
        )

    try:
        await retrieval.verify_credentials(account, body.password)
    except (MailboxError, RetrievalTimeoutError) as exc:
        logger.info("login_rejected", account=account, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid credentials or unable to connect to webmail server: {exc}",
        )

    token = create_access_token(account, settings)
    logger.info("user_login", account=account)
    return LoginResponse(token=token, user=UserInfo(email=account, id=account))


@router.get("/me", response_model=UserInfo)
async def me(account: Annotated[str, Depends(get_current_account)]):
    """Return the account asserted by the bearer token."""
    return UserInfo(email=account, id=account)
