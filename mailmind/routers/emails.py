"""Mailbox endpoints: full fetch, progressive paging, delta refresh, reply, send."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Annotated

import httpx
import structlog
from fastapi import APIRouter, Depends, HTTPException, Response, status

from mailmind.auth import get_current_account
from mailmind.deps import get_enrichment, get_retrieval, get_sender
from mailmind.enrichment import EnrichmentClient
from mailmind.errors import EnrichmentError, MailboxError, RetrievalTimeoutError, SendError
from mailmind.retrieval import RetrievalService
from mailmind.schemas import (
    DeltaRequest,
    DeltaResponse,
    EmailListResponse,
    FetchRequest,
    ProgressiveRequest,
    ProgressiveResponse,
    ReplyRequest,
    ReplyResponse,
    SendRequest,
    SendResponse,
    to_items,
)
from mailmind.sender import SmtpSender

logger = structlog.get_logger()


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, private"
    response.headers["Pragma"] = "no-cache"
    response.headers["Expires"] = "0"


router = APIRouter(
    prefix="/api/emails",
    tags=["emails"],
    dependencies=[Depends(_no_store)],
)


def _require_password(password: str | None) -> str:
    if not password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Password is required",
        )
    return password


@contextmanager
def _session_errors() -> Iterator[None]:
    """Turn mailbox failures into gateway errors with the classified message."""
    try:
        yield
    except RetrievalTimeoutError as exc:
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=str(exc))
    except MailboxError as exc:
        logger.warning("mailbox_request_failed", error=str(exc), error_type=type(exc).__name__)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))


@router.post("/fetch", response_model=EmailListResponse)
async def fetch_emails(
    body: FetchRequest,
    account: Annotated[str, Depends(get_current_account)],
    retrieval: Annotated[RetrievalService, Depends(get_retrieval)],
):
    """Retrieve and enrich the whole mailbox window."""
    password = _require_password(body.password)
    with _session_errors():
        emails = await retrieval.fetch_all(account, password)
    return EmailListResponse(emails=to_items(emails), count=len(emails))


@router.post("/fetch-progressive", response_model=ProgressiveResponse)
async def fetch_progressive(
    body: ProgressiveRequest,
    account: Annotated[str, Depends(get_current_account)],
    retrieval: Annotated[RetrievalService, Depends(get_retrieval)],
):
    """Serve one page of the first load; call again with the returned batchNumber."""
    password = _require_password(body.password)
    with _session_errors():
        page = await retrieval.progressive_page(account, password, body.batch_number)
    return ProgressiveResponse(
        emails=to_items(page.emails),
        count=page.count,
        batch_number=page.batch_number,
        is_complete=page.is_complete,
        total_fetched=page.total_fetched,
        total_expected=page.total_expected,
    )


@router.post("/fetch-new", response_model=DeltaResponse)
async def fetch_new(
    body: DeltaRequest,
    account: Annotated[str, Depends(get_current_account)],
    retrieval: Annotated[RetrievalService, Depends(get_retrieval)],
):
    """Return messages not in ``knownEmailIds`` (or newer than ``sinceDate``)."""
    password = _require_password(body.password)
    with _session_errors():
        result = await retrieval.delta_refresh(
            account,
            password,
            since=body.since_date,
            known_ids=body.known_email_ids,
        )
    return DeltaResponse(
        emails=to_items(result.emails),
        count=result.count,
        newest_date=result.newest_date,
        timestamp=result.timestamp,
    )


@router.post("/generate-reply", response_model=ReplyResponse)
async def generate_reply(
    body: ReplyRequest,
    _account: Annotated[str, Depends(get_current_account)],
    enrichment: Annotated[EnrichmentClient, Depends(get_enrichment)],
):
    """Draft a reply, or refine ``currentDraft`` when ``refinementRequest`` is set."""
    if not (body.original_subject and body.original_body and body.user_prompt):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=(
                "Missing required fields: originalSubject, originalBody, "
                "and userPrompt are required"
            ),
        )

    try:
        draft = await enrichment.draft_reply(
            body.original_subject,
            body.original_body,
            body.user_prompt,
            refinement=body.refinement_request,
            current_draft=body.current_draft,
        )
    except (EnrichmentError, httpx.HTTPError) as exc:
        logger.warning("reply_generation_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to generate email reply: {exc}",
        )
    return ReplyResponse(subject=draft.subject, body=draft.body)


@router.post("/send", response_model=SendResponse)
async def send_email(
    body: SendRequest,
    account: Annotated[str, Depends(get_current_account)],
    sender: Annotated[SmtpSender, Depends(get_sender)],
):
    """Send an HTML message from the caller's account."""
    password = _require_password(body.password)
    if not (body.to and body.subject and body.body):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required fields: to, subject, and body are required",
        )

    try:
        await sender.send(account, password, body.to, body.subject, body.body, body.reply_to)
    except SendError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        )
    logger.info("email_sent", sender=account, recipient=body.to)
    return SendResponse()
