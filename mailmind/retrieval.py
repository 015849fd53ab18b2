"""Request procedures built on the mailbox session and the orchestrator.

* :meth:`RetrievalService.progressive_page` serves the first load in
  fixed-size pages.
* :meth:`RetrievalService.delta_refresh` returns only messages the
  caller has not seen yet.
* :meth:`RetrievalService.fetch_all` enriches the whole window at once.

Each call opens its own mailbox session. Progressive paging re-fetches
the whole window on every page instead of holding it between calls;
this keeps the service stateless per request at the cost of one extra
mailbox round trip per page.
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Awaitable, Collection, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

import structlog

from .config import ImapConfig, RetrievalConfig
from .errors import RetrievalTimeoutError
from .mailbox import fetch_recent_messages
from .models import EnrichedMessage, Message
from .orchestrator import BatchOrchestrator

logger = structlog.get_logger()

DEADLINE_MESSAGE = (
    "Email fetching operation timed out. The server may be slow or unresponsive."
)


class MessageFetcher(Protocol):
    def __call__(
        self, account: str, credential: str, *, limit: int | None = None
    ) -> Awaitable[list[Message]]: ...


@dataclass(frozen=True)
class ProgressivePage:
    emails: list[EnrichedMessage]
    batch_number: int
    is_complete: bool
    total_fetched: int
    total_expected: int

    @property
    def count(self) -> int:
        return len(self.emails)


@dataclass(frozen=True)
class DeltaResult:
    emails: list[EnrichedMessage]
    newest_date: datetime | None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def count(self) -> int:
        return len(self.emails)


class RetrievalService:
    """Compose mailbox retrieval and enrichment under one deadline.

    The deadline covers both steps. When it fires during retrieval the
    mailbox session is cancelled and torn down; when it fires during
    enrichment the caller gets :class:`RetrievalTimeoutError` but the
    provider calls already running finish in the background and still
    populate the cache.
    """

    def __init__(
        self,
        imap_config: ImapConfig,
        orchestrator: BatchOrchestrator,
        config: RetrievalConfig,
        *,
        fetcher: MessageFetcher | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._config = config
        self._fetch = fetcher or functools.partial(fetch_recent_messages, imap_config)

    # ------------------------------------------------------------------
    # Protocols
    # ------------------------------------------------------------------

    async def progressive_page(
        self,
        account: str,
        credential: str,
        batch_number: int = 0,
    ) -> ProgressivePage:
        """Serve page *batch_number* of the mailbox window, oldest first.

        The returned ``batch_number`` is the number to request next.
        """
        if batch_number < 0:
            raise ValueError("batch_number must be non-negative")

        deadline = self._deadline()
        messages = await self._retrieve(account, credential, deadline)

        # Oldest first so that concatenating every page gives the sorted window.
        window = sorted(messages, key=lambda m: m.date)[-self._config.page_total :]
        available = len(window)
        start = batch_number * self._config.page_size

        if start >= available:
            logger.info("progressive_complete", batch=batch_number, available=available)
            return ProgressivePage(
                emails=[],
                batch_number=batch_number + 1,
                is_complete=True,
                total_fetched=available,
                total_expected=available,
            )

        page = window[start : start + self._config.page_size]
        logger.info(
            "progressive_batch",
            batch=batch_number + 1,
            first=start + 1,
            last=start + len(page),
            available=available,
        )
        emails = await self._enrich(page, deadline, group_size=self._config.group_size)

        return ProgressivePage(
            emails=emails,
            batch_number=batch_number + 1,
            is_complete=start + len(page) >= available,
            total_fetched=start + len(emails),
            total_expected=available,
        )

    async def delta_refresh(
        self,
        account: str,
        credential: str,
        *,
        since: datetime | None = None,
        known_ids: Collection[str] = (),
    ) -> DeltaResult:
        """Return messages the caller has not seen.

        Known identities take precedence over *since*; with neither, the
        whole window is new (first load).
        """
        deadline = self._deadline()
        messages = await self._retrieve(account, credential, deadline)

        known = set(known_ids)
        if known:
            fresh = [m for m in messages if m.identity not in known]
            mode = "identity"
        elif since is not None:
            since = _as_utc(since)
            fresh = [m for m in messages if m.date > since]
            mode = "since"
        else:
            fresh = list(messages)
            mode = "none"

        fresh.sort(key=lambda m: m.date)
        logger.info(
            "delta_filtered",
            mode=mode,
            retrieved=len(messages),
            known=len(known),
            new=len(fresh),
        )

        emails = await self._enrich(fresh, deadline)
        newest = emails[-1].date if emails else since
        return DeltaResult(emails=emails, newest_date=newest)

    async def fetch_all(self, account: str, credential: str) -> list[EnrichedMessage]:
        """Enrich the whole mailbox window in one response."""
        deadline = self._deadline()
        messages = await self._retrieve(account, credential, deadline)
        return await self._enrich(messages, deadline)

    async def verify_credentials(self, account: str, credential: str) -> None:
        """Open a session and fetch a single message; raises on any session error."""
        await self._retrieve(account, credential, self._deadline(), limit=1)

    # ------------------------------------------------------------------
    # Deadline handling
    # ------------------------------------------------------------------

    def _deadline(self) -> float:
        return asyncio.get_running_loop().time() + self._config.deadline_seconds

    def _remaining(self, deadline: float) -> float:
        return max(0.0, deadline - asyncio.get_running_loop().time())

    async def _retrieve(
        self,
        account: str,
        credential: str,
        deadline: float,
        *,
        limit: int | None = None,
    ) -> list[Message]:
        try:
            return await asyncio.wait_for(
                self._fetch(account, credential, limit=limit),
                timeout=self._remaining(deadline),
            )
        except asyncio.TimeoutError:
            logger.warning("retrieval_deadline_exceeded", stage="mailbox", account=account)
            raise RetrievalTimeoutError(DEADLINE_MESSAGE) from None

    async def _enrich(
        self,
        messages: Sequence[Message],
        deadline: float,
        *,
        group_size: int | None = None,
    ) -> list[EnrichedMessage]:
        task = asyncio.ensure_future(
            self._orchestrator.enrich(messages, group_size=group_size)
        )
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self._remaining(deadline))
        except asyncio.TimeoutError:
            task.add_done_callback(_log_late_enrichment)
            logger.warning(
                "retrieval_deadline_exceeded",
                stage="enrichment",
                messages=len(messages),
            )
            raise RetrievalTimeoutError(DEADLINE_MESSAGE) from None


def _log_late_enrichment(task: asyncio.Future) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("late_enrichment_failed", error=str(exc), error_type=type(exc).__name__)
    else:
        logger.info("late_enrichment_completed", messages=len(task.result()))


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
