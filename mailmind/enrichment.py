"""Chat-completions client for message analysis and reply drafting.

``analyze`` never raises: any failure yields :meth:`Analysis.fallback`.
``draft_reply`` propagates failures because there is no safe stand-in
for a reply the user is about to send.
"""

from __future__ import annotations

import json
import re
from typing import Any

import httpx
import structlog

from .config import EnrichmentConfig
from .errors import EnrichmentAuthError, EnrichmentError, UpstreamError
from .models import MISSING_SUMMARY, Analysis, Category, ExtractedEvent, ReplyDraft

logger = structlog.get_logger()

TRUNCATION_MARKER = "\n[... content truncated ...]"
SUBJECT_TRUNCATION_MARKER = "..."

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_FENCED_BLOCK = re.compile(r"```[\s\S]*?```")

ANALYSIS_PROMPT = """You are an email categorization and summarization assistant for university students.
Analyze the email below and:

1. Put it in exactly ONE category:
   - "Important-Academics": lectures, classes, labs, coursework
   - "Important-Deadline": submissions, registrations, forms, deadlines
   - "Event": meetings, workshops, conferences, seminars, schedules
   - "General": anything else

2. Write a concise summary of 2-3 sentences.

3. List upcoming dated items, each formatted as "Name – Date | type" where type is one of:
   - "exam": exams, tests, quizzes
   - "deadline": assignment, project or form deadlines
   - "event": seminars, workshops, meetings, competitions and other events

Respond with JSON only:
{
  "category": "Important-Academics | Important-Deadline | Event | General",
  "summary": "...",
  "events": ["Name – Date | exam"]
}"""

REPLY_PROMPT = """You are an email assistant. The user wants to reply to this email.

ORIGINAL EMAIL:
Subject: {subject}
Body: {body}

WHAT THE USER WANTS TO SAY:
{intent}

Write a professional reply that addresses the original email and conveys the
user's message, ready to send.

Return ONLY the email body text, without explanations or markdown."""

REFINE_PROMPT = """You are an email assistant. The user wants to refine a reply draft.

ORIGINAL EMAIL:
Subject: {subject}
Body: {body}

ORIGINAL USER INTENT:
{intent}

CURRENT REPLY DRAFT:
{draft}

REFINEMENT REQUEST:
{refinement}

Rewrite the draft so it keeps the original intent and key points, applies the
refinement request, stays professional and is ready to send.

Return ONLY the email body text, without explanations or markdown."""


def truncate(text: str, limit: int, marker: str = TRUNCATION_MARKER) -> str:
    """Cut *text* to *limit* characters and append *marker* when cut."""
    if len(text) <= limit:
        return text
    return text[:limit] + marker


def extract_json_object(content: str) -> dict[str, Any]:
    """Pull the JSON object out of a model reply.

    The reply may wrap it in a ```json fence, a bare fence, or prose.
    Raises ``ValueError`` when no object can be decoded.
    """
    text = content.strip()
    if "```json" in text:
        text = text.split("```json", 1)[1].split("```", 1)[0].strip()
    elif "```" in text:
        text = text.split("```", 2)[1].strip()

    match = _JSON_OBJECT.search(text)
    if match:
        text = match.group(0)

    parsed = json.loads(text)
    if not isinstance(parsed, dict):
        raise ValueError(f"expected a JSON object, got {type(parsed).__name__}")
    return parsed


def coerce_analysis(payload: dict[str, Any]) -> Analysis:
    """Validate a decoded provider payload into an :class:`Analysis`."""
    summary = payload.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        summary = MISSING_SUMMARY

    raw_events = payload.get("events")
    if not isinstance(raw_events, list):
        raw_events = []

    return Analysis(
        category=Category.coerce(payload.get("category")),
        summary=summary,
        events=tuple(
            ExtractedEvent.parse(item)
            for item in raw_events
            if isinstance(item, str) and item.strip()
        ),
    )


def reply_subject(subject: str) -> str:
    return subject if subject.startswith("Re:") else f"Re: {subject}"


class EnrichmentClient:
    """Talks to an OpenAI-compatible ``/chat/completions`` endpoint."""

    def __init__(self, config: EnrichmentConfig) -> None:
        self._config = config
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=httpx.Timeout(self._config.timeout_seconds),
        )
        logger.info(
            "enrichment_client_started",
            base_url=self._config.base_url,
            model=self._config.model,
        )

    async def stop(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("enrichment_client_stopped")

    async def __aenter__(self) -> EnrichmentClient:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def analyze(self, subject: str, body: str) -> Analysis:
        """Categorize, summarize and extract events from one message."""
        if not subject and not body:
            return Analysis.empty()

        short_subject = truncate(
            subject, self._config.max_subject_chars, SUBJECT_TRUNCATION_MARKER
        )
        prompt = (
            f"{ANALYSIS_PROMPT}\n\nEmail:\n"
            f"Subject: {short_subject}\n\n"
            f"Body: {truncate(body, self._config.max_body_chars)}"
        )

        try:
            content = await self._complete(prompt, self._config.analysis_max_tokens)
            analysis = coerce_analysis(extract_json_object(content))
        except Exception as exc:
            logger.warning(
                "analysis_failed",
                subject=short_subject[:50],
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return Analysis.fallback()

        logger.debug(
            "analysis_complete",
            subject=short_subject[:50],
            category=analysis.category.value,
            events=len(analysis.events),
        )
        return analysis

    async def draft_reply(
        self,
        subject: str,
        body: str,
        intent: str,
        refinement: str | None = None,
        current_draft: str | None = None,
    ) -> ReplyDraft:
        """Generate a reply, or refine *current_draft* when *refinement* is given.

        Raises :class:`EnrichmentError` (or ``httpx.HTTPError``) on failure.
        """
        short_body = truncate(body, self._config.max_reply_body_chars)
        if refinement:
            prompt = REFINE_PROMPT.format(
                subject=subject,
                body=short_body,
                intent=intent,
                draft=current_draft or "",
                refinement=refinement,
            )
        else:
            prompt = REPLY_PROMPT.format(subject=subject, body=short_body, intent=intent)

        content = await self._complete(prompt, self._config.reply_max_tokens)
        text = content.strip()
        if "```" in text:
            text = _FENCED_BLOCK.sub("", text).strip()

        logger.info("reply_drafted", refinement=bool(refinement), length=len(text))
        return ReplyDraft(subject=reply_subject(subject), body=text)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _complete(self, prompt: str, max_tokens: int) -> str:
        """POST one user message and return the first choice's text."""
        if self._client is None:
            raise EnrichmentError("Enrichment client not started")
        if self._config.api_key is None:
            raise EnrichmentError("ENRICHMENT_API_KEY is not set")

        response = await self._client.post(
            "/chat/completions",
            headers={
                "Authorization": f"Bearer {self._config.api_key.get_secret_value()}",
                "HTTP-Referer": self._config.app_url,
                "X-Title": self._config.app_title,
            },
            json={
                "model": self._config.model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": self._config.temperature,
                "max_tokens": max_tokens,
            },
        )

        if response.status_code in (401, 403):
            raise EnrichmentAuthError(
                "Enrichment provider authentication failed. Please check "
                f"ENRICHMENT_API_KEY. Status: {response.status_code}"
            )
        if not response.is_success:
            raise UpstreamError(response.status_code, response.text[:200])

        try:
            data = response.json()
        except ValueError:
            raise UpstreamError(response.status_code, response.text[:200]) from None
        if not isinstance(data, dict):
            raise UpstreamError(response.status_code, response.text[:200])
        if data.get("error"):
            detail = data["error"].get("message") if isinstance(data["error"], dict) else None
            raise UpstreamError(response.status_code, detail or "Unknown error")

        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            raise EnrichmentError("Enrichment provider returned no choices")
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise EnrichmentError("Enrichment provider returned an empty response")
        return content
