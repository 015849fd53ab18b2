"""Shared test fixtures for the mailmind test suite."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email import encoders
from unittest.mock import MagicMock

import pytest

from mailmind.auth import create_access_token
from mailmind.cache import AnalysisCache
from mailmind.config import (
    EnrichmentConfig,
    ImapConfig,
    RetrievalConfig,
    Settings,
    SmtpConfig,
)
from mailmind.models import Analysis, Category, Message

BASE_TIME = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def imap_config() -> ImapConfig:
    return ImapConfig(
        host="imap.test.com",
        port=993,
        max_messages=40,
        connect_timeout_seconds=1.0,
        fetch_timeout_seconds=1.0,
    )


@pytest.fixture
def smtp_config() -> SmtpConfig:
    return SmtpConfig(host="smtp.test.com", port=465, timeout_seconds=1.0)


@pytest.fixture
def enrichment_config() -> EnrichmentConfig:
    return EnrichmentConfig(
        base_url="http://llm.test/v1",
        api_key="test-key",
        model="test-model",
        timeout_seconds=5.0,
    )


@pytest.fixture
def retrieval_config() -> RetrievalConfig:
    return RetrievalConfig(deadline_seconds=5.0, group_size=2, page_size=4, page_total=40)


@pytest.fixture
def settings(
    imap_config: ImapConfig,
    smtp_config: SmtpConfig,
    enrichment_config: EnrichmentConfig,
    retrieval_config: RetrievalConfig,
) -> Settings:
    return Settings(
        jwt_secret="test-secret",
        mail_domain="example.edu",
        imap=imap_config,
        smtp=smtp_config,
        enrichment=enrichment_config,
        retrieval=retrieval_config,
    )


@pytest.fixture
def cache() -> AnalysisCache:
    return AnalysisCache()


def make_auth_headers(settings: Settings, account: str = "alice@example.edu") -> dict:
    token = create_access_token(account, settings)
    return {"Authorization": f"Bearer {token}"}


# ------------------------------------------------------------------
# Messages
# ------------------------------------------------------------------


def make_message(
    index: int,
    *,
    minutes: int | None = None,
    identity: str | None = None,
    subject: str | None = None,
    body: str = "Body text",
) -> Message:
    """Build a Message dated *minutes* (default *index*) after BASE_TIME."""
    offset = index if minutes is None else minutes
    return Message(
        identity=identity or f"<msg-{index}@example.edu>",
        sender=f"Sender {index} <s{index}@example.edu>",
        subject=subject or f"Subject {index}",
        body=body,
        date=BASE_TIME + timedelta(minutes=offset),
    )


class FakeAnalyzer:
    """Records analyze() calls; optionally fails or sleeps per subject."""

    def __init__(
        self,
        *,
        fail_subjects: set[str] | None = None,
        delay: float = 0.0,
        analysis: Analysis | None = None,
    ) -> None:
        self.calls: list[tuple[str, str]] = []
        self.active = 0
        self.max_active = 0
        self._fail = fail_subjects or set()
        self._delay = delay
        self._analysis = analysis or Analysis(
            category=Category.ACADEMICS,
            summary="A summary.",
        )

    async def analyze(self, subject: str, body: str) -> Analysis:
        self.calls.append((subject, body))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self._delay:
                await asyncio.sleep(self._delay)
            else:
                await asyncio.sleep(0)
            if subject in self._fail:
                raise RuntimeError(f"analysis blew up for {subject}")
            return self._analysis
        finally:
            self.active -= 1


# ------------------------------------------------------------------
# Sample EML builders
# ------------------------------------------------------------------


def _build_plain_email(
    *,
    subject: str | None = "Test Subject",
    from_addr: str | None = "sender@example.edu",
    to_addr: str = "recipient@example.edu",
    body: str = "Hello, World!",
    message_id: str | None = "<test-001@example.edu>",
    date: str | None = "Sun, 01 Jun 2025 12:00:00 +0000",
) -> bytes:
    """Build a simple plain-text email as raw bytes."""
    msg = MIMEText(body, "plain")
    if subject is not None:
        msg["Subject"] = subject
    if from_addr is not None:
        msg["From"] = from_addr
    msg["To"] = to_addr
    if message_id is not None:
        msg["Message-ID"] = message_id
    if date is not None:
        msg["Date"] = date
    return msg.as_bytes()


def _build_html_email(*, body_html: str = "<p>Hello</p>") -> bytes:
    msg = MIMEText(body_html, "html")
    msg["Subject"] = "HTML Email"
    msg["From"] = "sender@example.edu"
    msg["To"] = "recipient@example.edu"
    msg["Message-ID"] = "<html-001@example.edu>"
    msg["Date"] = "Sun, 01 Jun 2025 12:00:00 +0000"
    return msg.as_bytes()


def _build_multipart_email(
    *,
    body_text: str = "Plain body",
    body_html: str = "<p>HTML body</p>",
    attachments: list[tuple[str, str, bytes]] | None = None,
) -> bytes:
    """Build a multipart email with text, HTML, and optional attachments."""
    msg = MIMEMultipart("mixed")
    msg["Subject"] = "Multipart Email"
    msg["From"] = "sender@example.edu"
    msg["To"] = "recipient@example.edu"
    msg["Message-ID"] = "<multi-001@example.edu>"
    msg["Date"] = "Sun, 01 Jun 2025 12:00:00 +0000"

    alt = MIMEMultipart("alternative")
    alt.attach(MIMEText(body_text, "plain"))
    alt.attach(MIMEText(body_html, "html"))
    msg.attach(alt)

    for filename, content_type, payload in attachments or []:
        maintype, subtype = content_type.split("/", 1)
        part = MIMEBase(maintype, subtype)
        part.set_payload(payload)
        encoders.encode_base64(part)
        part.add_header("Content-Disposition", "attachment", filename=filename)
        msg.attach(part)

    return msg.as_bytes()


@pytest.fixture
def plain_eml_bytes() -> bytes:
    return _build_plain_email()


@pytest.fixture
def html_eml_bytes() -> bytes:
    return _build_html_email()


@pytest.fixture
def multipart_eml_bytes() -> bytes:
    return _build_multipart_email(
        attachments=[("notes.txt", "text/plain", b"attachment text, not the body")],
    )


# ------------------------------------------------------------------
# IMAP mock
# ------------------------------------------------------------------


def internal_date(minutes: int = 0) -> str:
    """INTERNALDATE string for BASE_TIME + *minutes*."""
    return (BASE_TIME + timedelta(minutes=minutes)).strftime("%d-%b-%Y %H:%M:%S +0000")


def _make_mock_imap(
    messages: dict[int, bytes] | None = None,
    *,
    internal_dates: dict[int, str] | None = None,
    search_order: list[int] | None = None,
) -> MagicMock:
    """Create a mock imaplib.IMAP4_SSL serving *messages* by sequence number."""
    messages = messages or {}
    internal_dates = internal_dates or {}
    order = search_order if search_order is not None else sorted(messages)

    mock = MagicMock()
    mock.login.return_value = ("OK", [b"Logged in"])
    mock.select.return_value = ("OK", [str(len(messages)).encode()])
    mock.search.return_value = ("OK", [b" ".join(str(n).encode() for n in order)])
    mock.logout.return_value = ("BYE", [b"Bye"])

    def fetch(message_set: str, items: str):
        requested = sorted(int(n) for n in message_set.split(","))
        data: list = []
        for seq in requested:
            raw = messages.get(seq)
            if raw is None:
                continue
            meta = b"%d (" % seq
            if seq in internal_dates:
                meta += b'INTERNALDATE "%s" ' % internal_dates[seq].encode()
            meta += b"BODY[] {%d}" % len(raw)
            data.append((meta, raw))
            data.append(b")")
        return ("OK", data)

    mock.fetch.side_effect = fetch
    return mock
