"""Tests for mailmind.sender."""

from __future__ import annotations

import smtplib
import socket
from unittest.mock import ANY, MagicMock, patch

import pytest

from mailmind.config import SmtpConfig
from mailmind.errors import (
    RecipientRejectedError,
    SendAuthError,
    SendConnectionError,
    SendError,
    SendHostNotFoundError,
    SendTimeoutError,
)
from mailmind.sender import SmtpSender, build_message, html_to_text

SMTP_SSL = "mailmind.sender.smtplib.SMTP_SSL"


def _make_mock_smtp() -> MagicMock:
    mock = MagicMock()
    mock.__enter__.return_value = mock
    mock.login.return_value = (235, b"Authentication successful")
    mock.noop.return_value = (250, b"OK")
    mock.send_message.return_value = {}
    return mock


@pytest.fixture
def sender(smtp_config: SmtpConfig) -> SmtpSender:
    return SmtpSender(smtp_config)


async def _send(sender: SmtpSender, **overrides):
    kwargs = {
        "from_account": "alice@example.edu",
        "credential": "pw",
        "to": "bob@example.edu",
        "subject": "Re: Lab",
        "html_body": "<p>See you <b>there</b></p>",
    }
    kwargs.update(overrides)
    await sender.send(**kwargs)


class TestBuildMessage:
    def test_html_to_text(self):
        assert html_to_text("<p>Hello <b>you</b></p>") == "Hello you"

    def test_html_to_text_drops_style_and_decodes_entities(self):
        html = (
            "<style>p{color:red}</style><script>alert(1)</script>"
            "<p>Tom &amp; Jerry&nbsp;say hi</p>"
        )
        assert html_to_text(html) == "Tom & Jerry\u00a0say hi"

    def test_alternative_parts(self):
        msg = build_message("alice@example.edu", "bob@example.edu", "Hi", "<p>Hi</p>")
        assert msg["From"] == "alice@example.edu"
        assert msg["To"] == "bob@example.edu"
        assert msg["Subject"] == "Hi"
        assert msg.get_content_type() == "multipart/alternative"
        types = [part.get_content_type() for part in msg.iter_parts()]
        assert types == ["text/plain", "text/html"]
        assert msg.get_body(("plain",)).get_content().strip() == "Hi"

    def test_reply_to_defaults_to_sender(self):
        msg = build_message("alice@example.edu", "bob@example.edu", "Hi", "<p>Hi</p>")
        assert msg["Reply-To"] == "alice@example.edu"

    def test_explicit_reply_to(self):
        msg = build_message(
            "alice@example.edu", "bob@example.edu", "Hi", "<p>Hi</p>", "list@example.edu"
        )
        assert msg["Reply-To"] == "list@example.edu"


class TestSmtpSender:
    @pytest.mark.asyncio
    async def test_send_success(self, sender: SmtpSender):
        with patch(SMTP_SSL) as MockSMTP:
            mock_smtp = _make_mock_smtp()
            MockSMTP.return_value = mock_smtp
            await _send(sender)

            MockSMTP.assert_called_once_with("smtp.test.com", 465, timeout=1.0, context=ANY)
            mock_smtp.login.assert_called_once_with("alice", "pw")
            mock_smtp.noop.assert_called_once()
            sent = mock_smtp.send_message.call_args.args[0]
            assert sent["To"] == "bob@example.edu"
            assert sent["Subject"] == "Re: Lab"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("missing", ["credential", "to", "subject", "html_body"])
    async def test_missing_fields(self, sender: SmtpSender, missing: str):
        with patch(SMTP_SSL) as MockSMTP:
            with pytest.raises(SendError, match="missing required fields"):
                await _send(sender, **{missing: ""})
            MockSMTP.assert_not_called()

    @pytest.mark.asyncio
    async def test_verification_failure(self, sender: SmtpSender):
        with patch(SMTP_SSL) as MockSMTP:
            mock_smtp = _make_mock_smtp()
            mock_smtp.noop.return_value = (421, b"closing")
            MockSMTP.return_value = mock_smtp
            with pytest.raises(SendConnectionError, match="verification failed"):
                await _send(sender)
            mock_smtp.send_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_auth_failure(self, sender: SmtpSender):
        with patch(SMTP_SSL) as MockSMTP:
            mock_smtp = _make_mock_smtp()
            mock_smtp.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad creds")
            MockSMTP.return_value = mock_smtp
            with pytest.raises(SendAuthError, match="Authentication failed"):
                await _send(sender)

    @pytest.mark.asyncio
    async def test_recipient_refused(self, sender: SmtpSender):
        with patch(SMTP_SSL) as MockSMTP:
            mock_smtp = _make_mock_smtp()
            mock_smtp.send_message.side_effect = smtplib.SMTPRecipientsRefused(
                {"bob@example.edu": (550, b"no such user")}
            )
            MockSMTP.return_value = mock_smtp
            with pytest.raises(RecipientRejectedError, match="recipient"):
                await _send(sender)

    @pytest.mark.asyncio
    async def test_mailbox_unavailable_code(self, sender: SmtpSender):
        with patch(SMTP_SSL) as MockSMTP:
            mock_smtp = _make_mock_smtp()
            mock_smtp.send_message.side_effect = smtplib.SMTPDataError(550, b"unavailable")
            MockSMTP.return_value = mock_smtp
            with pytest.raises(RecipientRejectedError):
                await _send(sender)

    @pytest.mark.asyncio
    async def test_other_smtp_error(self, sender: SmtpSender):
        with patch(SMTP_SSL) as MockSMTP:
            mock_smtp = _make_mock_smtp()
            mock_smtp.send_message.side_effect = smtplib.SMTPDataError(554, b"spam")
            MockSMTP.return_value = mock_smtp
            with pytest.raises(SendError, match="Failed to send email") as excinfo:
                await _send(sender)
            assert type(excinfo.value) is SendError

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error,expected",
        [
            (socket.gaierror(-2, "Name or service not known"), SendHostNotFoundError),
            (TimeoutError("timed out"), SendTimeoutError),
            (ConnectionRefusedError(111, "refused"), SendConnectionError),
            (smtplib.SMTPConnectError(421, b"busy"), SendConnectionError),
            (smtplib.SMTPServerDisconnected("gone"), SendConnectionError),
        ],
        ids=["dns", "timeout", "refused", "connect-error", "disconnected"],
    )
    async def test_connection_failures(self, sender: SmtpSender, error, expected):
        with patch(SMTP_SSL, side_effect=error):
            with pytest.raises(expected) as excinfo:
                await _send(sender)
        assert str(excinfo.value).startswith("Failed to send email:")
