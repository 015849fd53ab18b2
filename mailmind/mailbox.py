"""Read-only IMAPS session over stdlib imaplib.

Every blocking ``imaplib`` call runs in a worker thread via
``asyncio.to_thread()`` so the event loop keeps serving other requests.
A session is opened per retrieval and always torn down afterwards;
nothing is pooled.
"""

from __future__ import annotations

import asyncio
import imaplib
import re
import ssl
from datetime import datetime, timezone

import structlog

from .config import ImapConfig
from .errors import (
    MailboxAuthError,
    MailboxConnectionError,
    MailboxError,
    MailboxTimeoutError,
    MessageParseError,
)
from .models import Message
from .parser import MessageParser

logger = structlog.get_logger()

_INTERNALDATE = re.compile(rb'INTERNALDATE "([^"]+)"')

FETCH_ITEMS = "(INTERNALDATE BODY.PEEK[])"

CONNECT_TIMEOUT_MESSAGE = (
    "Connection to email server timed out. Please check your network connection."
)
FETCH_TIMEOUT_MESSAGE = "Email fetch operation timed out"


def login_name(account: str) -> str:
    """The server authenticates by local part only: ``alice@x.org`` → ``alice``."""
    return account.split("@", 1)[0]


class MailboxSession:
    """One authenticated connection to the remote mailbox.

    Usage::

        async with MailboxSession(config, account, password) as session:
            await session.select_inbox()
            seqs = await session.search_all()
            messages = await session.fetch(seqs[-10:])
    """

    def __init__(
        self,
        config: ImapConfig,
        account: str,
        credential: str,
        *,
        parser: MessageParser | None = None,
    ) -> None:
        self._config = config
        self._account = account
        self._credential = credential
        self._parser = parser or MessageParser()
        self._conn: imaplib.IMAP4_SSL | None = None
        self._aborted = False

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def __aenter__(self) -> MailboxSession:
        await self.open()
        return self

    async def __aexit__(self, exc_type: type[BaseException] | None, *exc_info: object) -> None:
        if exc_type is not None and issubclass(exc_type, asyncio.CancelledError):
            # A deadline cancelled us mid-command; the socket may be busy in a worker thread.
            self._abort()
            return
        await self.close()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Connect over TLS and log in, bounded by the connect deadline."""
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._open_sync),
                timeout=self._config.connect_timeout_seconds,
            )
        except asyncio.TimeoutError:
            self._abort()
            logger.warning(
                "imap_connect_timeout",
                host=self._config.host,
                timeout=self._config.connect_timeout_seconds,
            )
            raise MailboxTimeoutError(CONNECT_TIMEOUT_MESSAGE) from None
        except MailboxError:
            # __aexit__ does not run when __aenter__ fails.
            await self.close()
            raise
        logger.info("imap_connected", host=self._config.host, account=self._account)

    def _open_sync(self) -> None:
        try:
            conn = imaplib.IMAP4_SSL(
                self._config.host,
                self._config.port,
                ssl_context=self._ssl_context(),
                timeout=self._config.connect_timeout_seconds,
            )
        except TimeoutError as exc:
            raise MailboxTimeoutError(CONNECT_TIMEOUT_MESSAGE) from exc
        except (OSError, imaplib.IMAP4.error) as exc:
            raise MailboxConnectionError(self._connection_hint(exc)) from exc

        if self._aborted:
            # The connect deadline fired while the socket was opening.
            _shutdown_quietly(conn)
            return
        self._conn = conn

        try:
            conn.login(login_name(self._account), self._credential)
        except imaplib.IMAP4.error as exc:
            raise MailboxAuthError(f"Mailbox login rejected: {_describe(exc)}") from exc
        except OSError as exc:
            raise MailboxConnectionError(self._connection_hint(exc)) from exc

    def _ssl_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if not self._config.verify_certificates:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def _connection_hint(self, exc: BaseException) -> str:
        host, port = self._config.host, self._config.port
        if port == 443:
            return (
                f"Cannot connect to {host}:{port}. Port 443 is for the HTTPS web "
                f"interface, not IMAP. Use port 993 for IMAP connections. "
                f"Original error: {_describe(exc)}"
            )
        if "webmail" in host:
            return (
                f"Connection failed to {host}. A webmail host serves the web "
                f"interface, not IMAP. Original error: {_describe(exc)}"
            )
        return f"Cannot connect to {host}:{port}: {_describe(exc)}"

    async def close(self) -> None:
        """Log out and drop the connection. Safe to call more than once."""
        conn, self._conn = self._conn, None
        if conn is None:
            return
        await asyncio.to_thread(_logout_quietly, conn)
        logger.info("imap_disconnected", host=self._config.host)

    def _abort(self) -> None:
        """Tear the socket down immediately; used when a deadline fires."""
        self._aborted = True
        conn, self._conn = self._conn, None
        if conn is not None:
            _shutdown_quietly(conn)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def select_inbox(self) -> int:
        """EXAMINE the configured mailbox; returns its message count."""
        conn = self._require_conn()
        status, data = await asyncio.to_thread(
            conn.select, self._config.mailbox, True
        )
        if status != "OK":
            raise MailboxError(f"Cannot open {self._config.mailbox}: {_first(data)}")
        try:
            return int(_first(data) or 0)
        except ValueError:
            return 0

    async def search_all(self) -> list[int]:
        """All sequence numbers, in whatever order the server reports them."""
        conn = self._require_conn()
        status, data = await asyncio.to_thread(conn.search, None, "ALL")
        if status != "OK":
            raise MailboxError(f"SEARCH failed: {_first(data)}")
        raw = data[0] if data else b""
        return [int(token) for token in (raw or b"").split()]

    async def fetch(self, sequence_numbers: list[int]) -> list[Message]:
        """Fetch and parse the given messages, bounded by the fetch deadline.

        The result follows the order of *sequence_numbers*. Messages that
        fail to parse are logged and left out.
        """
        if not sequence_numbers:
            return []
        self._require_conn()
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._fetch_sync, list(sequence_numbers)),
                timeout=self._config.fetch_timeout_seconds,
            )
        except asyncio.TimeoutError:
            self._abort()
            logger.warning(
                "imap_fetch_timeout",
                host=self._config.host,
                timeout=self._config.fetch_timeout_seconds,
            )
            raise MailboxTimeoutError(FETCH_TIMEOUT_MESSAGE) from None

    def _fetch_sync(self, sequence_numbers: list[int]) -> list[Message]:
        conn = self._require_conn()
        message_set = ",".join(str(n) for n in sequence_numbers)
        try:
            status, data = conn.fetch(message_set, FETCH_ITEMS)
        except TimeoutError as exc:
            raise MailboxTimeoutError(FETCH_TIMEOUT_MESSAGE) from exc
        except (OSError, imaplib.IMAP4.error) as exc:
            raise MailboxConnectionError(f"FETCH failed: {_describe(exc)}") from exc
        if status != "OK":
            raise MailboxError(f"FETCH failed: {_first(data)}")

        fetched = _split_fetch_response(data)
        messages: list[Message] = []
        for seq in sequence_numbers:
            if seq not in fetched:
                continue
            raw, internal_date = fetched[seq]
            try:
                messages.append(
                    self._parser.parse(raw, sequence_number=seq, internal_date=internal_date)
                )
            except MessageParseError as exc:
                logger.warning("message_parse_failed", sequence_number=seq, error=str(exc))

        logger.debug(
            "imap_fetch_complete",
            requested=len(sequence_numbers),
            parsed=len(messages),
        )
        return messages

    def _require_conn(self) -> imaplib.IMAP4_SSL:
        if self._conn is None:
            raise MailboxError("Mailbox session is not open")
        return self._conn


async def fetch_recent_messages(
    config: ImapConfig,
    account: str,
    credential: str,
    *,
    limit: int | None = None,
    parser: MessageParser | None = None,
) -> list[Message]:
    """Open a fresh session and return the *limit* most recent messages.

    SEARCH reports sequence numbers in ascending (arrival) order, so the
    list is reversed before the cut and the result is newest first.
    """
    limit = config.max_messages if limit is None else limit
    async with MailboxSession(config, account, credential, parser=parser) as session:
        await session.select_inbox()
        sequence_numbers = await session.search_all()
        selected = list(reversed(sequence_numbers))[:limit]
        messages = await session.fetch(selected)

    logger.info(
        "mailbox_retrieved",
        account=account,
        available=len(sequence_numbers),
        selected=len(selected),
        parsed=len(messages),
    )
    return messages


# ----------------------------------------------------------------------
# Helpers (run in worker threads)
# ----------------------------------------------------------------------


def _split_fetch_response(data: list) -> dict[int, tuple[bytes, datetime | None]]:
    """Map sequence number → (raw bytes, INTERNALDATE) from a FETCH reply.

    imaplib returns ``(meta, literal)`` tuples followed by a closing
    bytes item; some servers put INTERNALDATE in that trailing item.
    """
    fetched: dict[int, tuple[bytes, datetime | None]] = {}
    last_seq: int | None = None

    for item in data:
        if isinstance(item, tuple) and len(item) >= 2:
            meta, raw = item[0], item[1]
            try:
                seq = int(meta.split(None, 1)[0])
            except (ValueError, IndexError):
                continue
            fetched[seq] = (raw, _internal_date(meta))
            last_seq = seq
        elif isinstance(item, bytes) and last_seq is not None:
            raw, internal_date = fetched[last_seq]
            if internal_date is None:
                fetched[last_seq] = (raw, _internal_date(item))

    return fetched


def _internal_date(meta: bytes) -> datetime | None:
    match = _INTERNALDATE.search(meta)
    if match is None:
        return None
    try:
        stamp = datetime.strptime(match.group(1).decode("ascii"), "%d-%b-%Y %H:%M:%S %z")
    except (UnicodeDecodeError, ValueError):
        return None
    return stamp.astimezone(timezone.utc)


def _logout_quietly(conn: imaplib.IMAP4_SSL) -> None:
    # No CLOSE: the mailbox was selected read-only, so there is nothing to expunge.
    try:
        conn.logout()
    except (imaplib.IMAP4.error, OSError):
        _shutdown_quietly(conn)


def _shutdown_quietly(conn: imaplib.IMAP4_SSL) -> None:
    try:
        conn.shutdown()
    except OSError:
        pass


def _first(data: list | None) -> str:
    if not data or data[0] is None:
        return ""
    value = data[0]
    return value.decode(errors="replace") if isinstance(value, bytes) else str(value)


def _describe(exc: BaseException) -> str:
    if isinstance(exc, imaplib.IMAP4.error) and exc.args:
        arg = exc.args[0]
        if isinstance(arg, bytes):
            return arg.decode(errors="replace")
    return str(exc) or type(exc).__name__
