"""Exception hierarchy shared by the mailbox, enrichment and send paths."""

from __future__ import annotations


class MailMindError(Exception):
    """Base class for all errors raised by this package."""


# ----------------------------------------------------------------------
# Mailbox session
# ----------------------------------------------------------------------


class MailboxError(MailMindError):
    """The mailbox session could not be established or used."""


class MailboxConnectionError(MailboxError):
    pass


class MailboxAuthError(MailboxError):
    pass


class MailboxTimeoutError(MailboxError):
    pass


class RetrievalTimeoutError(MailMindError):
    """The end-to-end retrieval deadline expired."""


class MessageParseError(MailMindError):
    """A single raw message could not be turned into a Message."""


# ----------------------------------------------------------------------
# Enrichment provider
# ----------------------------------------------------------------------


class EnrichmentError(MailMindError):
    """The text-analysis provider call failed."""


class EnrichmentAuthError(EnrichmentError):
    pass


class UpstreamError(EnrichmentError):
    """Non-success response from the provider."""

    def __init__(self, status_code: int, detail: str = "") -> None:
        self.status_code = status_code
        self.detail = detail
        message = f"Enrichment provider error: {status_code}"
        if detail:
            message = f"{message}. {detail}"
        super().__init__(message)


# ----------------------------------------------------------------------
# Outbound send
# ----------------------------------------------------------------------


class SendError(MailMindError):
    """Outbound delivery failed."""


class SendAuthError(SendError):
    pass


class SendConnectionError(SendError):
    pass


class SendTimeoutError(SendError):
    pass


class SendHostNotFoundError(SendError):
    pass


class RecipientRejectedError(SendError):
    pass
