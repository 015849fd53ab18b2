"""MailMind: mailbox retrieval with AI categorization, summaries and event extraction."""

from .cache import AnalysisCache
from .config import EnrichmentConfig, ImapConfig, RetrievalConfig, Settings, SmtpConfig
from .enrichment import EnrichmentClient
from .logging import setup_logging
from .mailbox import MailboxSession, fetch_recent_messages
from .models import (
    Analysis,
    Category,
    EnrichedMessage,
    EventType,
    ExtractedEvent,
    Message,
    ReplyDraft,
)
from .orchestrator import BatchOrchestrator
from .parser import MessageParser
from .retrieval import DeltaResult, ProgressivePage, RetrievalService
from .sender import SmtpSender

__all__ = [
    "Analysis",
    "AnalysisCache",
    "BatchOrchestrator",
    "Category",
    "DeltaResult",
    "EnrichedMessage",
    "EnrichmentClient",
    "EnrichmentConfig",
    "EventType",
    "ExtractedEvent",
    "ImapConfig",
    "MailboxSession",
    "Message",
    "MessageParser",
    "ProgressivePage",
    "ReplyDraft",
    "RetrievalConfig",
    "RetrievalService",
    "Settings",
    "SmtpConfig",
    "SmtpSender",
    "fetch_recent_messages",
    "setup_logging",
]
