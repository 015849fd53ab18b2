"""Canonical message records and enrichment results."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

FALLBACK_SUMMARY = "Unable to analyze email content."
EMPTY_SUMMARY = "No email content to analyze."
MISSING_SUMMARY = "No summary available"


class Category(str, Enum):
    """Closed set of message categories assigned by enrichment."""

    ACADEMICS = "Important-Academics"
    DEADLINE = "Important-Deadline"
    EVENT = "Event"
    GENERAL = "General"

    @classmethod
    def coerce(cls, value: object) -> Category:
        """Return the matching category, or GENERAL for anything else."""
        try:
            return cls(value)
        except (TypeError, ValueError):
            return cls.GENERAL


class EventType(str, Enum):
    EXAM = "exam"
    DEADLINE = "deadline"
    EVENT = "event"


class ExtractedEvent(BaseModel):
    """A dated item pulled out of a message body."""

    model_config = ConfigDict(frozen=True)

    description: str
    event_type: EventType = EventType.EVENT

    @classmethod
    def parse(cls, text: str) -> ExtractedEvent:
        """Parse ``"Mid-term exam – Oct 30 | exam"``.

        Text without a recognised ``| type`` suffix is kept whole and
        tagged as a generic event.
        """
        head, sep, tail = text.rpartition("|")
        if sep:
            try:
                return cls(description=head.strip(), event_type=EventType(tail.strip().lower()))
            except ValueError:
                pass
        return cls(description=text.strip())

    def render(self) -> str:
        return f"{self.description} | {self.event_type.value}"


class Message(BaseModel):
    """One retrieved mailbox message, normalized."""

    model_config = ConfigDict(frozen=True)

    identity: str = Field(description="Message-ID, or a derived stable key")
    sender: str
    subject: str
    body: str = Field(description="Plain text, or HTML when no text part exists")
    date: datetime = Field(description="Receipt time (UTC)")


class Analysis(BaseModel):
    """Enrichment result; also the memo cache entry."""

    model_config = ConfigDict(frozen=True)

    category: Category = Category.GENERAL
    summary: str = MISSING_SUMMARY
    events: tuple[ExtractedEvent, ...] = ()

    @classmethod
    def fallback(cls) -> Analysis:
        """Result used whenever the provider call fails."""
        return cls(summary=FALLBACK_SUMMARY)

    @classmethod
    def empty(cls) -> Analysis:
        """Result for a message with neither subject nor body."""
        return cls(summary=EMPTY_SUMMARY)


class ReplyDraft(BaseModel):
    """A generated reply, ready for the user to review and send."""

    model_config = ConfigDict(frozen=True)

    subject: str
    body: str


class EnrichedMessage(Message):
    """A message together with its enrichment fields."""

    category: Category | None = None
    summary: str | None = None
    events: tuple[ExtractedEvent, ...] | None = None

    @classmethod
    def combine(cls, message: Message, analysis: Analysis) -> EnrichedMessage:
        return cls(
            **message.model_dump(),
            category=analysis.category,
            summary=analysis.summary,
            events=analysis.events,
        )
