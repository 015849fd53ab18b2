"""Request/response bodies for the HTTP API.

Wire names are camelCase (``batchNumber``, ``knownEmailIds``); Python
attributes stay snake_case.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from mailmind.models import Category, EnrichedMessage


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Items ------------------------------------------------------------------


class EmailItem(CamelModel):
    id: str
    sender: str
    subject: str
    body: str
    date: datetime
    category: Category | None = None
    summary: str | None = None
    extracted_events: list[str] | None = None

    @classmethod
    def from_enriched(cls, message: EnrichedMessage) -> EmailItem:
        events = None
        if message.events is not None:
            events = [event.render() for event in message.events]
        return cls(
            id=message.identity,
            sender=message.sender,
            subject=message.subject,
            body=message.body,
            date=message.date,
            category=message.category,
            summary=message.summary,
            extracted_events=events,
        )


def to_items(messages: list[EnrichedMessage]) -> list[EmailItem]:
    return [EmailItem.from_enriched(m) for m in messages]


# --- Requests ---------------------------------------------------------------
# Required fields are optional here so the routers can answer 400 with a
# readable message instead of a 422 validation dump.


class LoginRequest(CamelModel):
    email: str | None = None
    password: str | None = None


class FetchRequest(CamelModel):
    password: str | None = None


class ProgressiveRequest(FetchRequest):
    batch_number: int = Field(default=0, ge=0)


class DeltaRequest(FetchRequest):
    since_date: datetime | None = None
    known_email_ids: list[str] = Field(default_factory=list)


class ReplyRequest(CamelModel):
    original_subject: str | None = None
    original_body: str | None = None
    user_prompt: str | None = None
    refinement_request: str | None = None
    current_draft: str | None = None


class SendRequest(CamelModel):
    password: str | None = None
    to: str | None = None
    subject: str | None = None
    body: str | None = None
    reply_to: str | None = None


# --- Responses --------------------------------------------------------------


class UserInfo(CamelModel):
    email: str
    id: str


class LoginResponse(CamelModel):
    success: bool = True
    token: str
    user: UserInfo


class EmailListResponse(CamelModel):
    success: bool = True
    emails: list[EmailItem]
    count: int


class ProgressiveResponse(EmailListResponse):
    batch_number: int
    is_complete: bool
    total_fetched: int
    total_expected: int


class DeltaResponse(EmailListResponse):
    newest_date: datetime | None
    timestamp: datetime


class ReplyResponse(CamelModel):
    success: bool = True
    subject: str
    body: str


class SendResponse(CamelModel):
    success: bool = True
    message: str = "Email sent successfully"
