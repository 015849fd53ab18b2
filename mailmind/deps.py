"""FastAPI dependency-injection helpers for the shared service objects."""

from __future__ import annotations

from fastapi import Request

from mailmind.config import Settings
from mailmind.enrichment import EnrichmentClient
from mailmind.retrieval import RetrievalService
from mailmind.sender import SmtpSender


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_retrieval(request: Request) -> RetrievalService:
    return request.app.state.retrieval


def get_enrichment(request: Request) -> EnrichmentClient:
    return request.app.state.enrichment


def get_sender(request: Request) -> SmtpSender:
    return request.app.state.sender
