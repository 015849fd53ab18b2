"""Group-wise concurrent enrichment with memoization."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Protocol

import structlog

from .cache import AnalysisCache
from .models import Analysis, EnrichedMessage, Message

logger = structlog.get_logger()


class Analyzer(Protocol):
    async def analyze(self, subject: str, body: str) -> Analysis: ...


class BatchOrchestrator:
    """Run messages through an :class:`Analyzer` a few at a time.

    Members of a group are analyzed concurrently; the next group starts
    only after the whole current group has resolved. This caps the number
    of outstanding provider calls at the group size.
    """

    def __init__(
        self,
        analyzer: Analyzer,
        cache: AnalysisCache,
        *,
        group_size: int = 2,
    ) -> None:
        if group_size < 1:
            raise ValueError("group_size must be at least 1")
        self._analyzer = analyzer
        self._cache = cache
        self._group_size = group_size

    @property
    def cache(self) -> AnalysisCache:
        return self._cache

    async def enrich(
        self,
        messages: Sequence[Message],
        *,
        group_size: int | None = None,
    ) -> list[EnrichedMessage]:
        """Enrich *messages* and return them sorted oldest first."""
        size = group_size or self._group_size
        groups = [messages[i : i + size] for i in range(0, len(messages), size)]

        enriched: list[EnrichedMessage] = []
        for number, group in enumerate(groups, start=1):
            logger.debug("batch_started", batch=number, batches=len(groups), size=len(group))
            enriched.extend(await asyncio.gather(*(self._enrich_one(m) for m in group)))
            logger.debug("batch_completed", batch=number, batches=len(groups))

        enriched.sort(key=lambda m: m.date)
        logger.info("enrichment_complete", messages=len(enriched), groups=len(groups))
        return enriched

    async def _enrich_one(self, message: Message) -> EnrichedMessage:
        cached = self._cache.get(message.identity)
        if cached is not None:
            logger.debug("analysis_cache_hit", identity=message.identity)
            return EnrichedMessage.combine(message, cached)

        try:
            analysis = await self._analyzer.analyze(message.subject, message.body)
        except Exception as exc:
            logger.warning(
                "enrichment_failed",
                identity=message.identity,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            analysis = Analysis.fallback()

        # Fallback results are cached too, so a failed message is not retried.
        self._cache.put(message.identity, analysis)
        return EnrichedMessage.combine(message, analysis)
