"""Process-lifetime memo of enrichment results keyed by message identity."""

from __future__ import annotations

import structlog

from .models import Analysis

logger = structlog.get_logger()


class AnalysisCache:
    """Write-once mapping ``identity → Analysis``.

    Mail content does not change after delivery, so an entry is never
    replaced or expired; it lives until the process restarts. There is
    no lock: all access happens on the event loop thread, and a racing
    duplicate ``put`` for the same identity is simply ignored.
    """

    def __init__(self) -> None:
        self._entries: dict[str, Analysis] = {}

    def get(self, identity: str) -> Analysis | None:
        return self._entries.get(identity)

    def put(self, identity: str, analysis: Analysis) -> bool:
        """Store *analysis* unless *identity* is already cached.

        Returns ``True`` if the entry was written.
        """
        if identity in self._entries:
            logger.debug("analysis_cache_duplicate_put", identity=identity)
            return False
        self._entries[identity] = analysis
        return True

    def __contains__(self, identity: object) -> bool:
        return identity in self._entries

    def __len__(self) -> int:
        return len(self._entries)
