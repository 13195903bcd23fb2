"""
Repository for AI request metrics
"""

from typing import TYPE_CHECKING, Any

from .database import Database
if TYPE_CHECKING:
    from ..ai.types import MetricRecord
from ..logging_config import get_logger

logger = get_logger(__name__)


class AIRequestRepository:
    """Reads and writes the ai_requests table."""

    def __init__(self, db: Database):
        self.db = db

    async def add(self, record: "MetricRecord") -> int:
        """Persist one metric record."""
        return await self.db.insert(
            """
            INSERT INTO ai_requests
                (provider, model, kind, duration_ms, success, fallback,
                 attempts, error_type, prompt_hash)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.provider,
                record.model,
                record.kind,
                record.duration_ms,
                1 if record.success else 0,
                1 if record.used_fallback else 0,
                record.attempts,
                record.error_type,
                record.cache_key,
            )
        )

    async def get_recent(self, limit: int = 20) -> list[dict[str, Any]]:
        """Most recent requests first."""
        return await self.db.fetch_all(
            "SELECT * FROM ai_requests ORDER BY id DESC LIMIT ?",
            (limit,)
        )

    async def summary_by_provider(self) -> list[dict[str, Any]]:
        """
        Per-provider totals.

        Failed sequences have no provider and are grouped under NULL.
        """
        return await self.db.fetch_all(
            """
            SELECT
                provider,
                COUNT(*) AS total,
                SUM(success) AS successes,
                SUM(fallback) AS fallbacks,
                CAST(AVG(duration_ms) AS INTEGER) AS avg_duration_ms,
                MAX(duration_ms) AS max_duration_ms
            FROM ai_requests
            GROUP BY provider
            ORDER BY total DESC
            """
        )
