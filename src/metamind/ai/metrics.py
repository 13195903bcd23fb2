"""
Metric sinks for orchestrated AI calls.

Recording is best-effort: a sink that fails logs a warning and the record is
dropped. Nothing here may ever fail a user request.
"""

import asyncio
from pathlib import Path
from typing import Optional, Protocol, Sequence, Union

from .types import MetricRecord
from ..db import AIRequestRepository, Database
from ..logging_config import get_logger

logger = get_logger(__name__)


class MetricsSink(Protocol):
    async def record(self, metric: MetricRecord) -> None:
        ...

    async def close(self) -> None:
        ...


class LoggingMetricsSink:
    """Writes each record as a structured log line"""

    async def record(self, metric: MetricRecord) -> None:
        logger.info(
            f"[METRIC] provider={metric.provider} model={metric.model} "
            f"success={metric.success} fallback={metric.used_fallback} "
            f"duration={metric.duration_ms}ms",
            extra={"metric": metric.to_dict()}
        )

    async def close(self) -> None:
        pass


class SQLiteMetricsSink:
    """
    Persists records to the ai_requests table.

    The database is opened lazily on the first record so constructing the
    sink never touches the filesystem. Metric tasks run concurrently, so the
    open is serialized and only one connection is ever made.
    """

    def __init__(self, db_path: Optional[Union[Path, str]] = None, db: Optional[Database] = None):
        self._db = db or Database(db_path)
        self._repo = AIRequestRepository(self._db)
        self._connect_lock = asyncio.Lock()

    async def _ensure_connected(self) -> None:
        async with self._connect_lock:
            if not self._db.is_connected:
                await self._db.connect()

    async def record(self, metric: MetricRecord) -> None:
        try:
            await self._ensure_connected()
            await self._repo.add(metric)
        except Exception as e:
            logger.warning(f"Could not persist ai_requests metric: {e}")

    async def close(self) -> None:
        async with self._connect_lock:
            await self._db.close()


class CompositeMetricsSink:
    """Fans a record out to several sinks; one failing does not stop the others"""

    def __init__(self, sinks: Sequence[MetricsSink]):
        self.sinks = list(sinks)

    async def record(self, metric: MetricRecord) -> None:
        for sink in self.sinks:
            try:
                await sink.record(metric)
            except Exception as e:
                logger.warning(f"Metric sink {type(sink).__name__} failed: {e}")

    async def close(self) -> None:
        for sink in self.sinks:
            await sink.close()
