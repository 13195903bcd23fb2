"""
Async SQLite Database Connection Manager

Owns the connection used to persist AI request metrics.
"""

from pathlib import Path
from typing import Optional, Any, Union

import aiosqlite

from ..logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_DB_PATH = Path("./data/metamind.db")

# Schema file location (relative to this file)
SCHEMA_PATH = Path(__file__).parent / "schema.sql"


class Database:
    """
    Async SQLite database connection manager.

    Usage:
        db = Database(Path("data/metamind.db"))
        await db.connect()
        try:
            rows = await db.fetch_all("SELECT * FROM ai_requests LIMIT ?", (10,))
        finally:
            await db.close()
    """

    def __init__(self, db_path: Optional[Union[Path, str]] = None):
        self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        self._connection: Optional[aiosqlite.Connection] = None

    async def connect(self) -> None:
        """Open the connection and create tables if needed."""
        if self._connection is not None:
            return

        if str(self.db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info(f"Connecting to database at {self.db_path}")

        self._connection = await aiosqlite.connect(str(self.db_path))

        # Metric writes race with CLI reads
        await self._connection.execute("PRAGMA journal_mode = WAL")

        self._connection.row_factory = aiosqlite.Row

        await self._init_schema()

        logger.info("Database connection established")

    async def close(self) -> None:
        """Close database connection."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("Database connection closed")

    async def _init_schema(self) -> None:
        if not SCHEMA_PATH.exists():
            logger.error(f"Schema file not found at {SCHEMA_PATH}")
            raise FileNotFoundError(f"Schema file not found: {SCHEMA_PATH}")

        schema_sql = SCHEMA_PATH.read_text(encoding="utf-8")
        await self._connection.executescript(schema_sql)
        await self._connection.commit()

    def _require_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._connection

    async def fetch_all(
        self,
        query: str,
        params: tuple = ()
    ) -> list[dict[str, Any]]:
        """
        Fetch all rows as a list of dictionaries.

        Args:
            query: SQL query string
            params: Query parameters

        Returns:
            List of rows as dicts
        """
        connection = self._require_connection()
        cursor = await connection.execute(query, params)
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def insert(
        self,
        query: str,
        params: tuple = ()
    ) -> int:
        """
        Execute an INSERT and return the last row ID.
        """
        connection = self._require_connection()
        cursor = await connection.execute(query, params)
        await connection.commit()
        return cursor.lastrowid

    @property
    def is_connected(self) -> bool:
        return self._connection is not None
