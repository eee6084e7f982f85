"""SQLite-based archive of batch jobs for the vesper API.

Running batches live in memory inside the orchestrator; every state change
is snapshotted here so finished batches survive server restarts.
Uses aiosqlite for async database operations.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from models.batch import BatchJob

logger = logging.getLogger(__name__)

# Default database path
DEFAULT_DB_PATH = "data/jobs.db"


class JobStore:
    """Async SQLite job storage."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize job store with database path.

        Args:
            db_path: Path to SQLite database file. Parent directory
                     will be created if it doesn't exist.
        """
        self.db_path = Path(db_path)
        self.db: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Initialize database connection and create schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self.db = await aiosqlite.connect(str(self.db_path))
        self.db.row_factory = aiosqlite.Row

        # Enable WAL mode for better concurrent read performance
        await self.db.execute("PRAGMA journal_mode=WAL")

        await self.db.execute("""
            CREATE TABLE IF NOT EXISTS jobs (
                id TEXT PRIMARY KEY,
                type TEXT NOT NULL DEFAULT 'batch',
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                data JSON
            )
        """)
        await self.db.execute("""
            CREATE INDEX IF NOT EXISTS idx_jobs_created_at
            ON jobs (created_at DESC)
        """)
        await self.db.commit()
        logger.info(f"Job store connected: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self.db:
            await self.db.close()
            self.db = None
            logger.info("Job store connection closed")

    def _conn(self) -> aiosqlite.Connection:
        if self.db is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self.db

    async def save_batch(self, job: BatchJob) -> None:
        """Insert or replace the snapshot of a batch.

        Raises:
            RuntimeError: If database is not connected
        """
        db = self._conn()
        now = datetime.now().isoformat()
        await db.execute(
            """
            INSERT INTO jobs (id, type, status, created_at, updated_at, data)
            VALUES (?, 'batch', ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                status = excluded.status,
                updated_at = excluded.updated_at,
                data = excluded.data
            """,
            (
                job.job_id,
                job.state.value,
                job.created_at.isoformat(),
                now,
                json.dumps(job.to_dict(), default=str),
            ),
        )
        await db.commit()
        logger.debug(f"Archived batch {job.job_id}: {job.state.value}")

    async def get_job(self, job_id: str) -> dict[str, Any] | None:
        """Get an archived job by ID.

        Raises:
            RuntimeError: If database is not connected
        """
        async with self._conn().execute(
            "SELECT * FROM jobs WHERE id = ?", (job_id,)
        ) as cursor:
            row = await cursor.fetchone()
            return self._row_to_dict(row) if row else None

    async def list_jobs(self, status: str | None = None, limit: int = 50) -> list[dict[str, Any]]:
        """List archived jobs, newest first.

        Raises:
            RuntimeError: If database is not connected
        """
        query = "SELECT * FROM jobs WHERE type = 'batch'"
        params: list[Any] = []
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        async with self._conn().execute(query, params) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_dict(row) for row in rows]

    def _row_to_dict(self, row: aiosqlite.Row) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": row["id"],
            "type": row["type"],
            "status": row["status"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
            "data": {},
        }
        if row["data"]:
            try:
                result["data"] = json.loads(row["data"])
            except json.JSONDecodeError:
                logger.warning(f"Failed to parse JSON data for job {row['id']}")
        return result


# Module-level singleton
_job_store: JobStore | None = None


async def get_job_store() -> JobStore:
    """Get or create the global JobStore singleton.

    The database path comes from JOBS_DB_PATH.
    """
    global _job_store
    if _job_store is None:
        from utils.config import load_config

        _job_store = JobStore(load_config()["jobs_db_path"])
        await _job_store.connect()
    return _job_store


async def close_job_store() -> None:
    """Close the global JobStore connection.

    Call this during application shutdown to properly close the database.
    """
    global _job_store
    if _job_store is not None:
        await _job_store.close()
        _job_store = None
