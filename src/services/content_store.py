"""Persistence for generated content records and playlists.

ContentStore is the seam the pipeline and the playlist reconciler write
through. SQLiteContentStore implements it on aiosqlite.
"""

import logging
import uuid
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Protocol

import aiosqlite

from models.generation import ContentRecord

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "data/content.db"


class ContentStoreError(Exception):
    """Error from the content store."""

    pass


class ContentStore(Protocol):
    """Persistence operations used by the pipeline and the reconciler."""

    async def save_record(self, record: ContentRecord) -> str:
        ...

    async def find_playlists(self, name_filter: str) -> list[dict[str, Any]]:
        ...

    async def create_playlist(self, name: str, category_id: Optional[str]) -> str:
        ...

    async def add_playlist_category(self, playlist_id: str, category_id: str) -> None:
        ...

    async def get_membership(self, playlist_id: str, record_id: str) -> Optional[dict[str, Any]]:
        ...

    async def insert_membership(
        self, playlist_id: str, record_id: str, position: Optional[int]
    ) -> None:
        ...

    async def update_membership_position(
        self, playlist_id: str, record_id: str, position: int
    ) -> None:
        ...


class SQLiteContentStore:
    """Async SQLite content store.

    Tables: audios (content records), playlists, playlist_categories
    (many-to-many playlist/category) and playlist_audios (ordered membership).
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize content store with database path.

        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        self.db_path = db_path
        self.db: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Open the connection and create the schema."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self.db = await aiosqlite.connect(str(self.db_path))
        self.db.row_factory = aiosqlite.Row

        await self.db.execute("PRAGMA journal_mode=WAL")
        await self.db.execute("PRAGMA foreign_keys=ON")

        await self.db.execute("""
            CREATE TABLE IF NOT EXISTS audios (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                subtitle TEXT,
                description TEXT,
                audio_url TEXT NOT NULL,
                transcript TEXT NOT NULL,
                duration INTEGER,
                category_id TEXT,
                cover_url TEXT,
                ai_engine TEXT,
                voice_id TEXT,
                voice_name TEXT,
                biblical_base TEXT,
                created_at TEXT NOT NULL
            )
        """)
        await self.db.execute("""
            CREATE TABLE IF NOT EXISTS playlists (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                category_id TEXT,
                created_at TEXT NOT NULL
            )
        """)
        await self.db.execute("""
            CREATE TABLE IF NOT EXISTS playlist_categories (
                playlist_id TEXT NOT NULL REFERENCES playlists (id) ON DELETE CASCADE,
                category_id TEXT NOT NULL,
                PRIMARY KEY (playlist_id, category_id)
            )
        """)
        await self.db.execute("""
            CREATE TABLE IF NOT EXISTS playlist_audios (
                playlist_id TEXT NOT NULL REFERENCES playlists (id) ON DELETE CASCADE,
                audio_id TEXT NOT NULL REFERENCES audios (id) ON DELETE CASCADE,
                position INTEGER,
                created_at TEXT NOT NULL,
                PRIMARY KEY (playlist_id, audio_id)
            )
        """)
        await self.db.commit()
        logger.info(f"Content store connected: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self.db:
            await self.db.close()
            self.db = None
            logger.info("Content store connection closed")

    def _conn(self) -> aiosqlite.Connection:
        if self.db is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self.db

    async def save_record(self, record: ContentRecord) -> str:
        """Insert a content record.

        Returns:
            New record id

        Raises:
            ContentStoreError: If the insert fails
        """
        db = self._conn()
        record_id = str(uuid.uuid4())
        values = asdict(record)
        try:
            await db.execute(
                """
                INSERT INTO audios (
                    id, title, subtitle, description, audio_url, transcript, duration,
                    category_id, cover_url, ai_engine, voice_id, voice_name,
                    biblical_base, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record_id,
                    values["title"],
                    values["subtitle"],
                    values["description"],
                    values["audio_url"],
                    values["transcript"],
                    values["duration_seconds"],
                    values["category_id"] or None,
                    values["image_url"],
                    values["ai_engine"],
                    values["voice_id"],
                    values["voice_name"],
                    values["scriptural_basis"],
                    datetime.now().isoformat(),
                ),
            )
            await db.commit()
        except aiosqlite.Error as e:
            await db.rollback()
            raise ContentStoreError(f"Failed to save record '{record.title}': {e}") from e

        logger.info(f"Saved record {record_id}: {record.title}")
        return record_id

    async def get_record(self, record_id: str) -> Optional[dict[str, Any]]:
        """Fetch a stored record by id."""
        async with self._conn().execute(
            "SELECT * FROM audios WHERE id = ?", (record_id,)
        ) as cursor:
            row = await cursor.fetchone()
            return dict(row) if row else None

    async def find_playlists(self, name_filter: str) -> list[dict[str, Any]]:
        """Playlists whose title contains name_filter, case-insensitively.

        Returns:
            Dicts with id, name and category_ids

        Raises:
            ContentStoreError: If the query fails
        """
        needle = name_filter.strip().casefold()
        try:
            async with self._conn().execute(
                """
                SELECT p.id, p.title, group_concat(pc.category_id) AS category_ids
                FROM playlists p
                LEFT JOIN playlist_categories pc ON pc.playlist_id = p.id
                GROUP BY p.id
                ORDER BY p.created_at
                """
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise ContentStoreError(f"Failed to search playlists: {e}") from e

        # SQLite LIKE only folds ASCII, so names are matched here
        return [
            {
                "id": row["id"],
                "name": row["title"],
                "category_ids": row["category_ids"].split(",") if row["category_ids"] else [],
            }
            for row in rows
            if needle in row["title"].casefold()
        ]

    async def create_playlist(self, name: str, category_id: Optional[str]) -> str:
        """Create a playlist, optionally associated with a category.

        Raises:
            ContentStoreError: If the insert fails
        """
        db = self._conn()
        playlist_id = str(uuid.uuid4())
        try:
            await db.execute(
                "INSERT INTO playlists (id, title, category_id, created_at) VALUES (?, ?, ?, ?)",
                (playlist_id, name.strip(), category_id or None, datetime.now().isoformat()),
            )
            if category_id:
                await db.execute(
                    "INSERT INTO playlist_categories (playlist_id, category_id) VALUES (?, ?)",
                    (playlist_id, category_id),
                )
            await db.commit()
        except aiosqlite.Error as e:
            await db.rollback()
            raise ContentStoreError(f"Failed to create playlist '{name}': {e}") from e

        logger.info(f"Created playlist {playlist_id}: {name}")
        return playlist_id

    async def add_playlist_category(self, playlist_id: str, category_id: str) -> None:
        """Associate a category with a playlist (no-op if already associated)."""
        db = self._conn()
        try:
            await db.execute(
                "INSERT OR IGNORE INTO playlist_categories (playlist_id, category_id) VALUES (?, ?)",
                (playlist_id, category_id),
            )
            await db.commit()
        except aiosqlite.Error as e:
            await db.rollback()
            raise ContentStoreError(
                f"Failed to add category {category_id} to playlist {playlist_id}: {e}"
            ) from e

    async def get_membership(self, playlist_id: str, record_id: str) -> Optional[dict[str, Any]]:
        """Current membership row for a record in a playlist, if any."""
        try:
            async with self._conn().execute(
                "SELECT playlist_id, audio_id, position FROM playlist_audios "
                "WHERE playlist_id = ? AND audio_id = ?",
                (playlist_id, record_id),
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise ContentStoreError(f"Failed to read membership: {e}") from e
        return dict(row) if row else None

    async def insert_membership(
        self, playlist_id: str, record_id: str, position: Optional[int]
    ) -> None:
        db = self._conn()
        try:
            await db.execute(
                "INSERT INTO playlist_audios (playlist_id, audio_id, position, created_at) "
                "VALUES (?, ?, ?, ?)",
                (playlist_id, record_id, position, datetime.now().isoformat()),
            )
            await db.commit()
        except aiosqlite.Error as e:
            await db.rollback()
            raise ContentStoreError(f"Failed to insert membership: {e}") from e

    async def update_membership_position(
        self, playlist_id: str, record_id: str, position: int
    ) -> None:
        db = self._conn()
        try:
            await db.execute(
                "UPDATE playlist_audios SET position = ? WHERE playlist_id = ? AND audio_id = ?",
                (position, playlist_id, record_id),
            )
            await db.commit()
        except aiosqlite.Error as e:
            await db.rollback()
            raise ContentStoreError(f"Failed to update membership position: {e}") from e

    async def list_playlist(self, playlist_id: str) -> list[dict[str, Any]]:
        """Members of a playlist ordered by position (unpositioned last)."""
        async with self._conn().execute(
            """
            SELECT a.id, a.title, pa.position
            FROM playlist_audios pa JOIN audios a ON a.id = pa.audio_id
            WHERE pa.playlist_id = ?
            ORDER BY pa.position IS NULL, pa.position, pa.created_at
            """,
            (playlist_id,),
        ) as cursor:
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]
