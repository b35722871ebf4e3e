"""Async SQLite storage gateway for sources, stories, subscribers and newsletters."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import aiosqlite

from aginews.storage.migrations import apply_migrations
from aginews.storage.models import (
    NEWSLETTER_SENT,
    Newsletter,
    NewsletterSend,
    Source,
    Story,
    Subscriber,
    utcnow,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 500


class DatabaseManager:
    """Async SQLite manager with WAL mode and versioned migrations.

    Usage:
        db = DatabaseManager("data/aginews.db")
        await db.initialize()
        # ... use db ...
        await db.close()
    """

    def __init__(self, db_path: str, batch_size: int = DEFAULT_BATCH_SIZE):
        self.db_path = db_path
        self.batch_size = batch_size
        self._conn: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Create database, apply migrations, and configure pragmas."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        apply_migrations(self.db_path)

        self._conn = await aiosqlite.connect(self.db_path)
        self._conn.row_factory = aiosqlite.Row

        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA synchronous=NORMAL")
        await self._conn.execute("PRAGMA foreign_keys=ON")

        logger.info("Database initialized: %s", self.db_path)

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Acquire write lock and begin a transaction."""
        assert self._conn is not None, "Database not initialized"
        async with self._write_lock:
            await self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
                await self._conn.commit()
            except Exception:
                await self._conn.rollback()
                raise

    # --- Sources ---

    async def upsert_source(self, source: Source) -> int:
        """Insert or update a source keyed on its identifier. Returns the row ID."""
        assert self._conn is not None
        async with self._write_lock:
            await self._conn.execute(
                """INSERT INTO sources (name, url, identifier, type, is_active, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(identifier) DO UPDATE SET
                       name=excluded.name,
                       url=excluded.url,
                       type=excluded.type,
                       is_active=excluded.is_active,
                       updated_at=excluded.updated_at""",
                source.to_row(),
            )
            await self._conn.commit()
            cursor = await self._conn.execute(
                "SELECT id FROM sources WHERE identifier = ?", (source.identifier,)
            )
            row = await cursor.fetchone()
        return row[0]

    async def get_active_sources(self) -> List[Source]:
        """Get all active sources in insertion order."""
        assert self._conn is not None
        cursor = await self._conn.execute(
            "SELECT * FROM sources WHERE is_active = 1 ORDER BY id"
        )
        rows = await cursor.fetchall()
        sources = [Source.from_row(dict(r)) for r in rows]
        if not sources:
            logger.warning("No active sources found")
        else:
            logger.info("Found %d active sources", len(sources))
        return sources

    # --- Stories ---

    async def save_stories(self, stories: Sequence[Story]) -> int:
        """Upsert stories keyed on url. The latest write wins for an existing url.

        Returns the number of rows written.
        """
        if not stories:
            return 0

        written = 0
        async with self._transaction() as conn:
            for i in range(0, len(stories), self.batch_size):
                batch = stories[i : i + self.batch_size]
                cursor = await conn.executemany(
                    """INSERT INTO stories
                       (title, url, source_id, content, summary, created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?)
                       ON CONFLICT(url) DO UPDATE SET
                           title=excluded.title,
                           source_id=excluded.source_id,
                           content=excluded.content,
                           summary=excluded.summary,
                           updated_at=excluded.updated_at""",
                    [story.to_row() for story in batch],
                )
                written += cursor.rowcount

        logger.info("Saved %d/%d stories", written, len(stories))
        return written

    async def get_recent_stories(self, limit: int = 50) -> List[Story]:
        """Most recently created stories, newest first."""
        assert self._conn is not None
        cursor = await self._conn.execute(
            "SELECT * FROM stories ORDER BY created_at DESC, id DESC LIMIT ?",
            (limit,),
        )
        rows = await cursor.fetchall()
        return [Story.from_row(dict(r)) for r in rows]

    async def count_stories(self, source_id: Optional[int] = None) -> int:
        assert self._conn is not None
        if source_id is not None:
            cursor = await self._conn.execute(
                "SELECT COUNT(*) FROM stories WHERE source_id = ?", (source_id,)
            )
        else:
            cursor = await self._conn.execute("SELECT COUNT(*) FROM stories")
        row = await cursor.fetchone()
        return row[0] if row else 0

    # --- Subscribers ---

    async def add_subscriber(self, email: str, name: Optional[str] = None) -> int:
        """Insert a subscriber, or reactivate an existing one. Returns the row ID."""
        assert self._conn is not None
        now = utcnow().isoformat()
        async with self._write_lock:
            await self._conn.execute(
                """INSERT INTO subscribers
                   (email, name, is_active, subscribed_at, created_at, updated_at)
                   VALUES (?, ?, 1, ?, ?, ?)
                   ON CONFLICT(email) DO UPDATE SET
                       name=COALESCE(excluded.name, subscribers.name),
                       is_active=1,
                       unsubscribed_at=NULL,
                       updated_at=excluded.updated_at""",
                (email, name, now, now, now),
            )
            await self._conn.commit()
            cursor = await self._conn.execute(
                "SELECT id FROM subscribers WHERE email = ?", (email,)
            )
            row = await cursor.fetchone()
        return row[0]

    async def unsubscribe(self, email: str) -> bool:
        """Deactivate a subscriber. Returns False if no active subscriber matched."""
        assert self._conn is not None
        now = utcnow().isoformat()
        async with self._write_lock:
            cursor = await self._conn.execute(
                """UPDATE subscribers
                   SET is_active = 0, unsubscribed_at = ?, updated_at = ?
                   WHERE email = ? AND is_active = 1""",
                (now, now, email),
            )
            await self._conn.commit()
        return cursor.rowcount > 0

    async def get_active_subscribers_batch(self, offset: int, limit: int) -> List[Subscriber]:
        """Page through active subscribers in stable id order."""
        assert self._conn is not None
        logger.debug("Fetching subscribers batch offset=%d limit=%d", offset, limit)
        cursor = await self._conn.execute(
            """SELECT * FROM subscribers WHERE is_active = 1
               ORDER BY id LIMIT ? OFFSET ?""",
            (limit, offset),
        )
        rows = await cursor.fetchall()
        return [Subscriber.from_row(dict(r)) for r in rows]

    # --- Newsletters ---

    async def save_newsletter(self, newsletter: Newsletter) -> int:
        """Insert a newsletter and return its ID (also set on the object)."""
        assert self._conn is not None
        async with self._write_lock:
            cursor = await self._conn.execute(
                """INSERT INTO newsletters (content, status, created_at, sent_at)
                   VALUES (?, ?, ?, ?)""",
                newsletter.to_row(),
            )
            await self._conn.commit()
        newsletter.id = cursor.lastrowid
        logger.info("Saved newsletter %s (%d chars)", newsletter.id, len(newsletter.content))
        return newsletter.id or 0

    async def get_latest_newsletter(self) -> Optional[Newsletter]:
        assert self._conn is not None
        cursor = await self._conn.execute(
            "SELECT * FROM newsletters ORDER BY created_at DESC, id DESC LIMIT 1"
        )
        row = await cursor.fetchone()
        return Newsletter.from_row(dict(row)) if row else None

    async def update_newsletter_status(self, newsletter_id: int, status: str) -> None:
        """Set the lifecycle status; moving to ``sent`` also stamps sent_at."""
        assert self._conn is not None
        async with self._write_lock:
            if status == NEWSLETTER_SENT:
                await self._conn.execute(
                    "UPDATE newsletters SET status = ?, sent_at = ? WHERE id = ?",
                    (status, utcnow().isoformat(), newsletter_id),
                )
            else:
                await self._conn.execute(
                    "UPDATE newsletters SET status = ? WHERE id = ?",
                    (status, newsletter_id),
                )
            await self._conn.commit()

    # --- Send records ---

    async def record_send(
        self,
        newsletter_id: int,
        subscriber_id: int,
        status: str,
        error_message: Optional[str] = None,
    ) -> None:
        """Append a send record. Records are never updated."""
        assert self._conn is not None
        async with self._write_lock:
            await self._conn.execute(
                """INSERT INTO newsletter_sends
                   (newsletter_id, subscriber_id, status, error_message, sent_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (newsletter_id, subscriber_id, status, error_message, utcnow().isoformat()),
            )
            await self._conn.commit()

    async def get_sends(self, newsletter_id: int) -> List[NewsletterSend]:
        assert self._conn is not None
        cursor = await self._conn.execute(
            "SELECT * FROM newsletter_sends WHERE newsletter_id = ? ORDER BY id",
            (newsletter_id,),
        )
        rows = await cursor.fetchall()
        return [NewsletterSend.from_row(dict(r)) for r in rows]

    # --- Maintenance ---

    async def get_stats(self) -> Dict[str, Any]:
        """Get database statistics."""
        assert self._conn is not None
        stats: Dict[str, Any] = {}

        for key, sql in (
            ("total_sources", "SELECT COUNT(*) FROM sources WHERE is_active = 1"),
            ("total_stories", "SELECT COUNT(*) FROM stories"),
            ("active_subscribers", "SELECT COUNT(*) FROM subscribers WHERE is_active = 1"),
            ("total_newsletters", "SELECT COUNT(*) FROM newsletters"),
        ):
            cursor = await self._conn.execute(sql)
            row = await cursor.fetchone()
            stats[key] = row[0] if row else 0

        cursor = await self._conn.execute(
            """SELECT s.id AS id, COUNT(st.id) AS cnt FROM sources s
               LEFT JOIN stories st ON st.source_id = s.id
               GROUP BY s.id ORDER BY cnt DESC"""
        )
        stats["stories_by_source"] = {r["id"]: r["cnt"] for r in await cursor.fetchall()}

        latest = await self.get_latest_newsletter()
        stats["latest_newsletter"] = latest
        if latest is not None and latest.id is not None:
            cursor = await self._conn.execute(
                """SELECT status, COUNT(*) AS cnt FROM newsletter_sends
                   WHERE newsletter_id = ? GROUP BY status""",
                (latest.id,),
            )
            stats["latest_sends"] = {r["status"]: r["cnt"] for r in await cursor.fetchall()}
        else:
            stats["latest_sends"] = {}

        return stats
