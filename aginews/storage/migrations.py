"""Version-controlled schema migrations for the AGI News store."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import List, Tuple

logger = logging.getLogger(__name__)

# Each migration is (version, description, list_of_sql_statements)
MigrationStep = Tuple[int, str, List[str]]

SCHEMA_SQL_PATH = Path(__file__).parent / "schema.sql"


def _get_migrations() -> List[MigrationStep]:
    """Return ordered list of migrations."""
    return [
        (
            1,
            "Initial schema: sources, stories, subscribers, newsletters",
            [SCHEMA_SQL_PATH.read_text(encoding="utf-8")],
        ),
        (
            2,
            "Add newsletters.status and the newsletter_sends audit trail",
            [
                "ALTER TABLE newsletters ADD COLUMN status TEXT NOT NULL DEFAULT 'draft';",
                """CREATE TABLE IF NOT EXISTS newsletter_sends (
                       id              INTEGER PRIMARY KEY AUTOINCREMENT,
                       newsletter_id   INTEGER NOT NULL REFERENCES newsletters(id),
                       subscriber_id   INTEGER NOT NULL REFERENCES subscribers(id),
                       status          TEXT NOT NULL,
                       error_message   TEXT,
                       sent_at         TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                   );""",
                "CREATE INDEX IF NOT EXISTS idx_sends_newsletter ON newsletter_sends(newsletter_id);",
            ],
        ),
    ]


def get_current_version(conn: sqlite3.Connection) -> int:
    """Get the current schema version, or 0 if no schema exists."""
    try:
        row = conn.execute(
            "SELECT MAX(version) FROM schema_version"
        ).fetchone()
        return row[0] if row and row[0] is not None else 0
    except sqlite3.OperationalError:
        return 0


def apply_migrations(db_path: str) -> int:
    """Apply all pending migrations. Returns the final schema version."""
    conn = sqlite3.connect(db_path)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")

    current = get_current_version(conn)
    applied = 0

    for version, description, statements in _get_migrations():
        if version <= current:
            continue

        logger.info("Applying migration v%d: %s", version, description)
        try:
            for sql in statements:
                conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version, description) VALUES (?, ?)",
                (version, description),
            )
            conn.commit()
            applied += 1
        except Exception:
            conn.rollback()
            logger.exception("Migration v%d failed", version)
            raise

    final = get_current_version(conn)
    conn.close()

    if applied:
        logger.info("Applied %d migration(s). Schema at v%d", applied, final)
    else:
        logger.debug("Schema up to date at v%d", final)

    return final
