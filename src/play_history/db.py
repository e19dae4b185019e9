"""SQLite database connection and schema management.

Data is stored in ~/.play-history/history.db by default.
WAL mode is enabled so live capture can write while an import pass reads.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .sqlmodels import OPTIONAL_COLUMNS, Base

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = os.path.expanduser("~/.play-history")
DB_FILENAME = "history.db"
DEDUP_INDEX = "idx_plays_dedup"


def get_data_dir() -> Path:
    """Get the data directory, creating it if needed."""
    data_dir = Path(os.environ.get("PLAY_HISTORY_DATA_DIR", DEFAULT_DATA_DIR))
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def get_db_url(db_path: Optional[str | Path] = None) -> str:
    """Get the SQLite database URL."""
    if db_path is None:
        db_path = get_data_dir() / DB_FILENAME
    return f"sqlite+aiosqlite:///{db_path}"


def _set_wal_mode(dbapi_connection, connection_record):
    """Enable WAL mode for concurrent reads during writes."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def make_engine(url: str) -> AsyncEngine:
    engine = create_async_engine(url, echo=False)
    event.listen(engine.sync_engine, "connect", _set_wal_mode)
    return engine


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


async def column_names(conn, table: str) -> set[str]:
    """Live column catalog of a table."""
    result = await conn.execute(text(f"PRAGMA table_info({table})"))
    return {row[1].lower() for row in result}


async def ensure_columns(conn) -> list[str]:
    """Add any optional column the live tables are missing. Never destructive."""
    added = []
    existing: dict[str, set[str]] = {}
    for table, column, ddl in OPTIONAL_COLUMNS:
        if table not in existing:
            existing[table] = await column_names(conn, table)
        if column.lower() in existing[table]:
            continue
        await conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}"))
        existing[table].add(column.lower())
        added.append(f"{table}.{column}")
    if added:
        logger.info("Added missing columns: %s", ", ".join(added))
    return added


async def ensure_dedup_index(conn) -> int:
    """Collapse duplicate plays once, then create the unique dedup index.

    Returns the number of duplicate rows removed.
    """
    result = await conn.execute(
        text("SELECT 1 FROM sqlite_master WHERE type = 'index' AND name = :name"),
        {"name": DEDUP_INDEX},
    )
    if result.first() is not None:
        return 0

    removed = await conn.execute(text("""
        DELETE FROM plays WHERE id NOT IN (
            SELECT MIN(id) FROM plays
            GROUP BY created_at_utc, beatmap_hash, score
        )
    """))
    await conn.execute(text(
        f"CREATE UNIQUE INDEX IF NOT EXISTS {DEDUP_INDEX} "
        "ON plays(created_at_utc, beatmap_hash, score)"
    ))
    count = removed.rowcount or 0
    if count:
        logger.warning("Removed %d duplicate plays before creating %s", count, DEDUP_INDEX)
    return count


async def init_db(engine: AsyncEngine):
    """Create all tables if they don't exist, then bring old schemas up to date."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await ensure_columns(conn)
        await ensure_dedup_index(conn)
    logger.info("Database initialized at %s", engine.url.database)
