"""Immo Harvester — SQLite Connection Manager.

Provides async SQLite connection management using aiosqlite. Handles
database initialization, schema creation, indexes, and connection
lifecycle.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from immo_harvester.utils.logger import get_logger

logger = get_logger(__name__)

# ── Schema Definitions ────────────────────────────────────
SCHEMA_SQL = """
-- ═══ Users Table ═══
-- Owned by the management layer; the pipeline only reads ownership.
CREATE TABLE IF NOT EXISTS users (
    id          TEXT    PRIMARY KEY,
    username    TEXT    NOT NULL,
    is_admin    INTEGER NOT NULL DEFAULT 0
);

-- ═══ Jobs Table ═══
-- Saved searches. JSON columns hold blacklist, provider and adapter lists.
CREATE TABLE IF NOT EXISTS jobs (
    id                   TEXT    PRIMARY KEY,
    user_id              TEXT    NOT NULL,
    enabled              INTEGER NOT NULL DEFAULT 1,
    name                 TEXT,
    blacklist            TEXT    NOT NULL DEFAULT '[]',
    provider             TEXT    NOT NULL DEFAULT '[]',
    notification_adapter TEXT    NOT NULL DEFAULT '[]',
    shared_with_user     TEXT    NOT NULL DEFAULT '[]',
    FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE
);

-- ═══ Listings Table ═══
-- Canonical listings. One row per (job, identity hash).
CREATE TABLE IF NOT EXISTS listings (
    id                        TEXT    PRIMARY KEY,
    created_at                INTEGER,
    hash                      TEXT    NOT NULL,
    provider                  TEXT    NOT NULL,
    job_id                    TEXT    NOT NULL,
    price                     TEXT,
    size                      TEXT,
    title                     TEXT,
    image_url                 TEXT,
    description               TEXT,
    address_full              TEXT,
    link                      TEXT,
    numeric_price             REAL,
    numeric_size              REAL,
    price_per_sqm             REAL,
    numeric_rooms             REAL,
    year_built                INTEGER,
    last_refurbishment_year   INTEGER,
    condition                 TEXT,
    interior_quality          TEXT,
    flat_type                 TEXT,
    street                    TEXT,
    zip_code                  TEXT,
    city                      TEXT,
    energy_class              TEXT,
    heating_type              TEXT,
    energy_source             TEXT,
    service_charge            REAL,
    additional_purchase_costs REAL,
    has_balcony               INTEGER,
    has_garden                INTEGER,
    has_kitchen               INTEGER,
    has_cellar                INTEGER,
    has_lift                  INTEGER,
    is_barrier_free           INTEGER,
    price_indicator_percent   REAL,
    published_text            TEXT,
    is_private                INTEGER,
    is_active                 INTEGER DEFAULT 1,
    FOREIGN KEY (job_id) REFERENCES jobs (id) ON DELETE CASCADE,
    UNIQUE (job_id, hash)
);

-- ═══ Watch List Table ═══
CREATE TABLE IF NOT EXISTS watch_list (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    listing_id  TEXT    NOT NULL,
    user_id     TEXT    NOT NULL,
    created_at  INTEGER,
    FOREIGN KEY (listing_id) REFERENCES listings (id) ON DELETE CASCADE,
    UNIQUE (listing_id, user_id)
);

-- ═══ Performance Indexes ═══
CREATE INDEX IF NOT EXISTS idx_jobs_user_id            ON jobs(user_id);
CREATE INDEX IF NOT EXISTS idx_jobs_enabled            ON jobs(enabled);
CREATE INDEX IF NOT EXISTS idx_listings_job_provider   ON listings(job_id, provider);
CREATE INDEX IF NOT EXISTS idx_listings_created_at     ON listings(created_at);
CREATE INDEX IF NOT EXISTS idx_listings_is_active      ON listings(is_active);
CREATE INDEX IF NOT EXISTS idx_watch_list_user         ON watch_list(user_id);
"""


class Database:
    """Async SQLite database connection manager.

    Manages the database lifecycle including initialization, schema
    creation, and a persistent connection with WAL mode and foreign keys
    enabled.

    Attributes:
        db_path: Resolved absolute path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        """Initialize the database manager.

        Args:
            db_path: Relative or absolute path to the SQLite database file.
                     Parent directories will be created if they don't exist.
        """
        self.db_path = Path(db_path).resolve()
        self._connection: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()
        logger.debug("Database manager initialized with path: %s", self.db_path)

    async def initialize(self) -> None:
        """Open the connection, set pragmas and create the schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info("Connecting to database: %s", self.db_path)
        self._connection = await aiosqlite.connect(str(self.db_path))

        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA foreign_keys=ON")
        await self._connection.execute("PRAGMA busy_timeout=5000")
        self._connection.row_factory = aiosqlite.Row

        await self._connection.executescript(SCHEMA_SQL)
        await self._connection.commit()

        logger.info("Database initialized — all tables ready")

    async def get_connection(self) -> aiosqlite.Connection:
        """Get the active database connection, initializing if necessary."""
        if self._connection is None:
            await self.initialize()
        return self._connection

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run a group of writes as one transaction.

        Writers on this connection are serialized so that one coroutine's
        commit or rollback never covers another coroutine's statements.
        """
        conn = await self.get_connection()
        async with self._write_lock:
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                raise
            else:
                await conn.commit()

    async def close(self) -> None:
        """Close the database connection. Safe to call more than once."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("Database connection closed")

    async def __aenter__(self) -> "Database":
        await self.initialize()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
