"""SQLite database connection manager with schema migration."""

from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from wecom_relay.errors import StorageError
from wecom_relay.log import get_logger

logger = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS guests (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    name            TEXT    NOT NULL UNIQUE,
    credit          REAL    NOT NULL DEFAULT 0,
    admin           INTEGER NOT NULL DEFAULT 0,
    created_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now')),
    updated_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE TABLE IF NOT EXISTS conversations (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    guest_id        INTEGER NOT NULL REFERENCES guests(id),
    agent_id        INTEGER NOT NULL,
    active          INTEGER NOT NULL DEFAULT 1,
    created_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now')),
    updated_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_conversations_one_active
    ON conversations(guest_id, agent_id) WHERE active = 1;

CREATE TABLE IF NOT EXISTS messages (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_id     INTEGER NOT NULL REFERENCES conversations(id),
    role                INTEGER NOT NULL,
    content_type        INTEGER NOT NULL DEFAULT 1,
    content             TEXT    NOT NULL,
    cost                REAL    NOT NULL DEFAULT 0 CHECK(cost >= 0),
    prompt_tokens       INTEGER NOT NULL DEFAULT 0 CHECK(prompt_tokens >= 0),
    completion_tokens   INTEGER NOT NULL DEFAULT 0 CHECK(completion_tokens >= 0),
    created_at          TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation
    ON messages(conversation_id, created_at);

CREATE TABLE IF NOT EXISTS db_init_status (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    initialized_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);
"""


class Database:
    """Async SQLite database manager."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def initialize(self, admin_name: str) -> None:
        """Open connection, run migrations and seed the admin on first use."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            # Transactions are managed explicitly in transaction().
            self._conn = await aiosqlite.connect(self._db_path, isolation_level=None)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute("PRAGMA foreign_keys=ON")
            await self._conn.executescript(SCHEMA_SQL)
        except sqlite3.Error as e:
            raise StorageError(f"数据库初始化失败。{e}") from e

        await self._seed(admin_name)
        logger.info("database_initialized", path=self._db_path)

    async def _seed(self, admin_name: str) -> None:
        cursor = await self.conn.execute("SELECT initialized_at FROM db_init_status LIMIT 1")
        row = await cursor.fetchone()
        if row is not None:
            logger.info("database_already_seeded", initialized_at=row["initialized_at"])
            return

        logger.warning("database_not_seeded", admin=admin_name)
        async with self.transaction() as conn:
            await conn.execute(
                "INSERT INTO guests (name, credit, admin) VALUES (?, 0, 1)",
                (admin_name,),
            )
            await conn.execute("INSERT INTO db_init_status DEFAULT VALUES")
        logger.info("database_seeded", admin=admin_name)

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run the enclosed statements atomically.

        Concurrent tasks share one connection, so transactions are serialised
        with a lock; sqlite errors are re-raised as StorageError.
        """
        conn = self.conn
        async with self._write_lock:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException as e:
                await conn.execute("ROLLBACK")
                if isinstance(e, sqlite3.Error):
                    raise StorageError(str(e)) from e
                raise
            else:
                await conn.execute("COMMIT")

    async def fetchone(self, sql: str, params: tuple = ()) -> aiosqlite.Row | None:
        try:
            cursor = await self.conn.execute(sql, params)
            return await cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e

    async def fetchall(self, sql: str, params: tuple = ()) -> list[aiosqlite.Row]:
        try:
            cursor = await self.conn.execute(sql, params)
            return list(await cursor.fetchall())
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("database_closed")
