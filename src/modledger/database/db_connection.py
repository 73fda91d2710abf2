"""
Database connection management: one long-lived aiosqlite connection.

Concurrency model
-----------------
SQLite is single-writer, and the case ledger additionally needs its counter
and its record to land together. Every mutation therefore goes through
``transaction()``, which holds ``_write_sem`` for the whole
read-modify-write sequence and commits or rolls back as a unit. Two
concurrent ``/warn`` commands can never observe the same next id.

All stores share one connection, so a reader running next to an open
transaction would see its uncommitted rows. ``read()`` therefore waits on the
same semaphore: a read only ever sees committed state. Neither context is
reentrant; never open one inside the other.

Usage
-----
    await db_connection.open(path)

    async with db_connection.transaction() as conn:
        await conn.execute("INSERT ...")
        await conn.execute("UPDATE ...")
        # commits on clean exit, rolls back on exception

    async with db_connection.read() as conn:
        cursor = await conn.execute("SELECT ...")

    await db_connection.close()
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from modledger.util.logger import get_logger

logger = get_logger("database_connection")

# Applied once when the connection is opened
_PRAGMAS = [
    "PRAGMA journal_mode = WAL",
    "PRAGMA foreign_keys = ON",
    "PRAGMA synchronous = FULL",      # audit records must survive power loss
    "PRAGMA temp_store = MEMORY",
    "PRAGMA busy_timeout = 5000",
]


class ConnectionManager:
    """
    Wrapper around a single aiosqlite connection shared by every store.

    * Writes: ``async with transaction()``; serialised by ``_write_sem``.
    * Reads: ``async with read()``; wait for ``_write_sem`` so they never
      observe a transaction that may still roll back.
    """

    def __init__(self) -> None:
        self._conn: aiosqlite.Connection | None = None
        self._write_sem = asyncio.Semaphore(1)
        self._path: Path | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self, path: Path) -> None:
        """
        Open the database file and apply pragmas.

        Called once during startup before any store is used. A second call
        while a connection is open is logged and ignored.

        Args:
            path: Path to the SQLite database file.
        """
        if self._conn is not None:
            logger.warning("[DB CONNECTION] open() called but connection already exists, ignoring")
            return

        self._path = path
        path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = await aiosqlite.connect(path)
        self._conn.row_factory = aiosqlite.Row

        for pragma in _PRAGMAS:
            await self._conn.execute(pragma)
        await self._conn.commit()

        logger.info("[DB CONNECTION] Opened connection to %s", path)

    async def close(self) -> None:
        """Checkpoint the WAL and close the connection. Safe to call twice."""
        if self._conn is None:
            return

        try:
            await self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            await self._conn.commit()
        except Exception:
            logger.exception("[DB CONNECTION] WAL checkpoint failed during close")
        finally:
            await self._conn.close()
            self._conn = None
            logger.info("[DB CONNECTION] Connection closed")

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def path(self) -> Path | None:
        return self._path

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    @property
    def connection(self) -> aiosqlite.Connection:
        """
        The raw aiosqlite connection.

        Raises:
            RuntimeError: If the connection has not been opened yet.
        """
        if self._conn is None:
            raise RuntimeError(
                "ConnectionManager: connection is not open. "
                "Call await db_connection.open(path) at startup."
            )
        return self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Serialised write transaction.

        Acquires the write semaphore, yields the connection, commits on a
        clean exit and rolls back if the body raises. The exception is
        re-raised: a failed audit write must reach the caller.

        Raises:
            RuntimeError: If the connection is not open.
        """
        conn = self.connection

        async with self._write_sem:
            try:
                yield conn
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise

    @asynccontextmanager
    async def read(self) -> AsyncIterator[aiosqlite.Connection]:
        """Read context. Holds the write semaphore so no transaction is half done."""
        conn = self.connection

        async with self._write_sem:
            yield conn


# Module-level singleton
db_connection = ConnectionManager()
