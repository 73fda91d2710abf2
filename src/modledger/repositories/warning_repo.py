"""
Low-level CRUD for the ``warnings`` table.

Timestamps are stored as ISO-8601 text in UTC.
"""

from __future__ import annotations

from typing import List

import aiosqlite

from modledger.datatypes.case_datatypes import WarningRecord


class WarningRepo:
    """Static queries against ``warnings``; callers own the transaction."""

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    async def next_id(conn: aiosqlite.Connection) -> int:
        """``MAX(id) + 1`` over the current rows, or 1 when the table is empty."""
        cursor = await conn.execute("SELECT COALESCE(MAX(id), 0) + 1 FROM warnings")
        row = await cursor.fetchone()
        return int(row[0]) if row else 1

    @staticmethod
    async def insert(conn: aiosqlite.Connection, record: WarningRecord) -> None:
        await conn.execute(
            "INSERT INTO warnings (id, user_id, moderator_id, reason, timestamp) VALUES (?, ?, ?, ?, ?)",
            (record.id, record.user_id, record.moderator_id, record.reason, record.timestamp.isoformat()),
        )

    @staticmethod
    async def delete_for_user(conn: aiosqlite.Connection, user_id: int) -> int:
        """Remove every warning for ``user_id`` and return how many went."""
        cursor = await conn.execute("DELETE FROM warnings WHERE user_id = ?", (user_id,))
        return int(cursor.rowcount or 0)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    async def list_for_user(conn: aiosqlite.Connection, user_id: int) -> List[WarningRecord]:
        """All warnings for ``user_id`` in insertion (id) order."""
        cursor = await conn.execute(
            "SELECT id, user_id, moderator_id, reason, timestamp FROM warnings WHERE user_id = ? ORDER BY id",
            (user_id,),
        )
        rows = await cursor.fetchall()
        return [WarningRecord.from_row(row) for row in rows]
