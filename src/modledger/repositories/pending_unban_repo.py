"""
Persistent storage for scheduled tempban expiries.

Timestamps are stored as INTEGER unix seconds so due-date comparisons need no
parsing or timezone conversion.
"""

from __future__ import annotations

from typing import List

import aiosqlite

from modledger.datatypes.case_datatypes import PendingUnban

_COLUMNS = "case_id, guild_id, user_id, unban_at, reason"


def _from_row(row) -> PendingUnban:
    return PendingUnban(
        case_id=int(row[0]),
        guild_id=int(row[1]),
        user_id=int(row[2]),
        unban_at=int(row[3]),
        reason=str(row[4]),
    )


class PendingUnbanRepo:
    """Low-level CRUD for the ``pending_unbans`` table."""

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    async def upsert(conn: aiosqlite.Connection, entry: PendingUnban) -> None:
        """Insert or replace the expiry for one tempban case."""
        await conn.execute(
            f"""
            INSERT INTO pending_unbans ({_COLUMNS})
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(case_id) DO UPDATE SET
                unban_at = excluded.unban_at,
                reason   = excluded.reason
            """,
            (entry.case_id, entry.guild_id, entry.user_id, entry.unban_at, entry.reason),
        )

    @staticmethod
    async def delete(conn: aiosqlite.Connection, case_id: int) -> bool:
        """Remove an entry after it fired or was cancelled. True if a row went."""
        cursor = await conn.execute("DELETE FROM pending_unbans WHERE case_id = ?", (case_id,))
        return bool(cursor.rowcount)

    @staticmethod
    async def delete_for_user(conn: aiosqlite.Connection, guild_id: int, user_id: int) -> List[PendingUnban]:
        """Remove every pending expiry for one user and return the removed entries."""
        cursor = await conn.execute(
            f"SELECT {_COLUMNS} FROM pending_unbans WHERE guild_id = ? AND user_id = ? ORDER BY unban_at, case_id",
            (guild_id, user_id),
        )
        removed = [_from_row(row) for row in await cursor.fetchall()]
        if removed:
            await conn.execute(
                "DELETE FROM pending_unbans WHERE guild_id = ? AND user_id = ?",
                (guild_id, user_id),
            )
        return removed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    async def list_all(conn: aiosqlite.Connection) -> List[PendingUnban]:
        """Every pending entry, soonest first."""
        cursor = await conn.execute(f"SELECT {_COLUMNS} FROM pending_unbans ORDER BY unban_at, case_id")
        return [_from_row(row) for row in await cursor.fetchall()]
