"""
Low-level access to the ``cases`` table and the ``ledger_state`` counter.

The ledger is append-only: there is no delete or update query here.
"""

from __future__ import annotations

from typing import List

import aiosqlite

from modledger.datatypes.case_datatypes import Case, CaseAction

_CASE_COLUMNS = "case_id, action, moderator_id, target_user_id, reason, timestamp, extra"


class CaseRepo:
    """Static queries for the append-only case ledger."""

    # ------------------------------------------------------------------
    # Counter
    # ------------------------------------------------------------------

    @staticmethod
    async def read_next_id(conn: aiosqlite.Connection) -> int:
        cursor = await conn.execute("SELECT next_case_id FROM ledger_state WHERE id = 1")
        row = await cursor.fetchone()
        if row is None:
            raise RuntimeError("ledger_state row missing; was the schema initialized?")
        return int(row[0])

    @staticmethod
    async def store_next_id(conn: aiosqlite.Connection, next_case_id: int) -> None:
        await conn.execute(
            "UPDATE ledger_state SET next_case_id = ? WHERE id = 1 AND next_case_id < ?",
            (next_case_id, next_case_id),
        )

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    @staticmethod
    async def insert(conn: aiosqlite.Connection, case: Case) -> None:
        await conn.execute(
            f"INSERT INTO cases ({_CASE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                case.case_id,
                case.action.value,
                case.moderator_id,
                case.target_user_id,
                case.reason,
                case.timestamp.isoformat(),
                case.extra_json(),
            ),
        )

    @staticmethod
    async def get(conn: aiosqlite.Connection, case_id: int) -> Case | None:
        cursor = await conn.execute(f"SELECT {_CASE_COLUMNS} FROM cases WHERE case_id = ?", (case_id,))
        row = await cursor.fetchone()
        return Case.from_row(row) if row else None

    @staticmethod
    async def list_all(conn: aiosqlite.Connection) -> List[Case]:
        cursor = await conn.execute(f"SELECT {_CASE_COLUMNS} FROM cases ORDER BY case_id")
        return [Case.from_row(row) for row in await cursor.fetchall()]

    @staticmethod
    async def find_acknowledgement(conn: aiosqlite.Connection, acknowledged_case_id: int) -> Case | None:
        cursor = await conn.execute(
            f"SELECT {_CASE_COLUMNS} FROM cases "
            "WHERE action = ? AND json_extract(extra, '$.acknowledgedCase') = ? "
            "ORDER BY case_id LIMIT 1",
            (CaseAction.ACKNOWLEDGE.value, acknowledged_case_id),
        )
        row = await cursor.fetchone()
        return Case.from_row(row) if row else None
