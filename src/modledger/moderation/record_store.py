"""
Warning storage.

Ids are ``MAX(id) + 1`` over the rows currently in the table. After a user's
warnings are cleared and the table is empty, the next warning is id 1 again;
no "highest id ever issued" is remembered outside the table itself.
"""

from __future__ import annotations

from typing import List

import aiosqlite

from modledger.database.db_connection import ConnectionManager, db_connection
from modledger.datatypes.case_datatypes import WarningRecord, normalize_reason, utcnow
from modledger.repositories.warning_repo import WarningRepo
from modledger.util.logger import get_logger

logger = get_logger("record_store")


class RecordStore:
    """Append, list and bulk-clear warnings. Each mutation is one transaction."""

    def __init__(self, connection: ConnectionManager = db_connection) -> None:
        self.connection = connection

    async def add(self, user_id: int, moderator_id: int, reason: str | None) -> WarningRecord:
        async with self.connection.transaction() as conn:
            return await self.write(conn, user_id, moderator_id, reason)

    async def write(
        self, conn: aiosqlite.Connection, user_id: int, moderator_id: int, reason: str | None
    ) -> WarningRecord:
        """Append a warning on the connection of a transaction the caller holds."""
        record = WarningRecord(
            id=await WarningRepo.next_id(conn),
            user_id=user_id,
            moderator_id=moderator_id,
            reason=normalize_reason(reason),
            timestamp=utcnow(),
        )
        await WarningRepo.insert(conn, record)

        logger.info("[RECORD STORE] Warning %s added for user %s by %s", record.id, user_id, moderator_id)
        return record

    async def list_for(self, user_id: int) -> List[WarningRecord]:
        async with self.connection.read() as conn:
            return await WarningRepo.list_for_user(conn, user_id)

    async def clear_for(self, user_id: int) -> int:
        async with self.connection.transaction() as conn:
            removed = await WarningRepo.delete_for_user(conn, user_id)

        logger.info("[RECORD STORE] Cleared %d warnings for user %s", removed, user_id)
        return removed
