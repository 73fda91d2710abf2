"""
Append-only case ledger.

``open`` reads the durable counter, writes the case row and advances the
counter inside a single transaction. A crash either keeps both or neither, so
an id is never handed out twice.

Actions whose case must land together with another row (a warning, a pending
unban) call :meth:`CaseLedger.write` on the connection of a transaction they
already hold.
"""

from __future__ import annotations

from typing import Any, List, Mapping

import aiosqlite

from modledger.database.db_connection import ConnectionManager, db_connection
from modledger.datatypes.case_datatypes import Case, CaseAction, normalize_reason, utcnow
from modledger.moderation.errors import CaseNotFound
from modledger.repositories.case_repo import CaseRepo
from modledger.util.logger import get_logger

logger = get_logger("case_ledger")


class CaseLedger:
    """Assigns case ids and records every moderation action."""

    def __init__(self, connection: ConnectionManager = db_connection) -> None:
        self.connection = connection

    async def open(
        self,
        action: CaseAction,
        moderator_id: int,
        target_user_id: int,
        reason: str | None = None,
        extra: Mapping[str, Any] | None = None,
    ) -> Case:
        """
        Allocate the next case id and persist the new record.

        Args:
            action: Kind of action being recorded
            moderator_id: Issuer (or the bot for system cases)
            target_user_id: User the action applies to
            reason: Free text; blank becomes "No reason provided"
            extra: Action-specific details, must be JSON-serialisable

        Raises:
            CaseNotFound: An Acknowledge case references a missing case.
            ValueError: An Acknowledge case names a different target than the case it acknowledges.
        """
        async with self.connection.transaction() as conn:
            case = await self.write(conn, action, moderator_id, target_user_id, reason, extra)

        return case

    async def write(
        self,
        conn: aiosqlite.Connection,
        action: CaseAction,
        moderator_id: int,
        target_user_id: int,
        reason: str | None = None,
        extra: Mapping[str, Any] | None = None,
    ) -> Case:
        """Same as :meth:`open`, on the connection of a transaction the caller holds."""
        extra = dict(extra or {})

        if action is CaseAction.ACKNOWLEDGE and "acknowledgedCase" in extra:
            original = await CaseRepo.get(conn, int(extra["acknowledgedCase"]))
            if original is None:
                raise CaseNotFound(int(extra["acknowledgedCase"]))
            if original.target_user_id != target_user_id:
                raise ValueError(
                    f"Acknowledge target {target_user_id} does not match case {original.case_id} "
                    f"target {original.target_user_id}"
                )

        case_id = await CaseRepo.read_next_id(conn)
        case = Case(
            case_id=case_id,
            action=action,
            moderator_id=moderator_id,
            target_user_id=target_user_id,
            reason=normalize_reason(reason),
            timestamp=utcnow(),
            extra=extra,
        )
        await CaseRepo.insert(conn, case)
        await CaseRepo.store_next_id(conn, case_id + 1)

        logger.info(
            "[CASE LEDGER] Case %s: %s on %s by %s",
            case.case_id, case.action, case.target_user_id, case.moderator_id,
        )
        return case

    async def find(self, case_id: int) -> Case:
        async with self.connection.read() as conn:
            case = await CaseRepo.get(conn, case_id)
        if case is None:
            raise CaseNotFound(case_id)
        return case

    async def all(self) -> List[Case]:
        """Every case in insertion order."""
        async with self.connection.read() as conn:
            return await CaseRepo.list_all(conn)

    async def find_acknowledgement(self, case_id: int) -> Case | None:
        """The Acknowledge case recorded for ``case_id``, if the user already clicked."""
        async with self.connection.read() as conn:
            return await CaseRepo.find_acknowledgement(conn, case_id)
