"""
Durable scheduler for tempban expiries.

Each scheduled unban is first written to ``pending_unbans`` and only then armed
in memory, so a restart loses nothing: :meth:`UnbanScheduler.recover` reloads
every row on startup and fires overdue ones immediately. Due times are wall
clock unix seconds.

The scheduler does not know how to unban anyone. It calls the handler set with
:meth:`UnbanScheduler.set_handler` (the orchestrator) and deletes the row once
the handler returns. If the handler raises, the row stays and the entry is
re-armed ``retry_delay`` seconds later; a restart fires it at once.

Cancelling a case whose expiry is already running waits for that run to end,
so the answer reflects what actually happened.
"""

from __future__ import annotations

import asyncio
import dataclasses
import heapq
import time
from typing import Awaitable, Callable, Dict, List

import aiosqlite

from modledger.database.db_connection import ConnectionManager, db_connection
from modledger.datatypes.case_datatypes import PendingUnban
from modledger.repositories.pending_unban_repo import PendingUnbanRepo
from modledger.util.logger import get_logger

logger = get_logger("unban_scheduler")

ExpiryHandler = Callable[[PendingUnban], Awaitable[None]]

RETRY_DELAY_SECONDS = 60


class UnbanScheduler:
    """
    Min-heap of pending unbans backed by the ``pending_unbans`` table.

    Attributes:
        heap (list): ``(unban_at, case_id)`` tuples; stale tuples are skipped lazily.
        entries (Dict[int, PendingUnban]): Armed entries keyed by case id.
        in_flight (Dict[int, tuple[PendingUnban, asyncio.Event]]): Entries whose
            handler is running; the event is set when the run ends.
        runner_task (asyncio.Task | None): Background task processing the schedule.
        condition (asyncio.Condition): Wakes the runner when the heap changes.
    """

    def __init__(
        self,
        connection: ConnectionManager = db_connection,
        clock: Callable[[], float] = time.time,
        retry_delay: int = RETRY_DELAY_SECONDS,
    ) -> None:
        self.connection = connection
        self.clock = clock
        self.retry_delay = retry_delay
        self.heap: list[tuple[int, int]] = []
        self.entries: Dict[int, PendingUnban] = {}
        self.in_flight: Dict[int, tuple[PendingUnban, asyncio.Event]] = {}
        self.handler: ExpiryHandler | None = None
        self.runner_task: asyncio.Task[None] | None = None
        self.condition: asyncio.Condition = asyncio.Condition()

    def set_handler(self, handler: ExpiryHandler) -> None:
        self.handler = handler

    def ensure_runner(self) -> None:
        """Start the background runner if it is not already running."""
        loop = asyncio.get_running_loop()
        if self.runner_task is None or self.runner_task.done():
            self.runner_task = loop.create_task(self.run(), name="modledger-unban-scheduler")

    async def _arm(self, entry: PendingUnban) -> None:
        async with self.condition:
            self.ensure_runner()
            self.entries[entry.case_id] = entry
            heapq.heappush(self.heap, (entry.unban_at, entry.case_id))
            self.condition.notify_all()

    @staticmethod
    async def persist(conn: aiosqlite.Connection, entry: PendingUnban) -> None:
        """Write ``entry`` inside a transaction the caller holds. Call :meth:`arm` after the commit."""
        await PendingUnbanRepo.upsert(conn, entry)

    @staticmethod
    async def forget(conn: aiosqlite.Connection, case_id: int) -> None:
        """Delete the row of a lifted tempban inside a transaction the caller holds."""
        await PendingUnbanRepo.delete(conn, case_id)

    async def arm(self, entry: PendingUnban) -> None:
        """Arm an entry that is already persisted."""
        await self._arm(entry)
        logger.info(
            "[UNBAN SCHEDULER] Case %s: user %s unbanned at %s",
            entry.case_id, entry.user_id, entry.unban_at_datetime.isoformat(),
        )

    async def schedule(self, entry: PendingUnban) -> None:
        """
        Persist ``entry`` and arm it.

        A second call for the same case id replaces the due time.
        """
        async with self.connection.transaction() as conn:
            await self.persist(conn, entry)
        await self.arm(entry)

    async def _settle(self, matches: Callable[[PendingUnban], bool]) -> None:
        """Wait until no running expiry matches."""
        while True:
            running = [done for entry, done in self.in_flight.values() if matches(entry)]
            if not running:
                return
            for done in running:
                await done.wait()

    async def cancel(self, case_id: int) -> bool:
        """
        Drop the pending unban for ``case_id``.

        If the expiry is running it is allowed to finish first. A run that
        lifted the ban removed the row, so this then returns False.

        Returns:
            bool: True if a persisted entry was removed.
        """
        await self._settle(lambda entry: entry.case_id == case_id)

        async with self.connection.transaction() as conn:
            removed = await PendingUnbanRepo.delete(conn, case_id)

        async with self.condition:
            self.entries.pop(case_id, None)
            self.condition.notify_all()

        if removed:
            logger.info("[UNBAN SCHEDULER] Cancelled pending unban for case %s", case_id)
        return removed

    async def cancel_for_user(self, guild_id: int, user_id: int) -> List[PendingUnban]:
        """
        Drop every pending unban for one user (e.g. before a permanent ban).

        Running expiries for the user finish first. Returns the removed
        entries so a caller can :meth:`schedule` them again.
        """
        await self._settle(lambda entry: entry.guild_id == guild_id and entry.user_id == user_id)

        async with self.connection.transaction() as conn:
            removed = await PendingUnbanRepo.delete_for_user(conn, guild_id, user_id)

        async with self.condition:
            for entry in removed:
                self.entries.pop(entry.case_id, None)
            self.condition.notify_all()
        return removed

    async def pending(self) -> List[PendingUnban]:
        async with self.connection.read() as conn:
            return await PendingUnbanRepo.list_all(conn)

    async def recover(self) -> int:
        """Re-arm every persisted entry. Returns how many were loaded."""
        async with self.connection.read() as conn:
            entries = await PendingUnbanRepo.list_all(conn)

        for entry in entries:
            await self._arm(entry)

        overdue = sum(1 for entry in entries if entry.unban_at <= self.clock())
        logger.info("[UNBAN SCHEDULER] Recovered %d pending unban(s), %d overdue", len(entries), overdue)
        return len(entries)

    async def shutdown(self) -> None:
        """Stop the runner and forget armed entries. Persisted rows are kept."""
        async with self.condition:
            if self.runner_task:
                self.runner_task.cancel()
            self.heap.clear()
            self.entries.clear()
            self.condition.notify_all()

        if self.runner_task:
            try:
                await self.runner_task
            except asyncio.CancelledError:
                pass
            finally:
                self.runner_task = None

    async def run(self) -> None:
        """
        Background loop: sleep until the earliest entry is due, then execute it.

        Heap tuples whose entry was cancelled or rescheduled are discarded when
        they reach the top. No lock is held while the handler runs.
        """
        while True:
            async with self.condition:
                while self.heap and self._is_stale(self.heap[0]):
                    heapq.heappop(self.heap)

                if not self.heap:
                    await self.condition.wait()
                    continue

                unban_at, case_id = self.heap[0]
                delay = unban_at - self.clock()

                if delay > 0:
                    try:
                        await asyncio.wait_for(self.condition.wait(), timeout=delay)
                    except asyncio.TimeoutError:
                        pass
                    continue

                heapq.heappop(self.heap)
                entry = self.entries.pop(case_id)
                done = asyncio.Event()
                self.in_flight[case_id] = (entry, done)

            try:
                await self.execute(entry)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                retry = dataclasses.replace(entry, unban_at=int(self.clock()) + self.retry_delay)
                logger.error(
                    "[UNBAN SCHEDULER] Failed to lift tempban for case %s, retrying at %s: %s",
                    entry.case_id, retry.unban_at_datetime.isoformat(), exc,
                )
                await self._arm(retry)
            finally:
                self.in_flight.pop(case_id, None)
                done.set()

    def _is_stale(self, item: tuple[int, int]) -> bool:
        unban_at, case_id = item
        entry = self.entries.get(case_id)
        return entry is None or entry.unban_at != unban_at

    async def execute(self, entry: PendingUnban) -> None:
        """Run the expiry handler, then delete the persisted row."""
        if self.handler is None:
            logger.error("[UNBAN SCHEDULER] No handler set; case %s left pending", entry.case_id)
            return

        await self.handler(entry)

        async with self.connection.transaction() as conn:
            await PendingUnbanRepo.delete(conn, entry.case_id)
        logger.debug("[UNBAN SCHEDULER] Case %s expiry completed", entry.case_id)
