"""
Database schema initialization.

Creates the moderation tables, their indexes, the ledger counter row and
schema version tracking. Every statement is idempotent so ``initialize_schema``
runs on each startup.
"""

import aiosqlite
from modledger.util.logger import get_logger

logger = get_logger("database_schema")

SCHEMA_VERSION = 1


class SchemaManager:
    """Creates tables, indexes and bookkeeping rows for the moderation store."""

    @staticmethod
    async def initialize_schema(db: aiosqlite.Connection) -> None:
        """
        Create or update all database tables and indexes.

        Args:
            db: Open database connection
        """
        await SchemaManager._create_tables(db)
        await SchemaManager._create_indexes(db)
        await SchemaManager._seed_ledger_state(db)
        await SchemaManager._update_schema_version(db)
        await db.commit()
        logger.info("[SCHEMA] Database schema initialized")

    @staticmethod
    async def _create_tables(db: aiosqlite.Connection) -> None:
        """Create all required database tables."""
        await db.execute("""
            CREATE TABLE IF NOT EXISTS warnings (
                id INTEGER PRIMARY KEY,
                user_id INTEGER NOT NULL,
                moderator_id INTEGER NOT NULL,
                reason TEXT NOT NULL,
                timestamp TEXT NOT NULL
            )
        """)

        # Append-only: no code path issues DELETE or UPDATE against this table
        await db.execute("""
            CREATE TABLE IF NOT EXISTS cases (
                case_id INTEGER PRIMARY KEY,
                action TEXT NOT NULL,
                moderator_id INTEGER NOT NULL,
                target_user_id INTEGER NOT NULL,
                reason TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                extra TEXT NOT NULL DEFAULT '{}'
            )
        """)

        # Single-row table holding the next case id
        await db.execute("""
            CREATE TABLE IF NOT EXISTS ledger_state (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                next_case_id INTEGER NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS pending_unbans (
                case_id INTEGER PRIMARY KEY,
                guild_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                unban_at INTEGER NOT NULL,
                reason TEXT NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

    @staticmethod
    async def _create_indexes(db: aiosqlite.Connection) -> None:
        await db.execute("CREATE INDEX IF NOT EXISTS idx_warnings_user ON warnings(user_id, id)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_cases_target ON cases(target_user_id, case_id)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_cases_action ON cases(action, case_id)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_pending_unbans_due ON pending_unbans(unban_at)")

    @staticmethod
    async def _seed_ledger_state(db: aiosqlite.Connection) -> None:
        """Create the counter row, never lowering it below an existing case id."""
        await db.execute("""
            INSERT OR IGNORE INTO ledger_state (id, next_case_id)
            SELECT 1, COALESCE(MAX(case_id), 0) + 1 FROM cases
        """)

    @staticmethod
    async def _update_schema_version(db: aiosqlite.Connection) -> None:
        await db.execute("INSERT OR IGNORE INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
