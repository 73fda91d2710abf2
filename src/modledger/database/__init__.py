"""
Database package for Modledger.

Public API:
    - db_connection: Global ConnectionManager (single aiosqlite connection)
    - ConnectionManager: Serialised-write connection wrapper
    - SchemaManager: Table and index creation
    - initialize_database: Open the connection and create the schema
"""

from pathlib import Path

from modledger.database.db_connection import ConnectionManager, db_connection
from modledger.database.db_schema import SchemaManager


async def initialize_database(path: Path, manager: ConnectionManager = db_connection) -> ConnectionManager:
    """Open ``manager`` on ``path`` and make sure every table exists."""
    await manager.open(path)
    async with manager.transaction() as conn:
        await SchemaManager.initialize_schema(conn)
    return manager


__all__ = ["ConnectionManager", "SchemaManager", "db_connection", "initialize_database"]
