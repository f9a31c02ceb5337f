"""Storage layer for persistent data."""

from zkpool.storage.database import (
    Base,
    DatabaseManager,
    PoolConfigRecord,
    PoolEventRecord,
    RootEntry,
    SpentNullifier,
    VerificationKeyRecord,
    get_db_manager,
    reset_db_manager,
)

__all__ = [
    "Base",
    "DatabaseManager",
    "PoolConfigRecord",
    "PoolEventRecord",
    "RootEntry",
    "SpentNullifier",
    "VerificationKeyRecord",
    "get_db_manager",
    "reset_db_manager",
]
