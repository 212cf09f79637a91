"""
Ledger Schema

Creates the version-control ledger tables. Creation is idempotent and
records its version in ``PRAGMA user_version``.
"""

import logging

from ..exceptions import DatabaseError
from .connection import DatabaseConnection

logger = logging.getLogger(__name__)

LEDGER_SCHEMA_VERSION = 1

LEDGER_TABLES = frozenset(
    {
        "db_inventory",
        "migration_registry",
        "migration_execution_history",
        "migration_applied_status",
        "schema_snapshots",
        "migration_locks",
        "migration_change_events",
    }
)

_TABLES = [
    """
    CREATE TABLE IF NOT EXISTS db_inventory (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        database_id TEXT NOT NULL UNIQUE,
        database_name TEXT NOT NULL,
        database_type TEXT NOT NULL DEFAULT 'SQL' CHECK (database_type IN ('SQL')),
        connection_secret_name TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        metadata TEXT DEFAULT '{}'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS migration_registry (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        migration_id TEXT NOT NULL,
        database_id TEXT NOT NULL,
        description TEXT NOT NULL,
        up_script TEXT NOT NULL,
        down_script TEXT,
        checksum TEXT NOT NULL,
        author TEXT NOT NULL,
        created_at TEXT NOT NULL,
        is_reversible INTEGER NOT NULL DEFAULT 0,
        depends_on TEXT NOT NULL DEFAULT '[]',
        tags TEXT NOT NULL DEFAULT '[]',
        UNIQUE (migration_id, database_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS migration_execution_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        migration_id TEXT NOT NULL,
        database_id TEXT NOT NULL,
        environment TEXT NOT NULL CHECK (environment IN ('dev', 'staging', 'prod')),
        status TEXT NOT NULL CHECK (status IN ('running', 'success', 'failed')),
        started_at TEXT NOT NULL,
        completed_at TEXT,
        duration_ms INTEGER,
        executor TEXT NOT NULL,
        execution_mode TEXT NOT NULL DEFAULT 'forward'
            CHECK (execution_mode IN ('forward', 'rollback')),
        error_message TEXT,
        execution_context TEXT NOT NULL DEFAULT '{}',
        FOREIGN KEY (migration_id, database_id)
            REFERENCES migration_registry (migration_id, database_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS migration_applied_status (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        migration_id TEXT NOT NULL,
        database_id TEXT NOT NULL,
        environment TEXT NOT NULL CHECK (environment IN ('dev', 'staging', 'prod')),
        is_applied INTEGER NOT NULL DEFAULT 0,
        applied_at TEXT,
        applied_by TEXT,
        last_execution_id INTEGER REFERENCES migration_execution_history (id),
        UNIQUE (migration_id, database_id, environment),
        FOREIGN KEY (migration_id, database_id)
            REFERENCES migration_registry (migration_id, database_id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS schema_snapshots (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        snapshot_id TEXT NOT NULL UNIQUE,
        database_id TEXT NOT NULL,
        environment TEXT NOT NULL CHECK (environment IN ('dev', 'staging', 'prod')),
        captured_at TEXT NOT NULL,
        triggering_migration_id TEXT,
        capture_type TEXT NOT NULL DEFAULT 'auto'
            CHECK (capture_type IN ('auto', 'manual', 'baseline')),
        schema_hash TEXT NOT NULL,
        backup_document_id TEXT,
        table_count INTEGER,
        view_count INTEGER,
        index_count INTEGER,
        routine_count INTEGER,
        captured_by TEXT NOT NULL,
        schema_definition TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS migration_locks (
        database_id TEXT PRIMARY KEY,
        locked_at TEXT NOT NULL,
        locked_by TEXT NOT NULL,
        lock_reason TEXT,
        expires_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS migration_change_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        migration_id TEXT NOT NULL,
        database_id TEXT NOT NULL,
        event_type TEXT NOT NULL
            CHECK (event_type IN ('started', 'completed', 'failed', 'rolled-back')),
        environment TEXT NOT NULL,
        context TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL
    )
    """,
]

_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_migration_registry_database ON migration_registry(database_id)",
    "CREATE INDEX IF NOT EXISTS idx_execution_history_migration ON migration_execution_history(migration_id, database_id)",
    "CREATE INDEX IF NOT EXISTS idx_execution_history_started ON migration_execution_history(started_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_applied_status_database_env ON migration_applied_status(database_id, environment)",
    "CREATE INDEX IF NOT EXISTS idx_schema_snapshots_database ON schema_snapshots(database_id, environment, captured_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_change_events_database ON migration_change_events(database_id, created_at DESC)",
]


def ensure_ledger_schema(db: DatabaseConnection) -> None:
    """
    Create the ledger tables and indexes if they do not exist.

    Raises:
        DatabaseError: If a table cannot be created
    """
    try:
        with db.transaction():
            for table_sql in _TABLES:
                db.execute(table_sql)
            for index_sql in _INDEXES:
                db.execute(index_sql)
            db.execute(f"PRAGMA user_version = {LEDGER_SCHEMA_VERSION}")
    except DatabaseError as e:
        logger.error(f"Failed to initialize ledger tables: {e}")
        raise

    logger.debug(f"Ledger schema ready (version {LEDGER_SCHEMA_VERSION})")


def get_ledger_schema_version(db: DatabaseConnection) -> int:
    row = db.fetch_one("PRAGMA user_version")
    return int(row[0]) if row else 0
