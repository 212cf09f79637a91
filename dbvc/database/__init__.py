"""
Storage layer: the relational ledger/target connection manager, the
optional backup document store and its background replicator.
"""

from .connection import DatabaseConnection, split_sql_statements
from .document_store import (
    ENTITY_CHANGE_EVENT,
    ENTITY_MIGRATION,
    ENTITY_SCHEMA_SNAPSHOT,
    DocumentStore,
    FileDocumentStore,
)
from .replication import BackupReplicator, RetryConfig
from .targets import TargetConnections

__all__ = [
    "DatabaseConnection",
    "split_sql_statements",
    "DocumentStore",
    "FileDocumentStore",
    "ENTITY_MIGRATION",
    "ENTITY_SCHEMA_SNAPSHOT",
    "ENTITY_CHANGE_EVENT",
    "BackupReplicator",
    "RetryConfig",
    "TargetConnections",
]
