"""
Migration engine: registry, lock manager, execution runner, status
reporter, schema snapshotter and integrity verifier.
"""

from .events import ChangeEventRecorder
from .identifiers import (
    calculate_checksum,
    generate_migration_id,
    generate_snapshot_id,
    is_valid_migration_id,
    parse_migration_id,
    sanitize_migration_name,
)
from .lock_manager import LockManager
from .registry import MigrationRegistry
from .runner import MigrationRunner
from .snapshot import SchemaIntrospector, SchemaSnapshotter, hash_schema
from .status import StatusReporter
from .verifier import IntegrityVerifier

__all__ = [
    "ChangeEventRecorder",
    "LockManager",
    "MigrationRegistry",
    "MigrationRunner",
    "SchemaIntrospector",
    "SchemaSnapshotter",
    "StatusReporter",
    "IntegrityVerifier",
    "hash_schema",
    "calculate_checksum",
    "generate_migration_id",
    "generate_snapshot_id",
    "is_valid_migration_id",
    "parse_migration_id",
    "sanitize_migration_name",
]
