"""
Database Models
Data models for the version-control ledger: registered migrations, their
per-environment applied status, execution records, locks, schema
snapshots, change events and the database inventory. Pure data classes
without business logic.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .serialization import (
    canonical_json,
    dump_context,
    dump_string_list,
    load_context,
    load_string_list,
)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime | None) -> str | None:
    """Fixed-width UTC text form, so string order equals time order in SQL."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def safe_get(row_obj, key):
    """Safely get value from row object (dict or sqlite3.Row)."""
    if hasattr(row_obj, "get"):
        return row_obj.get(key)
    else:
        try:
            return row_obj[key]
        except (KeyError, IndexError):
            return None


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class ExecutionMode(str, Enum):
    FORWARD = "forward"
    ROLLBACK = "rollback"


class ChangeEventType(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled-back"


class CaptureType(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"
    BASELINE = "baseline"


class IssueType(str, Enum):
    CHECKSUM_MISMATCH = "checksum_mismatch"
    LOCK_EXPIRED = "lock_expired"
    SCHEMA_DRIFT = "schema_drift"
    CHECK_FAILED = "check_failed"


class IssueSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass
class Migration:
    """
    A registered schema change.

    ``checksum`` is the SHA-256 of ``up_script`` at registration time and
    is never rewritten by the engine.
    """

    migration_id: str
    database_id: str
    description: str
    up_script: str
    checksum: str
    author: str
    down_script: str | None = None
    created_at: datetime | None = None
    depends_on: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    id: int | None = None

    @property
    def is_reversible(self) -> bool:
        return bool(self.down_script and self.down_script.strip())

    @classmethod
    def from_database_row(cls, row: dict[str, Any]) -> "Migration":
        return cls(
            id=safe_get(row, "id"),
            migration_id=row["migration_id"],
            database_id=row["database_id"],
            description=row["description"],
            up_script=row["up_script"],
            down_script=safe_get(row, "down_script"),
            checksum=row["checksum"],
            author=row["author"],
            created_at=parse_timestamp(safe_get(row, "created_at")),
            depends_on=load_string_list(safe_get(row, "depends_on"), field_name="depends_on"),
            tags=load_string_list(safe_get(row, "tags"), field_name="tags"),
        )

    def to_database_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "migration_id": self.migration_id,
            "database_id": self.database_id,
            "description": self.description,
            "up_script": self.up_script,
            "down_script": self.down_script,
            "checksum": self.checksum,
            "author": self.author,
            "created_at": format_timestamp(self.created_at),
            "is_reversible": int(self.is_reversible),
            "depends_on": dump_string_list(self.depends_on),
            "tags": dump_string_list(self.tags),
        }

    def to_dict(self, include_scripts: bool = True) -> dict[str, Any]:
        data = {
            "id": self.migration_id,
            "databaseId": self.database_id,
            "description": self.description,
            "checksum": self.checksum,
            "author": self.author,
            "createdAt": _iso(self.created_at),
            "isReversible": self.is_reversible,
            "dependsOn": list(self.depends_on),
            "tags": list(self.tags),
        }
        if include_scripts:
            data["upScript"] = self.up_script
            data["downScript"] = self.down_script
        return data


@dataclass
class AppliedStatus:
    """Whether a migration is applied in one environment of one database."""

    migration_id: str
    database_id: str
    environment: str
    is_applied: bool = False
    applied_at: datetime | None = None
    applied_by: str | None = None
    last_execution_id: int | None = None
    id: int | None = None

    @classmethod
    def from_database_row(cls, row: dict[str, Any]) -> "AppliedStatus":
        return cls(
            id=safe_get(row, "id"),
            migration_id=row["migration_id"],
            database_id=row["database_id"],
            environment=row["environment"],
            is_applied=bool(row["is_applied"]),
            applied_at=parse_timestamp(safe_get(row, "applied_at")),
            applied_by=safe_get(row, "applied_by"),
            last_execution_id=safe_get(row, "last_execution_id"),
        )

    def to_database_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "migration_id": self.migration_id,
            "database_id": self.database_id,
            "environment": self.environment,
            "is_applied": int(self.is_applied),
            "applied_at": format_timestamp(self.applied_at),
            "applied_by": self.applied_by,
            "last_execution_id": self.last_execution_id,
        }


@dataclass
class ExecutionRecord:
    """One forward or rollback attempt of a migration."""

    migration_id: str
    database_id: str
    environment: str
    executor: str
    status: ExecutionStatus = ExecutionStatus.RUNNING
    mode: ExecutionMode = ExecutionMode.FORWARD
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None
    error_message: str | None = None
    execution_context: dict[str, Any] = field(default_factory=dict)
    id: int | None = None

    @classmethod
    def from_database_row(cls, row: dict[str, Any]) -> "ExecutionRecord":
        return cls(
            id=safe_get(row, "id"),
            migration_id=row["migration_id"],
            database_id=row["database_id"],
            environment=row["environment"],
            executor=row["executor"],
            status=ExecutionStatus(row["status"]),
            mode=ExecutionMode(row["execution_mode"]),
            started_at=parse_timestamp(safe_get(row, "started_at")),
            completed_at=parse_timestamp(safe_get(row, "completed_at")),
            duration_ms=safe_get(row, "duration_ms"),
            error_message=safe_get(row, "error_message"),
            execution_context=load_context(safe_get(row, "execution_context")),
        )

    def to_database_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "migration_id": self.migration_id,
            "database_id": self.database_id,
            "environment": self.environment,
            "status": self.status.value,
            "started_at": format_timestamp(self.started_at),
            "completed_at": format_timestamp(self.completed_at),
            "duration_ms": self.duration_ms,
            "executor": self.executor,
            "execution_mode": self.mode.value,
            "error_message": self.error_message,
            "execution_context": dump_context(self.execution_context),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "migrationId": self.migration_id,
            "databaseId": self.database_id,
            "environment": self.environment,
            "status": self.status.value,
            "executor": self.executor,
            "mode": self.mode.value,
            "startedAt": _iso(self.started_at),
            "completedAt": _iso(self.completed_at),
            "durationMs": self.duration_ms,
            "errorMessage": self.error_message,
            "executionContext": self.execution_context,
        }


@dataclass
class MigrationLock:
    """Time-boxed advisory lock on a database."""

    database_id: str
    locked_by: str
    locked_at: datetime
    expires_at: datetime
    lock_reason: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at < now

    @classmethod
    def from_database_row(cls, row: dict[str, Any]) -> "MigrationLock":
        return cls(
            database_id=row["database_id"],
            locked_by=row["locked_by"],
            locked_at=parse_timestamp(row["locked_at"]),
            expires_at=parse_timestamp(row["expires_at"]),
            lock_reason=safe_get(row, "lock_reason"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "databaseId": self.database_id,
            "lockedBy": self.locked_by,
            "lockedAt": _iso(self.locked_at),
            "expiresAt": _iso(self.expires_at),
            "lockReason": self.lock_reason,
        }


@dataclass
class SchemaSnapshot:
    """Ledger index row of a captured schema."""

    snapshot_id: str
    database_id: str
    environment: str
    schema_hash: str
    captured_by: str
    capture_type: CaptureType = CaptureType.AUTO
    captured_at: datetime | None = None
    triggering_migration_id: str | None = None
    backup_document_id: str | None = None
    table_count: int = 0
    view_count: int = 0
    index_count: int = 0
    routine_count: int = 0
    schema_definition: dict[str, Any] | None = None
    id: int | None = None

    @classmethod
    def from_database_row(cls, row: dict[str, Any]) -> "SchemaSnapshot":
        definition = safe_get(row, "schema_definition")
        return cls(
            id=safe_get(row, "id"),
            snapshot_id=row["snapshot_id"],
            database_id=row["database_id"],
            environment=row["environment"],
            schema_hash=row["schema_hash"],
            captured_by=row["captured_by"],
            capture_type=CaptureType(row["capture_type"]),
            captured_at=parse_timestamp(safe_get(row, "captured_at")),
            triggering_migration_id=safe_get(row, "triggering_migration_id"),
            backup_document_id=safe_get(row, "backup_document_id"),
            table_count=safe_get(row, "table_count") or 0,
            view_count=safe_get(row, "view_count") or 0,
            index_count=safe_get(row, "index_count") or 0,
            routine_count=safe_get(row, "routine_count") or 0,
            schema_definition=load_context(definition) if definition else None,
        )

    def to_database_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "snapshot_id": self.snapshot_id,
            "database_id": self.database_id,
            "environment": self.environment,
            "captured_at": format_timestamp(self.captured_at),
            "triggering_migration_id": self.triggering_migration_id,
            "capture_type": self.capture_type.value,
            "schema_hash": self.schema_hash,
            "backup_document_id": self.backup_document_id,
            "table_count": self.table_count,
            "view_count": self.view_count,
            "index_count": self.index_count,
            "routine_count": self.routine_count,
            "captured_by": self.captured_by,
            "schema_definition": (
                canonical_json(self.schema_definition)
                if self.schema_definition is not None
                else None
            ),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "snapshotId": self.snapshot_id,
            "databaseId": self.database_id,
            "environment": self.environment,
            "capturedAt": _iso(self.captured_at),
            "schemaHash": self.schema_hash,
            "triggeringMigrationId": self.triggering_migration_id,
            "captureType": self.capture_type.value,
            "capturedBy": self.captured_by,
            "backupDocumentId": self.backup_document_id,
            "tableCount": self.table_count,
            "viewCount": self.view_count,
            "indexCount": self.index_count,
            "routineCount": self.routine_count,
        }


@dataclass
class ChangeEvent:
    """Append-only audit entry for a migration state change."""

    migration_id: str
    database_id: str
    event_type: ChangeEventType
    environment: str
    context: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime | None = None
    id: int | None = None

    @classmethod
    def from_database_row(cls, row: dict[str, Any]) -> "ChangeEvent":
        return cls(
            id=safe_get(row, "id"),
            migration_id=row["migration_id"],
            database_id=row["database_id"],
            event_type=ChangeEventType(row["event_type"]),
            environment=row["environment"],
            context=load_context(safe_get(row, "context")),
            timestamp=parse_timestamp(safe_get(row, "created_at")),
        )

    def to_database_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "migration_id": self.migration_id,
            "database_id": self.database_id,
            "event_type": self.event_type.value,
            "environment": self.environment,
            "context": dump_context(self.context),
            "created_at": format_timestamp(self.timestamp),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "migrationId": self.migration_id,
            "databaseId": self.database_id,
            "eventType": self.event_type.value,
            "environment": self.environment,
            "context": self.context,
            "timestamp": _iso(self.timestamp),
        }


@dataclass
class DatabaseInventory:
    """A managed database known to the ledger."""

    database_id: str
    database_name: str
    database_type: str = "SQL"
    connection_secret_name: str | None = None
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None
    id: int | None = None

    @classmethod
    def from_database_row(cls, row: dict[str, Any]) -> "DatabaseInventory":
        return cls(
            id=safe_get(row, "id"),
            database_id=row["database_id"],
            database_name=row["database_name"],
            database_type=safe_get(row, "database_type") or "SQL",
            connection_secret_name=safe_get(row, "connection_secret_name"),
            is_active=bool(safe_get(row, "is_active")),
            created_at=parse_timestamp(safe_get(row, "created_at")),
            updated_at=parse_timestamp(safe_get(row, "updated_at")),
        )

    def to_database_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "database_id": self.database_id,
            "database_name": self.database_name,
            "database_type": self.database_type,
            "connection_secret_name": self.connection_secret_name,
            "is_active": int(self.is_active),
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "databaseId": self.database_id,
            "databaseName": self.database_name,
            "databaseType": self.database_type,
            "connectionSecretName": self.connection_secret_name,
            "isActive": self.is_active,
            "createdAt": _iso(self.created_at),
        }


@dataclass
class IntegrityIssue:
    """A single verifier finding."""

    type: IssueType
    severity: IssueSeverity
    description: str
    recommendation: str
    migration_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "type": self.type.value,
            "severity": self.severity.value,
            "description": self.description,
            "recommendation": self.recommendation,
        }
        if self.migration_id:
            data["migrationId"] = self.migration_id
        return data
