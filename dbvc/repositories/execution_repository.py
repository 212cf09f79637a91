"""
Execution Repositories
Execution history records and the per-environment applied-status table.
"""

import logging
from datetime import datetime
from typing import Any

from ..database.models import (
    AppliedStatus,
    ExecutionRecord,
    ExecutionStatus,
    format_timestamp,
)
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ExecutionRepository(BaseRepository[ExecutionRecord]):
    """Append-and-complete store for execution attempts."""

    def get_table_name(self) -> str:
        return "migration_execution_history"

    def to_model(self, row: dict[str, Any]) -> ExecutionRecord:
        return ExecutionRecord.from_database_row(row)

    def to_database_dict(self, model: ExecutionRecord) -> dict[str, Any]:
        return model.to_database_dict()

    def complete(
        self,
        execution_id: int,
        status: ExecutionStatus,
        completed_at: datetime,
        duration_ms: int,
        error_message: str | None = None,
    ) -> None:
        """Close out a running record with its final status."""
        cursor = self.db.execute(
            """
            UPDATE migration_execution_history
            SET status = ?, completed_at = ?, duration_ms = ?, error_message = ?
            WHERE id = ?
            """,
            (
                status.value,
                format_timestamp(completed_at),
                duration_ms,
                error_message,
                execution_id,
            ),
        )
        if cursor.rowcount == 0:
            logger.warning(f"Execution record {execution_id} not found when completing")

    def find_history(
        self,
        database_id: str,
        environment: str | None = None,
        migration_id: str | None = None,
        limit: int = 50,
    ) -> list[ExecutionRecord]:
        """Most recent execution records first."""
        conditions = ["database_id = ?"]
        params: list[Any] = [database_id]
        if environment:
            conditions.append("environment = ?")
            params.append(environment)
        if migration_id:
            conditions.append("migration_id = ?")
            params.append(migration_id)
        params.append(limit)
        query = (
            "SELECT * FROM migration_execution_history WHERE "
            + " AND ".join(conditions)
            + " ORDER BY id DESC LIMIT ?"
        )
        return self.execute_custom_query(query, tuple(params))

    def find_latest(
        self, migration_id: str, database_id: str, environment: str | None = None
    ) -> ExecutionRecord | None:
        history = self.find_history(database_id, environment, migration_id, limit=1)
        return history[0] if history else None


class AppliedStatusRepository(BaseRepository[AppliedStatus]):
    """One row per ``(migration_id, database_id, environment)`` once first written."""

    def get_table_name(self) -> str:
        return "migration_applied_status"

    def to_model(self, row: dict[str, Any]) -> AppliedStatus:
        return AppliedStatus.from_database_row(row)

    def to_database_dict(self, model: AppliedStatus) -> dict[str, Any]:
        return model.to_database_dict()

    def upsert(self, status: AppliedStatus) -> None:
        """Insert or overwrite the row for the status key."""
        data = status.to_database_dict()
        self.db.execute(
            """
            INSERT INTO migration_applied_status
                (migration_id, database_id, environment, is_applied, applied_at,
                 applied_by, last_execution_id)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (migration_id, database_id, environment) DO UPDATE SET
                is_applied = excluded.is_applied,
                applied_at = excluded.applied_at,
                applied_by = excluded.applied_by,
                last_execution_id = excluded.last_execution_id
            """,
            (
                data["migration_id"],
                data["database_id"],
                data["environment"],
                data["is_applied"],
                data["applied_at"],
                data["applied_by"],
                data["last_execution_id"],
            ),
        )

    def find_status(
        self, migration_id: str, database_id: str, environment: str
    ) -> AppliedStatus | None:
        row = self.db.fetch_one(
            """
            SELECT * FROM migration_applied_status
            WHERE migration_id = ? AND database_id = ? AND environment = ?
            """,
            (migration_id, database_id, environment),
        )
        return self.to_model(dict(row)) if row else None

    def is_applied(self, migration_id: str, database_id: str, environment: str) -> bool:
        status = self.find_status(migration_id, database_id, environment)
        return bool(status and status.is_applied)

    def find_by_database(self, database_id: str) -> list[AppliedStatus]:
        return self.find_by_field("database_id", database_id)

    def applied_ids(self, database_id: str, environment: str) -> set[str]:
        rows = self.db.fetch_all(
            """
            SELECT migration_id FROM migration_applied_status
            WHERE database_id = ? AND environment = ? AND is_applied = 1
            """,
            (database_id, environment),
        )
        return {row["migration_id"] for row in rows}
