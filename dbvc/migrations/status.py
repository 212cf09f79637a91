"""
Migration Status Reporter

Read-only aggregation of the registry, the applied-status table and the
execution history into a per-database status matrix.
"""

import logging
from typing import Any

from ..config import Environment, normalize_environment
from ..database.models import ExecutionStatus
from ..repositories import (
    AppliedStatusRepository,
    ExecutionRepository,
    InventoryRepository,
    MigrationRepository,
)
from .requests import StatusRequest, validate_request

logger = logging.getLogger(__name__)

APPLIED = "success"
NOT_APPLIED = "not-applied"


class StatusReporter:
    """Builds status reports. Performs no writes."""

    def __init__(
        self,
        inventory: InventoryRepository,
        migrations: MigrationRepository,
        applied: AppliedStatusRepository,
        executions: ExecutionRepository,
    ) -> None:
        self.inventory = inventory
        self.migrations = migrations
        self.applied = applied
        self.executions = executions

    def get_migration_status(
        self, database_id: str | None = None, environment: str | None = None
    ) -> dict[str, Any]:
        """
        Report migration status for one or all databases.

        Databases are those in the inventory plus any database id with
        registered migrations. With ``environment`` the applied/pending
        counts refer to that environment; without it a migration counts
        as applied when it is applied anywhere.

        Returns:
            ``{databases: [...]}``
        """
        request = validate_request(StatusRequest, database_id=database_id, environment=environment)
        env = request.environment.value if request.environment else None

        names = {db.database_id: db.database_name for db in self.inventory.find_active()}
        database_ids = sorted(set(names) | set(self.migrations.list_database_ids()))
        if request.database_id:
            database_ids = [request.database_id]

        databases = [
            self._database_status(db_id, names.get(db_id, db_id), env) for db_id in database_ids
        ]
        return {"databases": databases}

    def _applied_matrix(self, database_id: str) -> dict[str, dict[str, bool]]:
        """migration id -> {dev, prod} applied flags, with legacy staging rows read as dev."""
        matrix: dict[str, dict[str, bool]] = {}
        for status in self.applied.find_by_database(database_id):
            env = normalize_environment(status.environment)
            flags = matrix.setdefault(
                status.migration_id, {Environment.DEV.value: False, Environment.PROD.value: False}
            )
            flags[env] = flags[env] or status.is_applied
        return matrix

    def _database_status(
        self, database_id: str, database_name: str, environment: str | None
    ) -> dict[str, Any]:
        migrations = self.migrations.find_by_database(database_id)
        matrix = self._applied_matrix(database_id)

        entries = []
        applied_count = 0
        last_migration_at = None

        for migration in migrations:
            flags = matrix.get(
                migration.migration_id,
                {Environment.DEV.value: False, Environment.PROD.value: False},
            )
            is_applied = flags[environment] if environment else any(flags.values())
            if is_applied:
                applied_count += 1

            last = self.executions.find_latest(migration.migration_id, database_id, environment)
            if last and last.status == ExecutionStatus.SUCCESS and last.completed_at:
                if last_migration_at is None or last.completed_at > last_migration_at:
                    last_migration_at = last.completed_at

            entries.append(
                {
                    "migrationId": migration.migration_id,
                    "description": migration.description,
                    "author": migration.author,
                    "createdAt": migration.created_at.isoformat() if migration.created_at else None,
                    "isReversible": migration.is_reversible,
                    "status": {env: APPLIED if applied else NOT_APPLIED for env, applied in flags.items()},
                    "lastExecution": (
                        {
                            "status": last.status.value,
                            "mode": last.mode.value,
                            "environment": last.environment,
                            "executor": last.executor,
                            "completedAt": last.completed_at.isoformat() if last.completed_at else None,
                            "errorMessage": last.error_message,
                        }
                        if last
                        else None
                    ),
                }
            )

        return {
            "databaseId": database_id,
            "databaseName": database_name,
            "totalMigrations": len(migrations),
            "appliedMigrations": applied_count,
            "pendingMigrations": len(migrations) - applied_count,
            "lastMigrationAt": last_migration_at.isoformat() if last_migration_at else None,
            "migrations": entries,
        }
