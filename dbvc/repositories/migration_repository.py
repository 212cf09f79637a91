"""
Migration Repository
Data access for the migration registry table.
"""

import logging
from typing import Any

from ..database.models import Migration
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class MigrationRepository(BaseRepository[Migration]):
    """Registered migrations, keyed by ``(migration_id, database_id)``."""

    def get_table_name(self) -> str:
        return "migration_registry"

    def to_model(self, row: dict[str, Any]) -> Migration:
        return Migration.from_database_row(row)

    def to_database_dict(self, model: Migration) -> dict[str, Any]:
        return model.to_database_dict()

    def find_by_migration_id(self, migration_id: str, database_id: str) -> Migration | None:
        row = self.db.fetch_one(
            "SELECT * FROM migration_registry WHERE migration_id = ? AND database_id = ?",
            (migration_id, database_id),
        )
        return self.to_model(dict(row)) if row else None

    def find_by_database(self, database_id: str) -> list[Migration]:
        """All migrations of a database in ascending id order."""
        return self.execute_custom_query(
            "SELECT * FROM migration_registry WHERE database_id = ? ORDER BY migration_id ASC",
            (database_id,),
        )

    def find_pending(self, database_id: str, environment: str) -> list[Migration]:
        """
        Migrations not applied in an environment, in ascending id order.

        A migration is pending when it has no applied-status row for the
        environment or that row has ``is_applied = 0``.
        """
        return self.execute_custom_query(
            """
            SELECT mr.*
            FROM migration_registry mr
            LEFT JOIN migration_applied_status mas
                ON mr.migration_id = mas.migration_id
                AND mr.database_id = mas.database_id
                AND mas.environment = ?
            WHERE mr.database_id = ?
            AND (mas.is_applied IS NULL OR mas.is_applied = 0)
            ORDER BY mr.migration_id ASC
            """,
            (environment, database_id),
        )

    def list_database_ids(self) -> list[str]:
        rows = self.db.fetch_all(
            "SELECT DISTINCT database_id FROM migration_registry ORDER BY database_id"
        )
        return [row["database_id"] for row in rows]
