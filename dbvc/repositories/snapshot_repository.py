"""
Snapshot Repository
Index rows of captured schema snapshots. Rows are written once, never updated.
"""

import logging
from typing import Any

from ..database.models import SchemaSnapshot
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class SnapshotRepository(BaseRepository[SchemaSnapshot]):
    def get_table_name(self) -> str:
        return "schema_snapshots"

    def to_model(self, row: dict[str, Any]) -> SchemaSnapshot:
        return SchemaSnapshot.from_database_row(row)

    def to_database_dict(self, model: SchemaSnapshot) -> dict[str, Any]:
        return model.to_database_dict()

    def find_by_snapshot_id(self, snapshot_id: str) -> SchemaSnapshot | None:
        found = self.find_by_field("snapshot_id", snapshot_id)
        return found[0] if found else None

    def find_latest(self, database_id: str, environment: str) -> SchemaSnapshot | None:
        found = self.execute_custom_query(
            """
            SELECT * FROM schema_snapshots
            WHERE database_id = ? AND environment = ?
            ORDER BY captured_at DESC, id DESC
            LIMIT 1
            """,
            (database_id, environment),
        )
        return found[0] if found else None

    def find_by_database(
        self, database_id: str, environment: str | None = None, limit: int = 50
    ) -> list[SchemaSnapshot]:
        if environment:
            return self.execute_custom_query(
                """
                SELECT * FROM schema_snapshots
                WHERE database_id = ? AND environment = ?
                ORDER BY captured_at DESC, id DESC LIMIT ?
                """,
                (database_id, environment, limit),
            )
        return self.execute_custom_query(
            """
            SELECT * FROM schema_snapshots
            WHERE database_id = ?
            ORDER BY captured_at DESC, id DESC LIMIT ?
            """,
            (database_id, limit),
        )
