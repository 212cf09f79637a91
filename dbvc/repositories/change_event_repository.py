"""
Change Event Repository
Append-only audit log of migration state changes.
"""

import logging
from typing import Any

from ..database.models import ChangeEvent
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ChangeEventRepository(BaseRepository[ChangeEvent]):
    def get_table_name(self) -> str:
        return "migration_change_events"

    def to_model(self, row: dict[str, Any]) -> ChangeEvent:
        return ChangeEvent.from_database_row(row)

    def to_database_dict(self, model: ChangeEvent) -> dict[str, Any]:
        return model.to_database_dict()

    def find_by_database(
        self, database_id: str, migration_id: str | None = None, limit: int = 100
    ) -> list[ChangeEvent]:
        """Most recent events first."""
        if migration_id:
            return self.execute_custom_query(
                """
                SELECT * FROM migration_change_events
                WHERE database_id = ? AND migration_id = ?
                ORDER BY id DESC LIMIT ?
                """,
                (database_id, migration_id, limit),
            )
        return self.execute_custom_query(
            """
            SELECT * FROM migration_change_events
            WHERE database_id = ?
            ORDER BY id DESC LIMIT ?
            """,
            (database_id, limit),
        )
