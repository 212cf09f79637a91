"""
Inventory Repository
Registered databases managed by the ledger.
"""

import logging
from typing import Any

from ..database.models import DatabaseInventory, format_timestamp, utc_now
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class InventoryRepository(BaseRepository[DatabaseInventory]):
    def get_table_name(self) -> str:
        return "db_inventory"

    def to_model(self, row: dict[str, Any]) -> DatabaseInventory:
        return DatabaseInventory.from_database_row(row)

    def to_database_dict(self, model: DatabaseInventory) -> dict[str, Any]:
        return model.to_database_dict()

    def register(
        self,
        database_id: str,
        database_name: str,
        connection_secret_name: str | None = None,
    ) -> DatabaseInventory:
        """Insert a database or refresh its name and secret, reactivating it."""
        now = format_timestamp(utc_now())
        self.db.execute(
            """
            INSERT INTO db_inventory
                (database_id, database_name, database_type, connection_secret_name,
                 is_active, created_at, updated_at)
            VALUES (?, ?, 'SQL', ?, 1, ?, ?)
            ON CONFLICT (database_id) DO UPDATE SET
                database_name = excluded.database_name,
                connection_secret_name = excluded.connection_secret_name,
                is_active = 1,
                updated_at = excluded.updated_at
            """,
            (database_id, database_name, connection_secret_name, now, now),
        )
        logger.info(f"Registered database {database_id} ({database_name})")
        return self.find_by_database_id(database_id)

    def find_by_database_id(self, database_id: str) -> DatabaseInventory | None:
        found = self.find_by_field("database_id", database_id)
        return found[0] if found else None

    def find_active(self) -> list[DatabaseInventory]:
        return self.execute_custom_query(
            "SELECT * FROM db_inventory WHERE is_active = 1 ORDER BY database_name, database_id"
        )

    def secret_name_for(self, database_id: str) -> str | None:
        inventory = self.find_by_database_id(database_id)
        return inventory.connection_secret_name if inventory else None
