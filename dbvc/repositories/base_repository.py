"""
Base Repository
Provides common functionality for the ledger repositories.
Follows the Repository pattern to encapsulate data access logic.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar

from ..database.connection import DatabaseConnection

logger = logging.getLogger(__name__)
# Generic type for model classes
T = TypeVar("T")

_IDENTIFIER = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


class BaseRepository(ABC, Generic[T]):
    """
    Abstract base repository providing common database operations.
    All ledger repositories inherit from this class to share one interface.
    """

    def __init__(self, db_connection: DatabaseConnection) -> None:
        """
        Initialize base repository.
        Args:
            db_connection: Ledger database connection
        """
        self.db = db_connection

    @abstractmethod
    def get_table_name(self) -> str:
        """Get the database table name for this repository."""
        pass

    @abstractmethod
    def to_model(self, row: dict[str, Any]) -> T:
        """Convert database row to model object."""
        pass

    @abstractmethod
    def to_database_dict(self, model: T) -> dict[str, Any]:
        """Convert model object to database dictionary."""
        pass

    def _is_valid_table_name(self, table_name: str) -> bool:
        """
        Validate table name to prevent SQL injection.
        Only allows alphanumeric characters and underscores.
        """
        return bool(_IDENTIFIER.match(table_name))

    def _table(self) -> str:
        table_name = self.get_table_name()
        if not self._is_valid_table_name(table_name):
            raise ValueError(f"Invalid table name: {table_name}")
        return table_name

    def find_by_id(self, id: int) -> T | None:
        """
        Find entity by ID.
        Args:
            id: Primary key value
        Returns:
            Model object or None if not found
        """
        try:
            row = self.db.fetch_one(f"SELECT * FROM {self._table()} WHERE id = ?", (id,))
            if row:
                return self.to_model(dict(row))
            return None
        except Exception as e:
            logger.error(f"Failed to find {self.get_table_name()} by ID {id}: {e}")
            raise

    def count(self) -> int:
        """Count total number of entities."""
        try:
            result = self.db.fetch_one(f"SELECT COUNT(*) as count FROM {self._table()}")
            return result["count"] if result else 0
        except Exception as e:
            logger.error(f"Failed to count {self.get_table_name()}: {e}")
            raise

    def create(self, model: T) -> T:
        """
        Create new entity.
        Args:
            model: Model object to create
        Returns:
            Created model with ID set
        """
        try:
            db_dict = self.to_database_dict(model)
            # Remove ID if present (will be auto-generated)
            db_dict.pop("id", None)
            columns = list(db_dict.keys())
            placeholders = ", ".join(["?" for _ in columns])
            values = [db_dict[col] for col in columns]
            cols = ", ".join(columns)
            query = f"INSERT INTO {self._table()} ({cols}) VALUES ({placeholders}) RETURNING id"
            # Drain the cursor so the statement completes and releases its write lock
            rows = self.db.execute(query, tuple(values)).fetchall()
            result = rows[0] if rows else None
            if result is None:
                raise RuntimeError(f"Failed to insert into {self.get_table_name()}")
            new_id = result[0]
            created_model = self.find_by_id(new_id)
            if created_model is None:
                raise RuntimeError(
                    f"Failed to retrieve created {self.get_table_name()} ID {new_id}"
                )
            return created_model
        except Exception as e:
            logger.error(f"Failed to create {self.get_table_name()}: {e}")
            raise

    def find_by_field(self, field: str, value: Any) -> list[T]:
        """
        Find entities by specific field value.
        Args:
            field: Field name to search
            value: Value to match
        Returns:
            List of matching model objects
        """
        try:
            # Validate field name to prevent SQL injection
            if not _IDENTIFIER.match(field):
                raise ValueError(f"Invalid field name: {field}")
            query = f"SELECT * FROM {self._table()} WHERE {field} = ? ORDER BY id"
            rows = self.db.fetch_all(query, (value,))
            return [self.to_model(dict(row)) for row in rows]
        except Exception as e:
            logger.error(f"Failed to find {self.get_table_name()} by {field}={value}: {e}")
            raise

    def execute_custom_query(
        self, query: str, params: tuple[Any, ...] | None = None
    ) -> list[T]:
        """Execute custom query and return model objects."""
        try:
            rows = self.db.fetch_all(query, params)
            return [self.to_model(dict(row)) for row in rows]
        except Exception as e:
            logger.error(f"Failed to execute custom query: {e}")
            raise
