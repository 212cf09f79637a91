"""
Repository layer for the version-control ledger.
"""

from .base_repository import BaseRepository
from .change_event_repository import ChangeEventRepository
from .execution_repository import AppliedStatusRepository, ExecutionRepository
from .inventory_repository import InventoryRepository
from .migration_repository import MigrationRepository
from .snapshot_repository import SnapshotRepository

__all__ = [
    "BaseRepository",
    "MigrationRepository",
    "ExecutionRepository",
    "AppliedStatusRepository",
    "InventoryRepository",
    "SnapshotRepository",
    "ChangeEventRepository",
]
