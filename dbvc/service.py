"""
Migration Service

Composition root of the version-control engine. Builds every component
around one ledger connection, a target resolver and the optional backup
mirror, and exposes the engine's operations behind an explicit
``connect()``/``close()`` lifecycle.
"""

import logging
from datetime import datetime
from typing import Any, Callable

from .config import (
    DbvcConfig,
    EnvironmentSecretProvider,
    SecretProviderInterface,
    normalize_environment,
)
from .database.connection import DatabaseConnection
from .database.document_store import DocumentStore, FileDocumentStore
from .database.models import (
    CaptureType,
    ChangeEvent,
    DatabaseInventory,
    ExecutionRecord,
    Migration,
    MigrationLock,
    SchemaSnapshot,
    utc_now,
)
from .database.replication import BackupReplicator
from .database.schema import ensure_ledger_schema, get_ledger_schema_version
from .database.targets import TargetConnections
from .exceptions import DatabaseConnectionError, DbvcError, ValidationError
from .migrations.events import ChangeEventRecorder
from .migrations.lock_manager import LockManager
from .migrations.registry import MigrationRegistry
from .migrations.runner import MigrationRunner
from .migrations.snapshot import SchemaSnapshotter
from .migrations.status import StatusReporter
from .migrations.verifier import IntegrityVerifier
from .repositories import (
    AppliedStatusRepository,
    ChangeEventRepository,
    ExecutionRepository,
    InventoryRepository,
    MigrationRepository,
    SnapshotRepository,
)

logger = logging.getLogger(__name__)


class MigrationService:
    """
    Database version control engine.

    Nothing touches a store until ``connect()``. Whether a backup mirror
    exists is decided here, once: either a document store is passed in or
    configured, or mirroring is off for the lifetime of the service.
    A closed service cannot be reopened.
    """

    def __init__(
        self,
        config: DbvcConfig | None = None,
        ledger: DatabaseConnection | None = None,
        document_store: DocumentStore | None = None,
        secret_provider: SecretProviderInterface | None = None,
        progress_callback: Callable[[int, int, str], None] | None = None,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config or DbvcConfig()
        self.ledger = ledger or DatabaseConnection(
            self.config.ledger.url,
            max_connections=self.config.ledger.max_connections,
            connection_timeout=self.config.ledger.connection_timeout,
        )

        if document_store is None and self.config.document_store.enabled:
            document_store = FileDocumentStore(self.config.document_store.path)
        self.document_store = document_store

        execution = self.config.execution
        self.replicator = (
            BackupReplicator(
                document_store,
                retry_attempts=execution.retry_attempts,
                retry_delay_ms=execution.retry_delay_ms,
            )
            if document_store is not None
            else None
        )

        # Repositories
        self.migration_repository = MigrationRepository(self.ledger)
        self.execution_repository = ExecutionRepository(self.ledger)
        self.applied_repository = AppliedStatusRepository(self.ledger)
        self.inventory_repository = InventoryRepository(self.ledger)
        self.snapshot_repository = SnapshotRepository(self.ledger)
        self.event_repository = ChangeEventRepository(self.ledger)

        self.targets = TargetConnections(
            self.ledger,
            self.config,
            secret_provider or EnvironmentSecretProvider(),
            secret_name_for=self.inventory_repository.secret_name_for,
        )

        # Engine components
        self.events = ChangeEventRecorder(self.event_repository, self.replicator, now)
        self.registry = MigrationRegistry(
            self.migration_repository, self.replicator, self.config.naming, now
        )
        self.lock_manager = LockManager(self.ledger, execution.lock_timeout_minutes, now)
        self.snapshotter = SchemaSnapshotter(
            self.snapshot_repository, self.targets, self.replicator, now
        )
        self.verifier = IntegrityVerifier(
            self.migration_repository, self.lock_manager, self.snapshotter
        )
        self.runner = MigrationRunner(
            self.migration_repository,
            self.execution_repository,
            self.applied_repository,
            self.lock_manager,
            self.targets,
            self.events,
            execution,
            progress_callback=progress_callback,
            now=now,
        )
        self.status_reporter = StatusReporter(
            self.inventory_repository,
            self.migration_repository,
            self.applied_repository,
            self.execution_repository,
        )

        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> "MigrationService":
        """Open the ledger and create its tables if needed."""
        if self._closed:
            raise DatabaseConnectionError("MigrationService has been closed")
        if not self.ledger.is_connected:
            self.ledger.connect()
            ensure_ledger_schema(self.ledger)
        return self

    def close(self) -> None:
        """Drain the mirror queue, then close target and ledger connections."""
        if self._closed:
            return
        self._closed = True
        if self.replicator is not None:
            self.replicator.close(wait_for_pending=True)
        self.targets.close()
        self.ledger.close()
        logger.info("MigrationService closed")

    def __enter__(self) -> "MigrationService":
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def create_migration(
        self,
        name: str,
        database_id: str,
        author: str,
        description: str | None = None,
        up_script: str | None = None,
        down_script: str | None = None,
        tags: list[str] | None = None,
        depends_on: list[str] | None = None,
    ) -> dict[str, Any]:
        return self.registry.create_migration(
            name, database_id, author, description, up_script, down_script, tags, depends_on
        )

    def get_migration(self, migration_id: str, database_id: str) -> Migration | None:
        return self.registry.get_migration(migration_id, database_id)

    def list_migrations(self, database_id: str) -> list[Migration]:
        return self.registry.list_migrations(database_id)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run_migrations(
        self,
        database_id: str,
        environment: str,
        executor: str,
        target_migration_id: str | None = None,
        dry_run: bool = False,
        execution_context: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return self.runner.run_migrations(
            database_id, environment, executor, target_migration_id, dry_run, execution_context
        )

    def rollback_migration(
        self,
        migration_id: str,
        database_id: str,
        environment: str,
        executor: str,
        execution_context: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return self.runner.rollback_migration(
            migration_id, database_id, environment, executor, execution_context
        )

    # ------------------------------------------------------------------
    # Reporting, snapshots and integrity
    # ------------------------------------------------------------------

    def get_migration_status(
        self, database_id: str | None = None, environment: str | None = None
    ) -> dict[str, Any]:
        return self.status_reporter.get_migration_status(database_id, environment)

    def capture_schema_snapshot(
        self,
        database_id: str,
        environment: str,
        capture_type: CaptureType | str = CaptureType.AUTO,
        triggering_migration_id: str | None = None,
        captured_by: str | None = None,
    ) -> dict[str, Any]:
        return self.snapshotter.capture_schema_snapshot(
            database_id, environment, capture_type, triggering_migration_id, captured_by
        )

    def verify_integrity(
        self, database_id: str, environment: str, fix_drift: bool = False
    ) -> dict[str, Any]:
        return self.verifier.verify_integrity(database_id, environment, fix_drift)

    def get_latest_snapshot(self, database_id: str, environment: str) -> SchemaSnapshot | None:
        return self.snapshotter.get_latest_snapshot(database_id, normalize_environment(environment))

    def list_snapshots(
        self, database_id: str, environment: str | None = None, limit: int = 50
    ) -> list[SchemaSnapshot]:
        env = normalize_environment(environment) if environment else None
        return self.snapshotter.list_snapshots(database_id, env, limit)

    def get_execution_history(
        self,
        database_id: str,
        environment: str | None = None,
        migration_id: str | None = None,
        limit: int = 50,
    ) -> list[ExecutionRecord]:
        env = normalize_environment(environment) if environment else None
        return self.execution_repository.find_history(database_id, env, migration_id, limit)

    def get_change_events(
        self, database_id: str, migration_id: str | None = None, limit: int = 100
    ) -> list[ChangeEvent]:
        return self.event_repository.find_by_database(database_id, migration_id, limit)

    def get_active_lock(self, database_id: str) -> MigrationLock | None:
        return self.lock_manager.get_active_lock(database_id)

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    def register_database(
        self,
        database_id: str,
        database_name: str,
        connection_secret_name: str | None = None,
    ) -> DatabaseInventory:
        """Add a database to the inventory, or refresh an existing entry."""
        if not database_id or not database_id.strip():
            raise ValidationError("database_id is required", field="database_id")
        if not database_name or not database_name.strip():
            raise ValidationError("database_name is required", field="database_name")
        return self.inventory_repository.register(
            database_id.strip(), database_name.strip(), connection_secret_name
        )

    def list_databases(self) -> list[DatabaseInventory]:
        return self.inventory_repository.find_active()

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def health(self) -> dict[str, Any]:
        """Report ledger reachability, mirror configuration and backlog."""
        ledger: dict[str, Any] = {"connected": self.ledger.is_connected}
        healthy = False
        migration_count = None
        if self.ledger.is_connected:
            try:
                self.ledger.fetch_one("SELECT 1")
                ledger["schemaVersion"] = get_ledger_schema_version(self.ledger)
                migration_count = self.migration_repository.count()
                healthy = True
            except DbvcError as e:
                ledger["error"] = str(e)

        document_store: dict[str, Any] = {"configured": self.document_store is not None}
        if self.document_store is not None:
            document_store["healthy"] = self.document_store.health_check()

        return {
            "status": "healthy" if healthy else "unhealthy",
            "ledger": ledger,
            "documentStore": document_store,
            "replication": self.replicator.get_stats() if self.replicator else None,
            "migrationCount": migration_count,
        }
