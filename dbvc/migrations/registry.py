"""
Migration Registry

Registers migrations in the ledger and mirrors their full content to the
backup document store.
"""

import logging
from datetime import datetime
from typing import Any, Callable

from ..config import NamingConfig
from ..database.document_store import ENTITY_MIGRATION
from ..database.models import Migration, utc_now
from ..database.replication import BackupReplicator
from ..exceptions import DatabaseError, RegistrationError
from ..repositories import MigrationRepository
from .identifiers import calculate_checksum, generate_migration_id, migration_file_path
from .requests import CreateMigrationRequest, validate_request

logger = logging.getLogger(__name__)

UP_TEMPLATE = """-- ============================================================================
-- Migration: {migration_id}
-- Description: {description}
-- Author: {author}
-- Date: {date}
-- ============================================================================

-- UP Migration Script
-- Add your forward migration SQL here

-- Example: CREATE TABLE, ALTER TABLE, INSERT data, etc.

"""

DOWN_TEMPLATE = """-- ============================================================================
-- Rollback: {migration_id}
-- Description: Rollback for {description}
-- ============================================================================

-- DOWN Migration Script
-- Add your rollback SQL here (reverse of UP script)

-- Example: DROP TABLE, ALTER TABLE DROP COLUMN, DELETE data, etc.

"""


class MigrationRegistry:
    """
    Creates and looks up registered migrations.

    The ledger row is authoritative; the mirror document is queued on the
    replicator and may lag or be missing.
    """

    def __init__(
        self,
        repository: MigrationRepository,
        replicator: BackupReplicator | None = None,
        naming: NamingConfig | None = None,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.replicator = replicator
        self.naming = naming or NamingConfig()
        self.now = now

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
        """
        Register a new migration.

        Omitted scripts are replaced by commented templates. An explicitly
        empty ``down_script`` registers an irreversible migration.

        Returns:
            ``{migrationId, filePath, message}``

        Raises:
            ValidationError: If a required field is missing or malformed
            RegistrationError: If the ledger write fails
        """
        request = validate_request(
            CreateMigrationRequest,
            name=name,
            database_id=database_id,
            author=author,
            description=description,
            up_script=up_script,
            down_script=down_script,
            tags=tags or [],
            depends_on=depends_on or [],
        )

        created_at = self.now()
        migration_id = generate_migration_id(request.name, created_at)
        description = (request.description or "").strip() or request.name
        template_values = {
            "migration_id": migration_id,
            "description": description,
            "author": request.author,
            "date": created_at.strftime("%Y-%m-%d"),
        }

        up = request.up_script if request.up_script is not None else UP_TEMPLATE.format(**template_values)
        if request.down_script is None:
            down = DOWN_TEMPLATE.format(**template_values)
        else:
            down = request.down_script if request.down_script.strip() else None

        migration = Migration(
            migration_id=migration_id,
            database_id=request.database_id,
            description=description,
            up_script=up,
            down_script=down,
            checksum=calculate_checksum(up),
            author=request.author,
            created_at=created_at,
            depends_on=list(request.depends_on),
            tags=list(request.tags),
        )

        try:
            stored = self.repository.create(migration)
        except DatabaseError as e:
            if e.constraint:
                raise RegistrationError(
                    f"Migration {migration_id} already exists for {request.database_id}; "
                    "ids have one-second resolution, so retry after a second or use another name",
                    migration_id=migration_id,
                    database_id=request.database_id,
                ) from e
            raise RegistrationError(
                f"Failed to create migration: {e}",
                migration_id=migration_id,
                database_id=request.database_id,
            ) from e

        self._mirror(stored)

        logger.info(f"Registered migration {migration_id} for {request.database_id}")
        return {
            "migrationId": migration_id,
            "filePath": migration_file_path(self.naming.migrations_path, migration_id),
            "message": f"Migration {migration_id} created successfully",
        }

    def _mirror(self, migration: Migration) -> None:
        if self.replicator is None:
            return
        document = migration.to_dict()
        document.update(
            {
                "id": f"{migration.database_id}_{migration.migration_id}",
                "migrationId": migration.migration_id,
                "appliedEnvironments": {},
            }
        )
        self.replicator.submit(ENTITY_MIGRATION, document)

    def get_migration(self, migration_id: str, database_id: str) -> Migration | None:
        return self.repository.find_by_migration_id(migration_id, database_id)

    def list_migrations(self, database_id: str) -> list[Migration]:
        """All migrations of a database, ascending by id."""
        return self.repository.find_by_database(database_id)

    def get_pending_migrations(self, database_id: str, environment: str) -> list[Migration]:
        return self.repository.find_pending(database_id, environment)
