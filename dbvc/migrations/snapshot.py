"""
Schema Snapshotter

Introspects a live SQLite schema into a deterministic structure, hashes
its canonical JSON form and records the snapshot. The ledger's own tables
are never part of a captured schema.
"""

import logging
from datetime import datetime
from typing import Any, Callable

from ..database.connection import DatabaseConnection
from ..database.document_store import ENTITY_SCHEMA_SNAPSHOT
from ..database.models import CaptureType, SchemaSnapshot, utc_now
from ..database.replication import BackupReplicator
from ..database.schema import LEDGER_TABLES
from ..database.serialization import canonical_json
from ..database.targets import TargetConnections
from ..repositories import SnapshotRepository
from .identifiers import calculate_checksum, generate_snapshot_id
from .requests import SnapshotRequest, validate_request

logger = logging.getLogger(__name__)


def _is_user_object(name: str, table: str | None = None) -> bool:
    """False for SQLite internals and for anything belonging to the ledger."""
    for candidate in (name, table):
        if candidate and (candidate.startswith("sqlite_") or candidate in LEDGER_TABLES):
            return False
    return True


class SchemaIntrospector:
    """Reads tables, views, indexes, triggers and foreign keys of one database."""

    def __init__(self, db: DatabaseConnection) -> None:
        self.db = db

    def capture(self) -> dict[str, Any]:
        """
        Capture the schema definition.

        Every list is sorted by name so two captures of an unchanged
        schema serialize to identical text.
        """
        objects = self.db.fetch_all(
            "SELECT type, name, tbl_name, sql FROM sqlite_master ORDER BY type, name"
        )
        tables = []
        views = []
        routines = []
        indexes = []

        for obj in objects:
            obj_type, name, table_name = obj["type"], obj["name"], obj["tbl_name"]
            if obj_type == "table" and _is_user_object(name):
                tables.append(self._describe_table(name, obj["sql"] or ""))
                indexes.extend(self._describe_indexes(name))
            elif obj_type == "view" and _is_user_object(name):
                views.append({"name": name, "definition": (obj["sql"] or "").strip()})
            elif obj_type == "trigger" and _is_user_object(name, table_name):
                routines.append(
                    {
                        "name": name,
                        "type": "TRIGGER",
                        "table": table_name,
                        "definition": (obj["sql"] or "").strip(),
                    }
                )

        return {
            "tables": sorted(tables, key=lambda t: t["name"]),
            "views": sorted(views, key=lambda v: v["name"]),
            "indexes": sorted(indexes, key=lambda i: (i["table"], i["name"])),
            "storedProcedures": sorted(routines, key=lambda r: r["name"]),
        }

    def _describe_table(self, table: str, create_sql: str) -> dict[str, Any]:
        column_rows = self.db.fetch_all(
            "SELECT cid, name, type, \"notnull\", dflt_value, pk FROM pragma_table_info(?) ORDER BY cid",
            (table,),
        )
        pk_columns = [row for row in column_rows if row["pk"]]
        rowid_alias = (
            len(pk_columns) == 1 and (pk_columns[0]["type"] or "").upper() == "INTEGER"
        )

        columns = []
        for row in column_rows:
            is_pk = bool(row["pk"])
            columns.append(
                {
                    "name": row["name"],
                    "ordinal": row["cid"],
                    "dataType": (row["type"] or "").upper(),
                    "isNullable": not row["notnull"] and not (is_pk and rowid_alias),
                    "defaultValue": row["dflt_value"],
                    "isPrimaryKey": is_pk,
                    "primaryKeyOrdinal": row["pk"] or None,
                    "isIdentity": is_pk and rowid_alias,
                }
            )

        fk_rows = self.db.fetch_all(
            "SELECT id, seq, \"table\", \"from\", \"to\", on_update, on_delete "
            "FROM pragma_foreign_key_list(?) ORDER BY id, seq",
            (table,),
        )
        foreign_keys = [
            {
                "column": row["from"],
                "referencesTable": row["table"],
                "referencesColumn": row["to"],
                "onUpdate": row["on_update"],
                "onDelete": row["on_delete"],
            }
            for row in fk_rows
        ]

        return {
            "name": table,
            "columns": columns,
            "foreignKeys": foreign_keys,
            "withoutRowid": "WITHOUT ROWID" in create_sql.upper(),
        }

    def _describe_indexes(self, table: str) -> list[dict[str, Any]]:
        index_rows = self.db.fetch_all(
            "SELECT name, \"unique\", origin, partial FROM pragma_index_list(?)",
            (table,),
        )
        indexes = []
        for index in index_rows:
            column_rows = self.db.fetch_all(
                "SELECT seqno, name FROM pragma_index_info(?) ORDER BY seqno",
                (index["name"],),
            )
            indexes.append(
                {
                    "name": index["name"],
                    "table": table,
                    "columns": [row["name"] for row in column_rows],
                    "isUnique": bool(index["unique"]),
                    "origin": index["origin"],
                    "isPartial": bool(index["partial"]),
                }
            )
        return indexes


def hash_schema(definition: dict[str, Any]) -> str:
    return calculate_checksum(canonical_json(definition))


class SchemaSnapshotter:
    """Captures and records schema snapshots."""

    def __init__(
        self,
        repository: SnapshotRepository,
        targets: TargetConnections,
        replicator: BackupReplicator | None = None,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.targets = targets
        self.replicator = replicator
        self.now = now

    def compute_schema(self, database_id: str, environment: str) -> tuple[dict[str, Any], str]:
        """Introspect the live target schema. Returns the definition and its hash."""
        target = self.targets.resolve(database_id, environment)
        definition = SchemaIntrospector(target).capture()
        return definition, hash_schema(definition)

    def capture_schema_snapshot(
        self,
        database_id: str,
        environment: str,
        capture_type: CaptureType | str = CaptureType.AUTO,
        triggering_migration_id: str | None = None,
        captured_by: str | None = None,
    ) -> dict[str, Any]:
        """
        Capture the live schema and record it.

        Returns:
            ``{snapshotId, schemaHash, tableCount, backupDocumentId}``

        Raises:
            ValidationError: If the request is malformed
        """
        request = validate_request(
            SnapshotRequest,
            database_id=database_id,
            environment=environment,
            capture_type=capture_type,
            triggering_migration_id=triggering_migration_id,
            captured_by=captured_by,
        )
        env = request.environment.value

        definition, schema_hash = self.compute_schema(request.database_id, env)
        captured_at = self.now()
        snapshot_id = generate_snapshot_id(request.database_id, captured_at)

        snapshot = SchemaSnapshot(
            snapshot_id=snapshot_id,
            database_id=request.database_id,
            environment=env,
            schema_hash=schema_hash,
            captured_by=request.captured_by,
            capture_type=request.capture_type,
            captured_at=captured_at,
            triggering_migration_id=request.triggering_migration_id,
            backup_document_id=snapshot_id,
            table_count=len(definition["tables"]),
            view_count=len(definition["views"]),
            index_count=len(definition["indexes"]),
            routine_count=len(definition["storedProcedures"]),
            # Without a mirror the ledger row keeps the full definition
            schema_definition=None if self.replicator else definition,
        )
        self.repository.create(snapshot)

        if self.replicator is not None:
            document = snapshot.to_dict()
            document.update({"id": snapshot_id, "schemaDefinition": definition})
            self.replicator.submit(ENTITY_SCHEMA_SNAPSHOT, document)

        logger.info(
            f"Captured {request.capture_type.value} snapshot {snapshot_id} of "
            f"{request.database_id}/{env}: {snapshot.table_count} tables, hash {schema_hash[:12]}"
        )
        return {
            "snapshotId": snapshot_id,
            "schemaHash": schema_hash,
            "tableCount": snapshot.table_count,
            "backupDocumentId": snapshot_id,
        }

    def get_latest_snapshot(self, database_id: str, environment: str) -> SchemaSnapshot | None:
        return self.repository.find_latest(database_id, environment)

    def list_snapshots(
        self, database_id: str, environment: str | None = None, limit: int = 50
    ) -> list[SchemaSnapshot]:
        return self.repository.find_by_database(database_id, environment, limit)
