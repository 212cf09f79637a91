"""
Tests for the ledger repositories: registry, execution history, applied
status, inventory and snapshots.
"""

from datetime import datetime, timedelta, timezone

import pytest

from dbvc.database.models import (
    AppliedStatus,
    ExecutionRecord,
    ExecutionStatus,
    Migration,
    SchemaSnapshot,
)
from dbvc.exceptions import DatabaseError
from dbvc.repositories import (
    AppliedStatusRepository,
    ExecutionRepository,
    InventoryRepository,
    MigrationRepository,
    SnapshotRepository,
)

START = datetime(2024, 1, 15, 10, 30, 0, tzinfo=timezone.utc)


def register(ledger, migration_id, database_id="app"):
    return MigrationRepository(ledger).create(
        Migration(
            migration_id=migration_id,
            database_id=database_id,
            description=migration_id,
            up_script="SELECT 1;",
            checksum="0" * 64,
            author="alice",
            created_at=START,
        )
    )


class TestMigrationRepository:
    def test_find_by_database_is_ordered_by_id(self, ledger):
        register(ledger, "20240102_000000_b")
        register(ledger, "20240101_000000_a")
        register(ledger, "20240101_000000_other", database_id="crm")

        found = MigrationRepository(ledger).find_by_database("app")

        assert [m.migration_id for m in found] == ["20240101_000000_a", "20240102_000000_b"]

    def test_migration_id_is_unique_per_database(self, ledger):
        register(ledger, "m1")
        register(ledger, "m1", database_id="crm")

        with pytest.raises(DatabaseError):
            register(ledger, "m1")

    def test_find_pending_per_environment(self, ledger):
        register(ledger, "m1")
        register(ledger, "m2")
        register(ledger, "m3")
        applied = AppliedStatusRepository(ledger)
        applied.upsert(AppliedStatus("m1", "app", "dev", is_applied=True, applied_at=START))
        applied.upsert(AppliedStatus("m2", "app", "dev", is_applied=False))

        repository = MigrationRepository(ledger)

        assert [m.migration_id for m in repository.find_pending("app", "dev")] == ["m2", "m3"]
        assert [m.migration_id for m in repository.find_pending("app", "prod")] == ["m1", "m2", "m3"]

    def test_list_database_ids(self, ledger):
        register(ledger, "m1", database_id="crm")
        register(ledger, "m1", database_id="app")

        assert MigrationRepository(ledger).list_database_ids() == ["app", "crm"]


class TestExecutionRepository:
    def test_complete_closes_out_running_record(self, ledger):
        register(ledger, "m1")
        repository = ExecutionRepository(ledger)
        record = repository.create(
            ExecutionRecord("m1", "app", "dev", "alice", started_at=START)
        )

        repository.complete(
            record.id, ExecutionStatus.FAILED, START + timedelta(seconds=1), 1000, "boom"
        )

        stored = repository.find_by_id(record.id)
        assert stored.status == ExecutionStatus.FAILED
        assert stored.duration_ms == 1000
        assert stored.error_message == "boom"
        assert stored.completed_at == START + timedelta(seconds=1)

    def test_complete_unknown_record_only_warns(self, ledger, caplog):
        ExecutionRepository(ledger).complete(999, ExecutionStatus.SUCCESS, START, 0)

        assert "Execution record 999 not found" in caplog.text

    def test_history_filters_and_orders_newest_first(self, ledger):
        register(ledger, "m1")
        register(ledger, "m2")
        repository = ExecutionRepository(ledger)
        for migration_id, environment in [("m1", "dev"), ("m2", "dev"), ("m1", "prod")]:
            repository.create(
                ExecutionRecord(migration_id, "app", environment, "alice", started_at=START)
            )

        assert [r.migration_id for r in repository.find_history("app")] == ["m1", "m2", "m1"]
        assert [r.environment for r in repository.find_history("app", migration_id="m1")] == [
            "prod",
            "dev",
        ]
        assert len(repository.find_history("app", environment="dev", limit=1)) == 1
        assert repository.find_latest("m2", "app").migration_id == "m2"
        assert repository.find_latest("m2", "app", "prod") is None

    def test_execution_requires_registered_migration(self, ledger):
        with pytest.raises(DatabaseError):
            ExecutionRepository(ledger).create(
                ExecutionRecord("ghost", "app", "dev", "alice", started_at=START)
            )


class TestAppliedStatusRepository:
    def test_upsert_overwrites_existing_row(self, ledger):
        register(ledger, "m1")
        repository = AppliedStatusRepository(ledger)

        repository.upsert(AppliedStatus("m1", "app", "dev", is_applied=True, applied_by="alice"))
        repository.upsert(AppliedStatus("m1", "app", "dev", is_applied=False))

        assert repository.count() == 1
        assert repository.is_applied("m1", "app", "dev") is False
        assert repository.find_status("m1", "app", "dev").applied_by is None

    def test_applied_ids(self, ledger):
        register(ledger, "m1")
        register(ledger, "m2")
        repository = AppliedStatusRepository(ledger)
        repository.upsert(AppliedStatus("m1", "app", "dev", is_applied=True))
        repository.upsert(AppliedStatus("m2", "app", "prod", is_applied=True))

        assert repository.applied_ids("app", "dev") == {"m1"}
        assert len(repository.find_by_database("app")) == 2

    def test_environment_values_are_constrained(self, ledger):
        register(ledger, "m1")

        with pytest.raises(DatabaseError):
            AppliedStatusRepository(ledger).upsert(AppliedStatus("m1", "app", "qa"))


class TestInventoryRepository:
    def test_register_and_reregister(self, ledger):
        repository = InventoryRepository(ledger)

        first = repository.register("crm", "CRM", "CRM-SECRET")
        second = repository.register("crm", "Customer CRM")

        assert first.database_id == "crm"
        assert repository.count() == 1
        assert second.database_name == "Customer CRM"
        assert second.connection_secret_name is None
        assert repository.secret_name_for("missing") is None

    def test_find_active_is_sorted_by_name(self, ledger):
        repository = InventoryRepository(ledger)
        repository.register("b", "Beta")
        repository.register("a", "Alpha")
        ledger.execute("UPDATE db_inventory SET is_active = 0 WHERE database_id = 'b'")

        assert [d.database_id for d in repository.find_active()] == ["a"]


class TestSnapshotRepository:
    def snapshot(self, snapshot_id, captured_at, environment="dev"):
        return SchemaSnapshot(
            snapshot_id=snapshot_id,
            database_id="app",
            environment=environment,
            schema_hash="f" * 64,
            captured_by="alice",
            captured_at=captured_at,
        )

    def test_latest_is_by_capture_time(self, ledger):
        repository = SnapshotRepository(ledger)
        repository.create(self.snapshot("s2", START + timedelta(minutes=5)))
        repository.create(self.snapshot("s1", START))
        repository.create(self.snapshot("s3", START + timedelta(minutes=9), environment="prod"))

        assert repository.find_latest("app", "dev").snapshot_id == "s2"
        assert [s.snapshot_id for s in repository.find_by_database("app")] == ["s3", "s2", "s1"]
        assert [s.snapshot_id for s in repository.find_by_database("app", "dev", limit=1)] == ["s2"]
        assert repository.find_by_snapshot_id("s1").captured_at == START
        assert repository.find_latest("crm", "dev") is None
