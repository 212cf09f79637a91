"""
Tests for forward runs: ordering, fail-fast batches, dry runs, targets,
dependencies and lock handling.
"""

from unittest.mock import patch

import pytest

from dbvc.database.models import ChangeEventType, ExecutionMode, ExecutionStatus
from dbvc.exceptions import DatabaseError, LockContentionError, ValidationError

CREATE_USERS = "CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT NOT NULL);"
CREATE_ORDERS = "CREATE TABLE orders (id INTEGER PRIMARY KEY, user_id INTEGER);"
CREATE_AUDIT = "CREATE TABLE audit (id INTEGER PRIMARY KEY);"


def table_names(db):
    rows = db.fetch_all("SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name")
    return [row["name"] for row in rows]


def row_count(db, table):
    return db.fetch_one(f"SELECT COUNT(*) AS n FROM {table}")["n"]


class TestRunMigrations:
    """Forward execution of pending migrations."""

    def test_applies_pending_migrations_in_id_order(self, service, make_migration, target_db):
        first = make_migration(service, "create users", CREATE_USERS)
        second = make_migration(service, "create orders", CREATE_ORDERS)

        result = service.run_migrations("app", "dev", "alice")

        assert result["success"] is True
        assert [m["migrationId"] for m in result["executedMigrations"]] == [first, second]
        assert all(m["status"] == "success" for m in result["executedMigrations"])
        assert result["skippedMigrations"] == []
        assert result["failedMigration"] is None
        assert result["totalDurationMs"] >= 0
        assert {"users", "orders"} <= set(table_names(target_db))

    def test_applied_status_and_history_are_recorded(self, service, make_migration):
        migration_id = make_migration(service, "create users", CREATE_USERS)

        service.run_migrations("app", "dev", "alice")

        status = service.applied_repository.find_status(migration_id, "app", "dev")
        assert status.is_applied is True
        assert status.applied_by == "alice"
        assert status.applied_at is not None

        history = service.get_execution_history("app", "dev")
        assert len(history) == 1
        assert history[0].status == ExecutionStatus.SUCCESS
        assert history[0].mode == ExecutionMode.FORWARD
        assert history[0].completed_at is not None
        assert status.last_execution_id == history[0].id

    def test_second_run_has_nothing_pending(self, service, make_migration):
        make_migration(service, "create users", CREATE_USERS)
        service.run_migrations("app", "dev", "alice")

        result = service.run_migrations("app", "dev", "alice")

        assert result["success"] is True
        assert result["executedMigrations"] == []
        assert len(service.get_execution_history("app")) == 1

    def test_environments_are_tracked_independently(self, service, make_migration):
        migration_id = make_migration(service, "create users", CREATE_USERS)
        service.run_migrations("app", "dev", "alice")

        assert service.applied_repository.is_applied(migration_id, "app", "dev")
        assert not service.applied_repository.is_applied(migration_id, "app", "prod")
        pending = service.registry.get_pending_migrations("app", "prod")
        assert [m.migration_id for m in pending] == [migration_id]

    def test_staging_runs_are_recorded_as_dev(self, service, make_migration):
        migration_id = make_migration(service, "create users", CREATE_USERS)

        service.run_migrations("app", "staging", "alice")

        assert service.applied_repository.is_applied(migration_id, "app", "dev")
        assert service.get_execution_history("app")[0].environment == "dev"

    def test_failure_stops_the_batch(self, service, make_migration, target_db):
        first = make_migration(service, "create users", CREATE_USERS)
        broken = make_migration(service, "broken", "CREATE TABLE broken (id INTEGER PRIMARY KEY); INSERT INTO missing_table VALUES (1);")
        third = make_migration(service, "create audit", CREATE_AUDIT)

        result = service.run_migrations("app", "dev", "alice")

        assert result["success"] is False
        assert result["failedMigration"] == broken
        assert [(m["migrationId"], m["status"]) for m in result["executedMigrations"]] == [
            (first, "success"),
            (broken, "failed"),
        ]
        assert "missing_table" in result["executedMigrations"][1]["error"]
        assert result["skippedMigrations"] == [third]

        tables = table_names(target_db)
        assert "users" in tables
        # The failed script's transaction was rolled back as a whole
        assert "broken" not in tables
        assert "audit" not in tables

        assert not service.applied_repository.is_applied(broken, "app", "dev")
        assert not service.applied_repository.is_applied(third, "app", "dev")
        failed = service.get_execution_history("app", migration_id=broken)[0]
        assert failed.status == ExecutionStatus.FAILED
        assert "missing_table" in failed.error_message
        assert service.get_execution_history("app", migration_id=third) == []

    def test_failed_dependency_reports_dependent_as_skipped(self, service, make_migration):
        m1 = make_migration(service, "broken base", "INSERT INTO nowhere VALUES (1);")
        m2 = make_migration(service, "uses base", CREATE_USERS, depends_on=[m1])

        result = service.run_migrations("app", "dev", "alice")

        assert result["success"] is False
        assert [(m["migrationId"], m["status"]) for m in result["executedMigrations"]] == [
            (m1, "failed")
        ]
        assert result["skippedMigrations"] == [m2]
        assert result["failedMigration"] == m1

    def test_failed_run_can_be_retried_after_fix(self, service, make_migration, target_db):
        make_migration(service, "create users", CREATE_USERS)
        broken = make_migration(service, "broken", "INSERT INTO nowhere VALUES (1);")
        service.run_migrations("app", "dev", "alice")

        target_db.execute("CREATE TABLE nowhere (id INTEGER)")
        result = service.run_migrations("app", "dev", "alice")

        assert result["success"] is True
        assert [m["migrationId"] for m in result["executedMigrations"]] == [broken]
        assert row_count(target_db, "nowhere") == 1

    def test_unmet_dependency_is_skipped_and_batch_continues(self, service, make_migration):
        waiting = make_migration(
            service, "needs future", CREATE_ORDERS, depends_on=["20990101_000000_future_change"]
        )
        independent = make_migration(service, "create audit", CREATE_AUDIT)

        result = service.run_migrations("app", "dev", "alice")

        assert result["success"] is True
        assert result["skippedMigrations"] == [waiting]
        assert [m["migrationId"] for m in result["executedMigrations"]] == [independent]

    def test_dependency_applied_earlier_in_the_batch_is_met(self, service, make_migration):
        base = make_migration(service, "create users", CREATE_USERS)
        dependent = make_migration(service, "create orders", CREATE_ORDERS, depends_on=[base])

        result = service.run_migrations("app", "dev", "alice")

        assert [m["migrationId"] for m in result["executedMigrations"]] == [base, dependent]

    def test_target_migration_limits_the_run(self, service, make_migration, target_db):
        first = make_migration(service, "create users", CREATE_USERS)
        second = make_migration(service, "create orders", CREATE_ORDERS)
        third = make_migration(service, "create audit", CREATE_AUDIT)

        result = service.run_migrations("app", "dev", "alice", target_migration_id=second)

        assert [m["migrationId"] for m in result["executedMigrations"]] == [first, second]
        assert result["skippedMigrations"] == [third]
        assert "audit" not in table_names(target_db)

    def test_execution_context_reaches_history_and_events(self, service, make_migration):
        migration_id = make_migration(service, "create users", CREATE_USERS)

        service.run_migrations("app", "dev", "alice", execution_context={"ticket": "OPS-42"})

        record = service.get_execution_history("app")[0]
        assert record.execution_context == {"ticket": "OPS-42"}
        events = service.get_change_events("app", migration_id)
        assert [e.event_type for e in reversed(events)] == [
            ChangeEventType.STARTED,
            ChangeEventType.COMPLETED,
        ]
        assert all(e.context["ticket"] == "OPS-42" for e in events)

    def test_failed_event_carries_error(self, service, make_migration):
        migration_id = make_migration(service, "broken", "INSERT INTO nowhere VALUES (1);")

        service.run_migrations("app", "dev", "alice")

        latest = service.get_change_events("app", migration_id)[0]
        assert latest.event_type == ChangeEventType.FAILED
        assert "nowhere" in latest.context["error"]

    def test_progress_callback_is_invoked(self, config, clock, target_db, make_migration):
        from dbvc.config import StaticSecretProvider
        from dbvc.service import MigrationService

        calls = []
        with MigrationService(
            config,
            secret_provider=StaticSecretProvider(),
            progress_callback=lambda current, total, message: calls.append((current, total)),
            now=clock,
        ) as svc:
            svc.targets.register("app", "dev", target_db)
            make_migration(svc, "create users", CREATE_USERS)
            svc.run_migrations("app", "dev", "alice")

        assert calls[0] == (0, 1)
        assert calls[-1] == (1, 1)

    def test_rejects_unknown_environment(self, service):
        with pytest.raises(ValidationError):
            service.run_migrations("app", "qa", "alice")

    def test_rejects_blank_executor(self, service):
        with pytest.raises(ValidationError):
            service.run_migrations("app", "dev", "   ")


class TestDryRun:
    """Dry runs report what would execute without touching anything."""

    def test_dry_run_writes_nothing(self, service, make_migration, target_db):
        first = make_migration(service, "create users", CREATE_USERS)
        second = make_migration(service, "create orders", CREATE_ORDERS)

        result = service.run_migrations("app", "dev", "alice", dry_run=True)

        assert result["success"] is True
        assert result["executedMigrations"] == [
            {"migrationId": first, "status": "skipped", "durationMs": 0},
            {"migrationId": second, "status": "skipped", "durationMs": 0},
        ]
        assert row_count(service.ledger, "migration_execution_history") == 0
        assert row_count(service.ledger, "migration_applied_status") == 0
        assert row_count(service.ledger, "migration_change_events") == 0
        assert "users" not in table_names(target_db)

    def test_dry_run_releases_the_lock(self, service, make_migration):
        make_migration(service, "create users", CREATE_USERS)

        service.run_migrations("app", "dev", "alice", dry_run=True)

        assert service.get_active_lock("app") is None


class TestRunLocking:
    """A run holds the per-database lock for its whole duration."""

    def test_run_releases_lock_on_success_and_failure(self, service, make_migration):
        make_migration(service, "broken", "INSERT INTO nowhere VALUES (1);")

        service.run_migrations("app", "dev", "alice")

        assert service.get_active_lock("app") is None

    def test_concurrent_run_fails_before_executing(self, service, make_migration, target_db):
        make_migration(service, "create users", CREATE_USERS)
        assert service.lock_manager.acquire_lock("app", "bob#run-a", reason="run by bob")

        with pytest.raises(LockContentionError) as exc_info:
            service.run_migrations("app", "dev", "carol")

        assert exc_info.value.locked_by == "bob#run-a"
        assert "users" not in table_names(target_db)
        assert row_count(service.ledger, "migration_execution_history") == 0
        # The contender must not have released the holder's lock
        assert service.get_active_lock("app").locked_by == "bob#run-a"

    def test_same_executor_cannot_run_twice_concurrently(self, service, make_migration):
        make_migration(service, "create users", CREATE_USERS)
        assert service.lock_manager.acquire_lock("app", "alice#other-run")

        with pytest.raises(LockContentionError):
            service.run_migrations("app", "dev", "alice")

    def test_expired_lock_is_taken_over(self, service, make_migration, clock):
        make_migration(service, "create users", CREATE_USERS)
        service.lock_manager.acquire_lock("app", "crashed#run", timeout_minutes=30)
        clock.advance(minutes=31)

        result = service.run_migrations("app", "dev", "alice")

        assert result["success"] is True
        assert service.get_active_lock("app") is None

    def test_lock_on_other_database_does_not_block(self, service, make_migration):
        make_migration(service, "create users", CREATE_USERS)
        service.lock_manager.acquire_lock("billing", "bob#run")

        result = service.run_migrations("app", "dev", "alice")

        assert result["success"] is True


class TestLedgerWriteFailures:
    """Ledger errors around a script are reported as failed outcomes, never raised."""

    def test_status_write_failure_after_commit_fails_the_run(
        self, service, make_migration, target_db
    ):
        first = make_migration(service, "create users", CREATE_USERS)
        second = make_migration(service, "create orders", CREATE_ORDERS)

        with patch.object(
            service.applied_repository, "upsert", side_effect=DatabaseError("ledger down")
        ):
            result = service.run_migrations("app", "dev", "alice")

        assert result["success"] is False
        assert result["failedMigration"] == first
        assert result["skippedMigrations"] == [second]
        outcome = result["executedMigrations"][0]
        assert outcome["status"] == "failed"
        assert "committed" in outcome["error"]
        # The up script itself did commit on the target
        assert "users" in table_names(target_db)
        assert "orders" not in table_names(target_db)

        record = service.get_execution_history("app", migration_id=first)[0]
        assert record.status == ExecutionStatus.FAILED
        assert "ledger down" in record.error_message

        latest = service.get_change_events("app", first)[0]
        assert latest.event_type == ChangeEventType.FAILED
        assert latest.context["scriptCommitted"] is True
        assert service.get_active_lock("app") is None

    def test_record_completion_failure_is_returned_not_raised(self, service, make_migration):
        migration_id = make_migration(service, "create t", "CREATE TABLE t (id INTEGER);")

        with patch.object(
            service.execution_repository, "complete", side_effect=DatabaseError("ledger down")
        ):
            result = service.run_migrations("app", "dev", "alice")

        assert result["success"] is False
        assert result["failedMigration"] == migration_id
        events = service.get_change_events("app", migration_id)
        assert [e.event_type for e in events] == [ChangeEventType.FAILED, ChangeEventType.STARTED]
        assert service.get_active_lock("app") is None

    def test_record_creation_failure_skips_the_script(self, service, make_migration, target_db):
        migration_id = make_migration(service, "create users", CREATE_USERS)

        with patch.object(
            service.execution_repository, "create", side_effect=DatabaseError("ledger down")
        ):
            result = service.run_migrations("app", "dev", "alice")

        assert result["success"] is False
        assert result["executedMigrations"][0]["durationMs"] == 0
        assert "users" not in table_names(target_db)
        latest = service.get_change_events("app", migration_id)[0]
        assert latest.event_type == ChangeEventType.FAILED
        assert latest.context["scriptCommitted"] is False
