"""
Migration Runner

Execution engine for forward runs and single-migration rollbacks. Every
run holds the database lock for its whole duration, executes migrations
strictly one after another, and gives each script its own transaction on
the target store.
"""

import logging
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any
from uuid import uuid4

from ..config import ExecutionConfig
from ..database.connection import DatabaseConnection
from ..database.models import (
    AppliedStatus,
    ChangeEventType,
    ExecutionMode,
    ExecutionRecord,
    ExecutionStatus,
    Migration,
    utc_now,
)
from ..database.targets import TargetConnections
from ..exceptions import (
    DbvcError,
    MigrationError,
    MigrationNotFoundError,
    ScriptExecutionError,
)
from ..repositories import AppliedStatusRepository, ExecutionRepository, MigrationRepository
from .events import ChangeEventRecorder
from .lock_manager import LockManager
from .requests import RollbackRequest, RunMigrationsRequest, validate_request

logger = logging.getLogger(__name__)


def _root_cause(error: BaseException) -> str:
    """Message of the innermost chained exception."""
    while error.__cause__ is not None:
        error = error.__cause__
    return str(error)


class MigrationRunner:
    """
    High-level migration execution engine.

    A failed script stops the whole batch: its transaction is rolled back,
    its execution record is marked failed, and every later migration of the
    batch is reported as skipped without being executed.
    """

    def __init__(
        self,
        migrations: MigrationRepository,
        executions: ExecutionRepository,
        applied: AppliedStatusRepository,
        lock_manager: LockManager,
        targets: TargetConnections,
        events: ChangeEventRecorder,
        execution_config: ExecutionConfig | None = None,
        progress_callback: Callable[[int, int, str], None] | None = None,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        """
        Initialize migration runner.

        Args:
            progress_callback: Optional callback for progress updates,
                called with (current_step, total_steps, message)
        """
        self.migrations = migrations
        self.executions = executions
        self.applied = applied
        self.lock_manager = lock_manager
        self.targets = targets
        self.events = events
        self.config = execution_config or ExecutionConfig()
        self.progress_callback = progress_callback
        self.now = now

    @staticmethod
    def _lock_owner(executor: str) -> str:
        # Unique per invocation so two runs under one identity still exclude each other
        return f"{executor}#{uuid4().hex[:8]}"

    def run_migrations(
        self,
        database_id: str,
        environment: str,
        executor: str,
        target_migration_id: str | None = None,
        dry_run: bool = False,
        execution_context: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Apply pending migrations in ascending id order.

        Returns:
            ``{success, executedMigrations, skippedMigrations,
            failedMigration, totalDurationMs}``

        Raises:
            ValidationError: If the request is malformed
            LockContentionError: If another run holds the database lock;
                nothing has been executed
        """
        request = validate_request(
            RunMigrationsRequest,
            database_id=database_id,
            environment=environment,
            executor=executor,
            target_migration_id=target_migration_id,
            dry_run=dry_run,
            execution_context=execution_context or {},
        )
        env = request.environment.value
        start_time = time.monotonic()
        result: dict[str, Any] = {
            "success": False,
            "executedMigrations": [],
            "skippedMigrations": [],
            "failedMigration": None,
            "totalDurationMs": 0,
        }

        with self.lock_manager.hold(
            request.database_id,
            self._lock_owner(request.executor),
            self.config.lock_timeout_minutes,
            reason=f"{'dry run' if request.dry_run else 'run'} in {env} by {request.executor}",
        ):
            pending = self.migrations.find_pending(request.database_id, env)
            applied_ids = self.applied.applied_ids(request.database_id, env)
            target = None if request.dry_run else self.targets.resolve(request.database_id, env)

            logger.info(
                f"{len(pending)} pending migration(s) for {request.database_id}/{env}"
                + (" (dry run)" if request.dry_run else "")
            )

            for index, migration in enumerate(pending):
                migration_id = migration.migration_id
                self._report_progress(index, len(pending), f"Processing {migration_id}")

                if request.target_migration_id and migration_id > request.target_migration_id:
                    result["skippedMigrations"].append(migration_id)
                    continue

                unmet = [dep for dep in migration.depends_on if dep not in applied_ids]
                if unmet:
                    logger.warning(f"Skipping {migration_id}: unmet dependencies {unmet}")
                    result["skippedMigrations"].append(migration_id)
                    continue

                if request.dry_run:
                    result["executedMigrations"].append(
                        {"migrationId": migration_id, "status": "skipped", "durationMs": 0}
                    )
                    continue

                outcome = self._apply(migration, target, env, request.executor, request.execution_context)
                result["executedMigrations"].append(outcome)

                if outcome["status"] == ExecutionStatus.FAILED.value:
                    result["failedMigration"] = migration_id
                    remaining = [m.migration_id for m in pending[index + 1:]]
                    result["skippedMigrations"].extend(remaining)
                    if remaining:
                        logger.warning(
                            f"Stopping batch after {migration_id} failed; not executing {remaining}"
                        )
                    break

                applied_ids.add(migration_id)

            self._report_progress(len(pending), len(pending), "Run finished")

        result["success"] = result["failedMigration"] is None
        result["totalDurationMs"] = int((time.monotonic() - start_time) * 1000)
        logger.info(
            f"Run on {request.database_id}/{env} {'succeeded' if result['success'] else 'FAILED'}: "
            f"{len(result['executedMigrations'])} processed, "
            f"{len(result['skippedMigrations'])} skipped in {result['totalDurationMs']}ms"
        )
        return result

    def _apply(
        self,
        migration: Migration,
        target: DatabaseConnection,
        environment: str,
        executor: str,
        execution_context: dict[str, Any],
    ) -> dict[str, Any]:
        """Execute one up script and record the outcome."""
        migration_id = migration.migration_id
        database_id = migration.database_id

        self.events.record(
            migration_id, database_id, ChangeEventType.STARTED, environment, execution_context
        )
        try:
            record = self.executions.create(
                ExecutionRecord(
                    migration_id=migration_id,
                    database_id=database_id,
                    environment=environment,
                    executor=executor,
                    mode=ExecutionMode.FORWARD,
                    started_at=self.now(),
                    execution_context=execution_context,
                )
            )
        except DbvcError as e:
            error_message = f"Could not record execution start: {_root_cause(e)}"
            logger.error(f"{migration_id} not executed: {error_message}")
            self.events.record(
                migration_id,
                database_id,
                ChangeEventType.FAILED,
                environment,
                {**execution_context, "error": error_message, "scriptCommitted": False},
            )
            return self._failed_outcome(migration_id, 0, error_message)

        migration_start = time.monotonic()
        try:
            self._execute_script(target, migration, migration.up_script, ExecutionMode.FORWARD)
        except ScriptExecutionError as e:
            duration_ms = int((time.monotonic() - migration_start) * 1000)
            error_message = _root_cause(e)
            self._complete_failed(record.id, duration_ms, error_message)
            self.events.record(
                migration_id,
                database_id,
                ChangeEventType.FAILED,
                environment,
                {**execution_context, "error": error_message},
            )
            return self._failed_outcome(migration_id, duration_ms, error_message)

        duration_ms = int((time.monotonic() - migration_start) * 1000)
        completed_at = self.now()
        try:
            self.executions.complete(record.id, ExecutionStatus.SUCCESS, completed_at, duration_ms)
            self.applied.upsert(
                AppliedStatus(
                    migration_id=migration_id,
                    database_id=database_id,
                    environment=environment,
                    is_applied=True,
                    applied_at=completed_at,
                    applied_by=executor,
                    last_execution_id=record.id,
                )
            )
        except DbvcError as e:
            error_message = f"Ledger write failed after the up script committed: {_root_cause(e)}"
            logger.error(
                f"{migration_id} is committed on {database_id}/{environment} "
                f"but not recorded as applied: {e}"
            )
            self._complete_failed(record.id, duration_ms, error_message)
            self.events.record(
                migration_id,
                database_id,
                ChangeEventType.FAILED,
                environment,
                {**execution_context, "error": error_message, "scriptCommitted": True},
            )
            return self._failed_outcome(migration_id, duration_ms, error_message)

        self.events.record(
            migration_id, database_id, ChangeEventType.COMPLETED, environment, execution_context
        )
        logger.info(f"Applied {migration_id} to {database_id}/{environment} in {duration_ms}ms")
        return {
            "migrationId": migration_id,
            "status": ExecutionStatus.SUCCESS.value,
            "durationMs": duration_ms,
        }

    @staticmethod
    def _failed_outcome(migration_id: str, duration_ms: int, error_message: str) -> dict[str, Any]:
        return {
            "migrationId": migration_id,
            "status": ExecutionStatus.FAILED.value,
            "durationMs": duration_ms,
            "error": error_message,
        }

    def _complete_failed(self, record_id: int, duration_ms: int, error_message: str) -> None:
        """Mark an execution record failed; a ledger error here is only logged."""
        try:
            self.executions.complete(
                record_id, ExecutionStatus.FAILED, self.now(), duration_ms, error_message
            )
        except DbvcError as e:
            logger.error(f"Could not mark execution {record_id} as failed: {e}")

    def _execute_script(
        self,
        target: DatabaseConnection,
        migration: Migration,
        script: str,
        mode: ExecutionMode,
    ) -> None:
        """
        Run a script inside one transaction bounded by the configured timeout.

        Raises:
            ScriptExecutionError: If the script fails; the transaction has
                been rolled back
        """
        try:
            with target.transaction(timeout=self.config.transaction_timeout_seconds):
                statements = target.execute_script(script)
            logger.debug(f"Executed {statements} statement(s) of {migration.migration_id}")
        except DbvcError as e:
            raise ScriptExecutionError(
                f"Migration {migration.migration_id} {mode.value} script failed: {_root_cause(e)}",
                migration_id=migration.migration_id,
                database_id=migration.database_id,
                mode=mode.value,
            ) from e

    def rollback_migration(
        self,
        migration_id: str,
        database_id: str,
        environment: str,
        executor: str,
        execution_context: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Reverse one applied migration with its down script.

        Precondition violations, script failures and ledger write failures
        are returned as a failed result and recorded as a ``failed`` event.

        Lock contention is raised rather than returned, the same as for
        ``run_migrations``: the caller never held the lock, so no
        execution was attempted and there is nothing to audit.

        Returns:
            ``{success, migrationId, durationMs, error?}``

        Raises:
            ValidationError: If the request is malformed
            LockContentionError: If another run holds the database lock
        """
        request = validate_request(
            RollbackRequest,
            migration_id=migration_id,
            database_id=database_id,
            environment=environment,
            executor=executor,
            execution_context=execution_context or {},
        )
        env = request.environment.value
        context = dict(request.execution_context)
        start_time = time.monotonic()

        with self.lock_manager.hold(
            request.database_id,
            self._lock_owner(request.executor),
            self.config.lock_timeout_minutes,
            reason=f"rollback of {request.migration_id} in {env} by {request.executor}",
        ):
            try:
                duration_ms = self._rollback(request.migration_id, request.database_id, env, request.executor, context)
            except DbvcError as e:
                error_message = str(e)
                event_context = {**context, "error": _root_cause(e), "mode": ExecutionMode.ROLLBACK.value}
                if e.context.get("script_committed"):
                    event_context["scriptCommitted"] = True
                self.events.record(
                    request.migration_id,
                    request.database_id,
                    ChangeEventType.FAILED,
                    env,
                    event_context,
                )
                return {
                    "success": False,
                    "migrationId": request.migration_id,
                    "durationMs": int((time.monotonic() - start_time) * 1000),
                    "error": error_message,
                }

        return {
            "success": True,
            "migrationId": request.migration_id,
            "durationMs": duration_ms,
        }

    def _rollback(
        self,
        migration_id: str,
        database_id: str,
        environment: str,
        executor: str,
        context: dict[str, Any],
    ) -> int:
        migration = self.migrations.find_by_migration_id(migration_id, database_id)
        if migration is None:
            raise MigrationNotFoundError(
                f"Migration {migration_id} not found",
                migration_id=migration_id,
                database_id=database_id,
            )
        if not migration.is_reversible:
            raise MigrationError(
                f"Migration {migration_id} is not reversible (no down script)",
                migration_id=migration_id,
                database_id=database_id,
            )
        if not self.applied.is_applied(migration_id, database_id, environment):
            raise MigrationError(
                f"Migration {migration_id} is not applied in {environment}",
                migration_id=migration_id,
                database_id=database_id,
            )

        target = self.targets.resolve(database_id, environment)
        self.events.record(
            migration_id,
            database_id,
            ChangeEventType.STARTED,
            environment,
            {**context, "mode": ExecutionMode.ROLLBACK.value},
        )
        record = self.executions.create(
            ExecutionRecord(
                migration_id=migration_id,
                database_id=database_id,
                environment=environment,
                executor=executor,
                mode=ExecutionMode.ROLLBACK,
                started_at=self.now(),
                execution_context=context,
            )
        )

        rollback_start = time.monotonic()
        try:
            self._execute_script(target, migration, migration.down_script, ExecutionMode.ROLLBACK)
        except ScriptExecutionError as e:
            self._complete_failed(
                record.id, int((time.monotonic() - rollback_start) * 1000), _root_cause(e)
            )
            raise

        duration_ms = int((time.monotonic() - rollback_start) * 1000)
        try:
            self.executions.complete(record.id, ExecutionStatus.SUCCESS, self.now(), duration_ms)
            self.applied.upsert(
                AppliedStatus(
                    migration_id=migration_id,
                    database_id=database_id,
                    environment=environment,
                    is_applied=False,
                    applied_at=None,
                    applied_by=executor,
                    last_execution_id=record.id,
                )
            )
        except DbvcError as e:
            error_message = f"Ledger write failed after the down script committed: {_root_cause(e)}"
            self._complete_failed(record.id, duration_ms, error_message)
            raise MigrationError(
                f"Rollback of {migration_id} committed on {database_id}/{environment} "
                f"but was not recorded: {_root_cause(e)}",
                migration_id=migration_id,
                database_id=database_id,
                context={"script_committed": True},
            ) from e
        self.events.record(
            migration_id, database_id, ChangeEventType.ROLLED_BACK, environment, context
        )
        logger.info(f"Rolled back {migration_id} on {database_id}/{environment} in {duration_ms}ms")
        return duration_ms

    def _report_progress(self, current: int, total: int, message: str) -> None:
        """Report progress to callback if available."""
        if self.progress_callback:
            try:
                self.progress_callback(current, total, message)
            except Exception as e:
                logger.warning(f"Progress callback error: {e}")

        logger.debug(f"Progress: {current}/{total} - {message}")
