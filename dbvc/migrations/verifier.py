"""
Integrity Verifier

Three independent checks over one database: script checksums against the
registry, expired lock rows, and schema drift against the most recent
snapshot. Findings are reported, never raised, and never block execution.
"""

import logging
from typing import Any

from ..database.models import IntegrityIssue, IssueSeverity, IssueType
from ..repositories import MigrationRepository
from .identifiers import calculate_checksum
from .lock_manager import LockManager
from .requests import VerifyRequest, validate_request
from .snapshot import SchemaSnapshotter

logger = logging.getLogger(__name__)


class IntegrityVerifier:
    """Detects tampered scripts, abandoned locks and schema drift."""

    def __init__(
        self,
        migrations: MigrationRepository,
        lock_manager: LockManager,
        snapshotter: SchemaSnapshotter,
    ) -> None:
        self.migrations = migrations
        self.lock_manager = lock_manager
        self.snapshotter = snapshotter

    def verify_integrity(
        self, database_id: str, environment: str, fix_drift: bool = False
    ) -> dict[str, Any]:
        """
        Run all checks.

        A check that cannot complete is reported as a ``check_failed``
        issue and the remaining checks still run. An incomplete checksum
        check is an error, so the result is never valid when no script
        was verified; lock and drift check failures are informational.
        With ``fix_drift`` expired locks are deleted.

        Returns:
            ``{isValid, issues, checksumMismatches, schemaDrift}``
        """
        request = validate_request(
            VerifyRequest, database_id=database_id, environment=environment, fix_drift=fix_drift
        )
        env = request.environment.value
        issues: list[IntegrityIssue] = []
        checksum_mismatches: list[dict[str, str]] = []
        schema_drift: dict[str, Any] | None = None

        try:
            checksum_mismatches = self._check_checksums(request.database_id, issues)
        except Exception as e:
            issues.append(self._check_failed("checksum", e, IssueSeverity.ERROR))

        try:
            self._check_expired_locks(request.fix_drift, issues)
        except Exception as e:
            issues.append(self._check_failed("lock", e))

        try:
            schema_drift = self._check_schema_drift(request.database_id, env, issues)
        except Exception as e:
            issues.append(self._check_failed("schema drift", e))

        is_valid = not any(issue.severity == IssueSeverity.ERROR for issue in issues)
        logger.info(
            f"Integrity check of {request.database_id}/{env}: "
            f"{'valid' if is_valid else 'INVALID'}, {len(issues)} issue(s)"
        )
        return {
            "isValid": is_valid,
            "issues": [issue.to_dict() for issue in issues],
            "checksumMismatches": checksum_mismatches,
            "schemaDrift": schema_drift,
        }

    @staticmethod
    def _check_failed(
        check: str, error: Exception, severity: IssueSeverity = IssueSeverity.INFO
    ) -> IntegrityIssue:
        logger.warning(f"Integrity {check} check could not complete: {error}")
        return IntegrityIssue(
            type=IssueType.CHECK_FAILED,
            severity=severity,
            description=f"The {check} check could not complete: {error}",
            recommendation="Verify ledger connectivity and re-run the integrity check",
        )

    def _check_checksums(
        self, database_id: str, issues: list[IntegrityIssue]
    ) -> list[dict[str, str]]:
        mismatches = []
        for migration in self.migrations.find_by_database(database_id):
            calculated = calculate_checksum(migration.up_script)
            if calculated == migration.checksum:
                continue
            mismatches.append(
                {
                    "migrationId": migration.migration_id,
                    "registeredChecksum": migration.checksum,
                    "calculatedChecksum": calculated,
                }
            )
            issues.append(
                IntegrityIssue(
                    type=IssueType.CHECKSUM_MISMATCH,
                    severity=IssueSeverity.ERROR,
                    migration_id=migration.migration_id,
                    description=f"Checksum mismatch for migration {migration.migration_id}",
                    recommendation="Re-register migration or investigate script tampering",
                )
            )
        return mismatches

    def _check_expired_locks(self, fix: bool, issues: list[IntegrityIssue]) -> None:
        for lock in self.lock_manager.find_expired_locks():
            issues.append(
                IntegrityIssue(
                    type=IssueType.LOCK_EXPIRED,
                    severity=IssueSeverity.WARNING,
                    description=(
                        f"Expired lock found for database {lock.database_id} "
                        f"(locked by {lock.locked_by})"
                    ),
                    recommendation="Release the expired lock",
                )
            )
            if fix:
                self.lock_manager.delete_expired_lock(lock.database_id)

    def _check_schema_drift(
        self, database_id: str, environment: str, issues: list[IntegrityIssue]
    ) -> dict[str, Any] | None:
        last_snapshot = self.snapshotter.get_latest_snapshot(database_id, environment)
        if last_snapshot is None:
            logger.debug(f"No snapshot for {database_id}/{environment}; skipping drift check")
            return None

        _, current_hash = self.snapshotter.compute_schema(database_id, environment)
        if current_hash == last_snapshot.schema_hash:
            return None

        issues.append(
            IntegrityIssue(
                type=IssueType.SCHEMA_DRIFT,
                severity=IssueSeverity.WARNING,
                description="Schema has drifted from last snapshot",
                recommendation="Capture a new snapshot or investigate manual schema changes",
            )
        )
        return {
            "detected": True,
            "details": "Schema has changed since last snapshot",
            "lastSnapshotId": last_snapshot.snapshot_id,
            "currentSchemaHash": current_hash,
            "snapshotSchemaHash": last_snapshot.schema_hash,
        }
