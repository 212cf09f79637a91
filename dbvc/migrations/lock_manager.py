"""
Migration Lock Manager

Per-database, time-boxed advisory lock. A lock row whose ``expires_at``
has passed is treated as absent by every reader and can be taken over.
Expiry keeps the system live after a crashed holder; it is not a
guarantee against clock skew between executors.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable

from ..database.connection import DatabaseConnection
from ..database.models import MigrationLock, format_timestamp, utc_now
from ..exceptions import LockContentionError, ValidationError

logger = logging.getLogger(__name__)


class LockManager:
    """Acquires and releases ``migration_locks`` rows."""

    def __init__(
        self,
        db: DatabaseConnection,
        default_timeout_minutes: int = 30,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db = db
        self.default_timeout_minutes = default_timeout_minutes
        self.now = now

    def acquire_lock(
        self,
        database_id: str,
        owner: str,
        timeout_minutes: int | None = None,
        reason: str | None = None,
    ) -> bool:
        """
        Try to take the lock for a database.

        The check and the write are one conditional upsert inside an
        immediate transaction: an existing row is only overwritten when it
        has expired or already belongs to ``owner``.

        Returns:
            True if the lock is now held by ``owner``, False if another
            owner holds an unexpired lock
        """
        if not database_id or not owner:
            raise ValidationError(
                "database_id and owner are required to acquire a lock",
                field="database_id" if not database_id else "owner",
            )
        timeout = timeout_minutes if timeout_minutes is not None else self.default_timeout_minutes
        if timeout <= 0:
            raise ValidationError("Lock timeout must be positive", field="timeout_minutes", value=timeout)

        now = self.now()
        expires_at = now + timedelta(minutes=timeout)

        with self.db.transaction():
            self.db.execute(
                """
                INSERT INTO migration_locks
                    (database_id, locked_at, locked_by, lock_reason, expires_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (database_id) DO UPDATE SET
                    locked_at = excluded.locked_at,
                    locked_by = excluded.locked_by,
                    lock_reason = excluded.lock_reason,
                    expires_at = excluded.expires_at
                WHERE migration_locks.expires_at < ?
                   OR migration_locks.locked_by = excluded.locked_by
                """,
                (
                    database_id,
                    format_timestamp(now),
                    owner,
                    reason,
                    format_timestamp(expires_at),
                    format_timestamp(now),
                ),
            )
            acquired = self.db.get_last_change_count() > 0

        if acquired:
            logger.info(f"Lock acquired on {database_id} by {owner} until {expires_at.isoformat()}")
        else:
            logger.info(f"Lock on {database_id} unavailable for {owner}")
        return acquired

    def release_lock(self, database_id: str, owner: str) -> bool:
        """
        Release the lock if ``owner`` still holds it. Idempotent.

        Returns:
            True if a row was deleted
        """
        cursor = self.db.execute(
            "DELETE FROM migration_locks WHERE database_id = ? AND locked_by = ?",
            (database_id, owner),
        )
        released = cursor.rowcount > 0
        if released:
            logger.info(f"Lock released on {database_id} by {owner}")
        else:
            logger.debug(f"No lock on {database_id} held by {owner} to release")
        return released

    def get_active_lock(self, database_id: str) -> MigrationLock | None:
        """The unexpired lock on a database, if any."""
        row = self.db.fetch_one(
            "SELECT * FROM migration_locks WHERE database_id = ? AND expires_at >= ?",
            (database_id, format_timestamp(self.now())),
        )
        return MigrationLock.from_database_row(dict(row)) if row else None

    def find_expired_locks(self, database_id: str | None = None) -> list[MigrationLock]:
        now = format_timestamp(self.now())
        if database_id:
            rows = self.db.fetch_all(
                "SELECT * FROM migration_locks WHERE expires_at < ? AND database_id = ?",
                (now, database_id),
            )
        else:
            rows = self.db.fetch_all(
                "SELECT * FROM migration_locks WHERE expires_at < ? ORDER BY database_id",
                (now,),
            )
        return [MigrationLock.from_database_row(dict(row)) for row in rows]

    def delete_expired_lock(self, database_id: str) -> bool:
        """Delete the lock row only if it is still expired."""
        cursor = self.db.execute(
            "DELETE FROM migration_locks WHERE database_id = ? AND expires_at < ?",
            (database_id, format_timestamp(self.now())),
        )
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info(f"Deleted expired lock on {database_id}")
        return deleted

    @contextmanager
    def hold(
        self,
        database_id: str,
        owner: str,
        timeout_minutes: int | None = None,
        reason: str | None = None,
    ) -> Iterator[None]:
        """
        Hold the lock for the duration of the block.

        Raises:
            LockContentionError: If another owner holds the lock
        """
        if not self.acquire_lock(database_id, owner, timeout_minutes, reason):
            holder = self.get_active_lock(database_id)
            locked_by = holder.locked_by if holder else None
            raise LockContentionError(
                f"Could not acquire lock on {database_id}. Another migration may be in progress"
                + (f" (held by {locked_by})" if locked_by else ""),
                locked_by=locked_by,
                database_id=database_id,
            )
        try:
            yield
        finally:
            try:
                self.release_lock(database_id, owner)
            except Exception as e:
                logger.error(f"Failed to release lock on {database_id} for {owner}: {e}")
