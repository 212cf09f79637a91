"""
Migration and snapshot identifiers, plus script checksums.

Migration ids are ``yyyyMMdd_HHmmss_<name>`` so lexical order is
creation order.
"""

import hashlib
import re
from datetime import datetime
from uuid import uuid4

from ..database.models import utc_now
from ..exceptions import ValidationError

MIGRATION_ID_PATTERN = re.compile(r"^\d{8}_\d{6}_[a-z0-9_]+$")
MAX_NAME_LENGTH = 50


def sanitize_migration_name(name: str) -> str:
    """Lower-case, whitespace runs to ``_``, drop anything outside ``[a-z0-9_]``."""
    sanitized = re.sub(r"\s+", "_", name.strip().lower())
    sanitized = re.sub(r"[^a-z0-9_]", "", sanitized)
    return sanitized[:MAX_NAME_LENGTH]


def generate_migration_id(name: str, now: datetime | None = None) -> str:
    """
    Build a migration id from a human name and the creation time.

    Ids have one-second resolution: the same name registered twice within
    one second yields the same id, and the second registration is rejected
    by the registry.

    Raises:
        ValidationError: If nothing usable is left of the name
    """
    sanitized = sanitize_migration_name(name or "")
    if not sanitized:
        raise ValidationError(
            "Migration name must contain at least one letter, digit or underscore",
            field="name",
            value=name,
        )
    timestamp = (now or utc_now()).strftime("%Y%m%d_%H%M%S")
    return f"{timestamp}_{sanitized}"


def is_valid_migration_id(migration_id: str) -> bool:
    return bool(migration_id) and bool(MIGRATION_ID_PATTERN.match(migration_id))


def parse_migration_id(migration_id: str) -> tuple[datetime, str]:
    """
    Split a migration id into its creation time and name.

    Raises:
        ValidationError: If the id is malformed
    """
    if not is_valid_migration_id(migration_id):
        raise ValidationError(
            f"Invalid migration id format: {migration_id}",
            field="migration_id",
            value=migration_id,
        )
    try:
        created = datetime.strptime(migration_id[:15], "%Y%m%d_%H%M%S")
    except ValueError as e:
        raise ValidationError(
            f"Invalid timestamp in migration id: {migration_id}",
            field="migration_id",
            value=migration_id,
        ) from e
    return created, migration_id[16:]


def generate_snapshot_id(database_id: str, now: datetime | None = None) -> str:
    timestamp = (now or utc_now()).strftime("%Y%m%d%H%M%S")
    return f"snapshot_{database_id}_{timestamp}_{uuid4().hex[:6]}"


def calculate_checksum(script: str) -> str:
    """SHA-256 hex digest of the UTF-8 encoded script."""
    return hashlib.sha256(script.encode("utf-8")).hexdigest()


def migration_file_path(migrations_path: str, migration_id: str) -> str:
    return f"{migrations_path.rstrip('/')}/{migration_id}.sql"
