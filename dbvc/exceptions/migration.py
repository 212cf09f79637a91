"""
Migration Exception Classes
Errors raised by the registry, lock manager and execution engine.
"""

import logging
from typing import Any, Optional

from .base import DbvcError


class MigrationError(DbvcError):
    """Base class for migration engine failures."""

    def __init__(
        self,
        message: str,
        migration_id: Optional[str] = None,
        database_id: Optional[str] = None,
        **kwargs: Any,
    ):
        context = kwargs.pop("context", {})
        if migration_id:
            context["migration_id"] = migration_id
        if database_id:
            context["database_id"] = database_id

        self.migration_id = migration_id
        self.database_id = database_id
        super().__init__(message, context=context, **kwargs)


class RegistrationError(MigrationError):
    """Raised when a new migration cannot be written to the ledger."""


class MigrationNotFoundError(MigrationError):
    """Raised when a migration id is not registered for a database."""

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("log_level", logging.WARNING)
        super().__init__(message, **kwargs)


class LockContentionError(MigrationError):
    """Raised when another executor holds the database lock."""

    def __init__(
        self,
        message: str,
        locked_by: Optional[str] = None,
        **kwargs: Any,
    ):
        context = kwargs.pop("context", {})
        if locked_by:
            context["locked_by"] = locked_by

        kwargs.setdefault("log_level", logging.WARNING)
        self.locked_by = locked_by
        super().__init__(message, context=context, **kwargs)


class ScriptExecutionError(MigrationError):
    """Raised when an up or down script fails inside its transaction."""

    def __init__(
        self,
        message: str,
        mode: Optional[str] = None,
        **kwargs: Any,
    ):
        context = kwargs.pop("context", {})
        if mode:
            context["mode"] = mode

        super().__init__(message, context=context, **kwargs)
        self.mode = mode
