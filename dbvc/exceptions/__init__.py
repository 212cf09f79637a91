"""
Exception Hierarchy for dbvc
Provides standardized error handling with consistent exception types.
"""

from .base import (
    ConfigurationError,
    DbvcError,
    RepositoryError,
    ValidationError,
)
from .migration import (
    LockContentionError,
    MigrationError,
    MigrationNotFoundError,
    RegistrationError,
    ScriptExecutionError,
)
from .storage import (
    DatabaseConnectionError,
    DatabaseError,
    DocumentStoreError,
    TransactionError,
)

__all__ = [
    # Base exceptions
    "DbvcError",
    "ValidationError",
    "ConfigurationError",
    "RepositoryError",
    # Storage exceptions
    "DatabaseError",
    "DatabaseConnectionError",
    "TransactionError",
    "DocumentStoreError",
    # Migration exceptions
    "MigrationError",
    "RegistrationError",
    "MigrationNotFoundError",
    "LockContentionError",
    "ScriptExecutionError",
]
