"""
dbvc - database schema version control.

Registers checksummed migration scripts, applies and reverts them under a
per-database lock, records every execution in a relational ledger, and
mirrors the ledger to a document store for backup.
"""

__version__ = "1.0.0"

from .config import DbvcConfig, Environment
from .exceptions import DbvcError
from .service import MigrationService

__all__ = ["__version__", "DbvcConfig", "Environment", "DbvcError", "MigrationService"]
