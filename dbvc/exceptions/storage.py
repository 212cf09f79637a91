"""
Storage Exception Classes
Handles errors raised by the relational ledger store and the document mirror.
"""

from typing import Any, Optional

from .base import DbvcError, RepositoryError


class DatabaseError(RepositoryError):
    """Raised when database operations fail."""

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        table: Optional[str] = None,
        constraint: Optional[str] = None,
        **kwargs: Any,
    ):
        """
        Initialize database error.

        Args:
            message: Error message
            query: SQL query that failed (if applicable)
            table: Database table involved
            constraint: Database constraint that was violated
            **kwargs: Additional arguments for base class
        """
        context = kwargs.pop("context", {})
        if query:
            context["query"] = query[:200]
        if table:
            context["table"] = table
        if constraint:
            context["constraint"] = constraint

        kwargs.setdefault("repository", "database")
        self.query = query
        self.table = table
        self.constraint = constraint
        super().__init__(message, context=context, **kwargs)


class DatabaseConnectionError(DatabaseError):
    """Raised when a database connection cannot be opened or used."""

    def __init__(
        self,
        message: str,
        database: Optional[str] = None,
        **kwargs: Any,
    ):
        context = kwargs.pop("context", {})
        if database:
            context["database"] = database

        kwargs.setdefault("operation", "connect")
        super().__init__(message, context=context, **kwargs)
        self.database = database


class TransactionError(DatabaseError):
    """Raised when a transaction fails and has been rolled back."""

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("operation", "transaction")
        super().__init__(message, **kwargs)


class DocumentStoreError(DbvcError):
    """Raised when the backup document store cannot read or write a document."""

    def __init__(
        self,
        message: str,
        document_id: Optional[str] = None,
        partition: Optional[str] = None,
        **kwargs: Any,
    ):
        context = kwargs.pop("context", {})
        if document_id:
            context["document_id"] = document_id
        if partition:
            context["partition"] = partition

        super().__init__(message, context=context, **kwargs)
        self.document_id = document_id
        self.partition = partition
