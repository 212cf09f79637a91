"""
Base Exception Classes

Every dbvc error carries a context dict that is logged when the error is
raised and serialized by the CLI.
"""

import logging
from typing import Any

logger = logging.getLogger(__name__)


class DbvcError(Exception):
    """Root of the dbvc exception hierarchy."""

    def __init__(
        self,
        message: str,
        *,
        context: dict[str, Any] | None = None,
        log_level: int = logging.ERROR,
    ):
        super().__init__(message)
        self.context = context or {}
        self.log_level = log_level
        logger.log(log_level, self._log_line())

    def _log_line(self) -> str:
        line = f"[{type(self).__name__}] {self}"
        if self.context:
            line += f" | Context: {self.context}"
        return line

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready form used for CLI error output."""
        return {"error": type(self).__name__, "message": str(self), "context": self.context}

    def with_context(self, **kwargs: Any) -> "DbvcError":
        self.context.update(kwargs)
        return self


class ValidationError(DbvcError):
    """Raised when a request field is missing or malformed."""

    def __init__(self, message: str, field: str | None = None, value: Any = None, **kwargs: Any):
        context = kwargs.pop("context", {})
        if field:
            context["field"] = field
        if value is not None:
            context["value"] = str(value)

        kwargs.setdefault("log_level", logging.WARNING)
        self.field = field
        self.value = value
        super().__init__(message, context=context, **kwargs)


class ConfigurationError(DbvcError):
    """Raised when settings are invalid or a connection secret cannot be resolved."""

    def __init__(self, message: str, config_key: str | None = None, **kwargs: Any):
        context = kwargs.pop("context", {})
        if config_key:
            context["config_key"] = config_key

        self.config_key = config_key
        super().__init__(message, context=context, **kwargs)


class RepositoryError(DbvcError):
    """Raised when a ledger repository operation fails."""

    def __init__(
        self,
        message: str,
        repository: str | None = None,
        operation: str | None = None,
        **kwargs: Any,
    ):
        context = kwargs.pop("context", {})
        if repository:
            context["repository"] = repository
        if operation:
            context["operation"] = operation

        self.repository = repository
        self.operation = operation
        super().__init__(message, context=context, **kwargs)
