"""
Unified dbvc Configuration

Type-safe configuration for the migration engine. Values come from the
process environment, optionally seeded from a ``.env`` file.
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from ..exceptions import ConfigurationError
from .environment import Environment

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(
            f"{name} must be an integer, got {raw!r}", config_key=name
        ) from e


@dataclass
class LedgerConfig:
    """Relational ledger store settings."""

    url: str = "sqlite:///./dbvc_ledger.db"
    max_connections: int = 10
    connection_timeout: float = 30.0

    def validate(self) -> list[str]:
        issues = []
        if not self.url:
            issues.append("ledger: url is required")
        if self.max_connections <= 0:
            issues.append("ledger: max_connections must be positive")
        if self.connection_timeout <= 0:
            issues.append("ledger: connection_timeout must be positive")
        return issues


@dataclass
class DocumentStoreConfig:
    """Backup document store settings. ``path`` unset means no mirror."""

    path: str | None = None

    @property
    def enabled(self) -> bool:
        return bool(self.path)

    def validate(self) -> list[str]:
        return []


@dataclass
class ExecutionConfig:
    """Lock, transaction and replication retry limits."""

    lock_timeout_minutes: int = 30
    transaction_timeout_seconds: int = 300
    retry_attempts: int = 3
    retry_delay_ms: int = 1000

    def validate(self) -> list[str]:
        issues = []
        if self.lock_timeout_minutes <= 0:
            issues.append("execution: lock_timeout_minutes must be positive")
        if self.transaction_timeout_seconds <= 0:
            issues.append("execution: transaction_timeout_seconds must be positive")
        if self.lock_timeout_minutes * 60 <= self.transaction_timeout_seconds:
            issues.append(
                "execution: lock timeout must be longer than the transaction timeout"
            )
        if self.retry_attempts < 1:
            issues.append("execution: retry_attempts must be at least 1")
        if self.retry_delay_ms < 0:
            issues.append("execution: retry_delay_ms cannot be negative")
        return issues


@dataclass
class NamingConfig:
    """Where registered migrations are reported to live."""

    migrations_path: str = "migrations/versioned"


@dataclass
class EnvironmentTargetConfig:
    """Secret names resolving the target store for one environment."""

    sql_connection_secret_name: str
    document_connection_secret_name: str | None = None


def _default_targets() -> dict[str, EnvironmentTargetConfig]:
    return {
        Environment.DEV.value: EnvironmentTargetConfig(
            sql_connection_secret_name="SQL-DEV-CONNECTION-STRING",
            document_connection_secret_name="DOCUMENT-DEV-CONNECTION-STRING",
        ),
        Environment.PROD.value: EnvironmentTargetConfig(
            sql_connection_secret_name="SQL-PROD-CONNECTION-STRING",
            document_connection_secret_name="DOCUMENT-PROD-CONNECTION-STRING",
        ),
    }


@dataclass
class DbvcConfig:
    """
    Unified dbvc configuration.

    Centralizes ledger, mirror, execution and naming settings in a
    single class built once by the composition root.
    """

    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    document_store: DocumentStoreConfig = field(default_factory=DocumentStoreConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    naming: NamingConfig = field(default_factory=NamingConfig)
    environments: dict[str, EnvironmentTargetConfig] = field(
        default_factory=_default_targets
    )

    @classmethod
    def from_environment(
        cls, dotenv_path: str | None = None, strict: bool = False
    ) -> "DbvcConfig":
        """
        Create configuration from environment variables.

        Args:
            dotenv_path: Optional explicit ``.env`` file to load first
            strict: Raise ConfigurationError when validation finds issues

        Returns:
            Populated DbvcConfig
        """
        load_dotenv(dotenv_path)

        config = cls(
            ledger=LedgerConfig(
                url=os.getenv("DBVC_LEDGER_URL", LedgerConfig.url),
                max_connections=_env_int("DBVC_LEDGER_MAX_CONNECTIONS", 10),
            ),
            document_store=DocumentStoreConfig(
                path=os.getenv("DBVC_DOCUMENT_STORE_PATH") or None
            ),
            execution=ExecutionConfig(
                lock_timeout_minutes=_env_int("DBVC_LOCK_TIMEOUT_MINUTES", 30),
                transaction_timeout_seconds=_env_int(
                    "DBVC_TRANSACTION_TIMEOUT_SECONDS", 300
                ),
                retry_attempts=_env_int("DBVC_RETRY_ATTEMPTS", 3),
                retry_delay_ms=_env_int("DBVC_RETRY_DELAY_MS", 1000),
            ),
            naming=NamingConfig(
                migrations_path=os.getenv(
                    "DBVC_MIGRATIONS_PATH", NamingConfig.migrations_path
                )
            ),
        )

        issues = config.validate()
        if issues:
            if strict:
                raise ConfigurationError(
                    f"Invalid dbvc configuration: {'; '.join(issues)}",
                    context={"issues": issues},
                )
            for issue in issues:
                logger.warning(f"Configuration issue: {issue}")

        return config

    def validate(self) -> list[str]:
        """Collect validation issues from every section."""
        issues: list[str] = []
        issues.extend(self.ledger.validate())
        issues.extend(self.document_store.validate())
        issues.extend(self.execution.validate())
        for env in (Environment.DEV.value, Environment.PROD.value):
            if env not in self.environments:
                issues.append(f"environments: missing target config for {env}")
        return issues

    def target_for(self, environment: "Environment | str") -> EnvironmentTargetConfig:
        """Return the secret names configured for an environment."""
        env = Environment.from_string(environment)
        try:
            return self.environments[env.value]
        except KeyError as e:
            raise ConfigurationError(
                f"No target configured for environment {env.value}",
                config_key=f"environments.{env.value}",
            ) from e
