"""
Target Connection Resolution

Decides which relational store a ``(database_id, environment)`` pair runs
its scripts against. Resolution order:

1. a connection registered explicitly with ``register()``
2. the database's own connection secret from the inventory
3. the environment's configured connection secret
4. the ledger connection itself (single-database mode)
"""

import logging
import threading
from typing import Callable

from ..config import DbvcConfig, Environment, SecretProviderInterface
from ..exceptions import ConfigurationError, DatabaseConnectionError
from .connection import DatabaseConnection

logger = logging.getLogger(__name__)


class TargetConnections:
    """Resolves and owns connections to target databases."""

    def __init__(
        self,
        ledger: DatabaseConnection,
        config: DbvcConfig | None = None,
        secret_provider: SecretProviderInterface | None = None,
        secret_name_for: Callable[[str], str | None] | None = None,
    ) -> None:
        self.ledger = ledger
        self.config = config or DbvcConfig()
        self.secret_provider = secret_provider
        self.secret_name_for = secret_name_for

        self._registered: dict[tuple[str, str], DatabaseConnection] = {}
        self._resolved: dict[str, DatabaseConnection] = {}
        self._lock = threading.Lock()

    def register(
        self,
        database_id: str,
        environment: "Environment | str",
        connection: DatabaseConnection,
    ) -> None:
        """Pin a connection for a database/environment. The caller keeps ownership."""
        env = Environment.from_string(environment)
        with self._lock:
            self._registered[(database_id, env.value)] = connection
        logger.debug(f"Registered target {connection!r} for {database_id}/{env.value}")

    def _secret_names(self, database_id: str, env: Environment) -> list[str]:
        names = []
        if self.secret_name_for is not None:
            inventory_secret = self.secret_name_for(database_id)
            if inventory_secret:
                names.append(inventory_secret)
        try:
            names.append(self.config.target_for(env).sql_connection_secret_name)
        except ConfigurationError:
            logger.debug(f"No configured target secret for {env.value}")
        return names

    def resolve(self, database_id: str, environment: "Environment | str") -> DatabaseConnection:
        """
        Return a connected store for the pair.

        Raises:
            DatabaseConnectionError: If a resolved connection string cannot be opened
        """
        env = Environment.from_string(environment)
        with self._lock:
            registered = self._registered.get((database_id, env.value))
        if registered is not None:
            if not registered.is_connected:
                registered.connect()
            return registered

        if self.secret_provider is not None:
            for secret_name in self._secret_names(database_id, env):
                secret = self.secret_provider.get_secret(secret_name)
                if secret is None:
                    continue
                return self._connect_url(secret.get_secret_value(), secret_name)

        if not self.ledger.is_connected:
            self.ledger.connect()
        return self.ledger

    def _connect_url(self, url: str, secret_name: str) -> DatabaseConnection:
        with self._lock:
            connection = self._resolved.get(url)
            if connection is None:
                connection = DatabaseConnection(
                    url,
                    max_connections=self.ledger.max_connections,
                    connection_timeout=self.ledger.connection_timeout,
                )
                self._resolved[url] = connection
        if not connection.is_connected:
            try:
                connection.connect()
            except DatabaseConnectionError as e:
                raise e.with_context(secret_name=secret_name)
        logger.debug(f"Resolved target via secret {secret_name}")
        return connection

    def close(self) -> None:
        """Close connections opened from secrets. Registered ones are left alone."""
        with self._lock:
            resolved = list(self._resolved.values())
            self._resolved.clear()
        for connection in resolved:
            connection.close()
