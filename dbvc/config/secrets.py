"""
Connection Secret Providers

Supplies connection strings for target databases by secret name. The
ledger never stores credentials, only the secret name to resolve.
"""

import logging
import os
import re
from abc import ABC, abstractmethod
from typing import Optional

from pydantic import SecretStr

logger = logging.getLogger(__name__)


class SecretProviderInterface(ABC):
    """Abstract interface for secret providers."""

    @abstractmethod
    def get_secret(self, key: str) -> Optional[SecretStr]:
        """Retrieve a secret value, or None when it is not defined."""
        pass

    def health_check(self) -> bool:
        """Check if the provider is usable."""
        return True


class EnvironmentSecretProvider(SecretProviderInterface):
    """
    Reads secrets from the process environment.

    Secret names use the Key Vault convention (``SQL-DEV-CONNECTION-STRING``);
    the lookup tries the name verbatim, then with every non-alphanumeric
    character replaced by an underscore (``SQL_DEV_CONNECTION_STRING``).
    """

    def __init__(self, prefix: str = "") -> None:
        self.prefix = prefix

    @staticmethod
    def _env_name(key: str) -> str:
        return re.sub(r"[^A-Za-z0-9]", "_", key).upper()

    def get_secret(self, key: str) -> Optional[SecretStr]:
        for candidate in (f"{self.prefix}{key}", f"{self.prefix}{self._env_name(key)}"):
            value = os.getenv(candidate)
            if value:
                logger.debug(f"Resolved secret {key} from environment")
                return SecretStr(value)
        logger.debug(f"Secret {key} not found in environment")
        return None


class StaticSecretProvider(SecretProviderInterface):
    """Serves secrets from an in-process mapping, e.g. for local tooling."""

    def __init__(self, secrets: dict[str, str] | None = None) -> None:
        self._secrets = {k: SecretStr(v) for k, v in (secrets or {}).items()}

    def set_secret(self, key: str, value: str) -> None:
        self._secrets[key] = SecretStr(value)

    def get_secret(self, key: str) -> Optional[SecretStr]:
        return self._secrets.get(key)
