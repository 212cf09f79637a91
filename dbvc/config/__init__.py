"""
dbvc Configuration

Environment normalization, dataclass settings loaded from the process
environment (and ``.env``), and connection secret providers.
"""

from .application_config import (
    DbvcConfig,
    DocumentStoreConfig,
    EnvironmentTargetConfig,
    ExecutionConfig,
    LedgerConfig,
    NamingConfig,
)
from .environment import Environment, get_current_environment, normalize_environment
from .secrets import (
    EnvironmentSecretProvider,
    SecretProviderInterface,
    StaticSecretProvider,
)

__all__ = [
    "DbvcConfig",
    "LedgerConfig",
    "DocumentStoreConfig",
    "ExecutionConfig",
    "NamingConfig",
    "EnvironmentTargetConfig",
    "Environment",
    "get_current_environment",
    "normalize_environment",
    "SecretProviderInterface",
    "EnvironmentSecretProvider",
    "StaticSecretProvider",
]
