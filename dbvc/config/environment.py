"""
Environment Detection and Normalization

dbvc recognizes exactly two physical deployment targets: ``dev`` and
``prod``. Staging validation runs against the dev databases, so every
staging alias collapses to ``dev``.
"""

import logging
import os
from enum import Enum

from ..exceptions import ValidationError

logger = logging.getLogger(__name__)


class Environment(str, Enum):
    """Deployment target of a migration run."""

    DEV = "dev"
    PROD = "prod"

    @classmethod
    def from_string(cls, env_str: str | None) -> "Environment":
        """
        Convert a string to an Environment, normalizing known aliases.

        Raises:
            ValidationError: If the value is not a recognized environment
        """
        if isinstance(env_str, cls):
            return env_str
        if not env_str or not str(env_str).strip():
            raise ValidationError("Environment is required", field="environment")

        env_value = str(env_str).lower().strip()

        env_mapping = {
            "dev": cls.DEV,
            "develop": cls.DEV,
            "development": cls.DEV,
            "stage": cls.DEV,
            "staging": cls.DEV,
            "prod": cls.PROD,
            "production": cls.PROD,
        }

        environment = env_mapping.get(env_value)
        if environment is None:
            raise ValidationError(
                f"Unknown environment '{env_str}' (expected dev, staging or prod)",
                field="environment",
                value=env_str,
            )
        if env_value in {"stage", "staging"}:
            logger.debug(f"Environment '{env_value}' normalized to dev")
        return environment

    def is_production(self) -> bool:
        """Check if this is the production target."""
        return self == self.PROD


def normalize_environment(value: "str | Environment | None") -> str:
    """Return the canonical environment value ('dev' or 'prod')."""
    return Environment.from_string(value).value


def get_current_environment() -> Environment:
    """
    Detect the default environment for CLI invocations.

    Checks DBVC_ENVIRONMENT then ENVIRONMENT; anything unrecognized or
    unset falls back to dev.
    """
    for env_var in ["DBVC_ENVIRONMENT", "ENVIRONMENT"]:
        env_value = os.getenv(env_var)
        if env_value:
            try:
                environment = Environment.from_string(env_value)
            except ValidationError:
                logger.warning(f"Ignoring unrecognized {env_var}={env_value!r}")
                continue
            logger.debug(f"Environment detected from {env_var}: {environment.value}")
            return environment

    logger.debug("Environment defaulted to: dev")
    return Environment.DEV
