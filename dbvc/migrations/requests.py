"""
Request Schemas

Pydantic schemas validating every operation's input before any side
effect. ``validate_request`` turns pydantic's errors into the package's
own ``ValidationError``.
"""

from typing import Annotated, Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator
from pydantic import ValidationError as PydanticValidationError

from ..config import Environment
from ..database.models import CaptureType
from ..exceptions import ValidationError
from .identifiers import is_valid_migration_id

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]

RequestT = TypeVar("RequestT", bound=BaseModel)


class _Request(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class _EnvironmentRequest(_Request):
    environment: Environment

    @field_validator("environment", mode="before")
    @classmethod
    def normalize_environment(cls, v: Any) -> Environment:
        """Collapse staging and the long aliases onto dev/prod."""
        return Environment.from_string(v)


class CreateMigrationRequest(_Request):
    """Schema for registering a migration."""

    name: NonEmptyStr
    database_id: NonEmptyStr
    author: NonEmptyStr
    description: str | None = None
    up_script: str | None = None
    down_script: str | None = None
    tags: list[str] = Field(default_factory=list)
    depends_on: list[str] = Field(default_factory=list)

    @field_validator("depends_on")
    @classmethod
    def validate_depends_on(cls, v: list[str]) -> list[str]:
        invalid = [dep for dep in v if not is_valid_migration_id(dep)]
        if invalid:
            raise ValueError(f"Invalid migration id format in depends_on: {', '.join(invalid)}")
        return list(dict.fromkeys(v))

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, v: list[str]) -> list[str]:
        """Strip, drop empties, de-duplicate keeping order."""
        return list(dict.fromkeys(tag.strip() for tag in v if tag and tag.strip()))


class RunMigrationsRequest(_EnvironmentRequest):
    """Schema for a forward run."""

    database_id: NonEmptyStr
    executor: NonEmptyStr
    target_migration_id: str | None = None
    dry_run: bool = False
    execution_context: dict[str, Any] = Field(default_factory=dict)


class RollbackRequest(_EnvironmentRequest):
    """Schema for reversing one migration."""

    migration_id: NonEmptyStr
    database_id: NonEmptyStr
    executor: NonEmptyStr
    execution_context: dict[str, Any] = Field(default_factory=dict)


class SnapshotRequest(_EnvironmentRequest):
    """Schema for capturing a schema snapshot."""

    database_id: NonEmptyStr
    captured_by: NonEmptyStr
    capture_type: CaptureType = CaptureType.AUTO
    triggering_migration_id: str | None = None


class VerifyRequest(_EnvironmentRequest):
    """Schema for an integrity verification."""

    database_id: NonEmptyStr
    fix_drift: bool = False


class StatusRequest(_Request):
    """Schema for a status report. Both filters are optional."""

    database_id: str | None = None
    environment: Environment | None = None

    @field_validator("environment", mode="before")
    @classmethod
    def normalize_environment(cls, v: Any) -> Environment | None:
        if v is None or v == "":
            return None
        return Environment.from_string(v)


def validate_request(model: type[RequestT], **data: Any) -> RequestT:
    """
    Build a request schema, converting schema violations.

    Raises:
        ValidationError: Naming the first offending field
    """
    try:
        return model(**data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        field_name = field.split(".")[0] if field else None
        raise ValidationError(
            f"Invalid {field or 'request'}: {first.get('msg')}",
            field=field,
            value=data.get(field_name) if field_name else None,
            context={"errors": len(e.errors())},
        ) from e
