"""
JSON column serialization.

Dependency lists, tags, execution contexts and schema definitions are
stored as JSON text. Every write goes through a ``dump_*`` function and
every read through the matching ``load_*`` function, both validated by
pydantic, so a malformed column is reported instead of half-parsed.
"""

import json
from typing import Any

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import ValidationError

_STRING_LIST = TypeAdapter(list[str])
_CONTEXT = TypeAdapter(dict[str, Any])


def dump_string_list(values: list[str] | None) -> str:
    return _STRING_LIST.dump_json(list(values or [])).decode("utf-8")


def load_string_list(raw: str | None, field_name: str = "list") -> list[str]:
    if raw is None or raw == "":
        return []
    try:
        return _STRING_LIST.validate_json(raw)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Stored {field_name} is not a JSON list of strings: {e.errors()[0]['msg']}",
            field=field_name,
            value=raw[:100],
        ) from e


def dump_context(context: dict[str, Any] | None) -> str:
    return _CONTEXT.dump_json(dict(context or {})).decode("utf-8")


def load_context(raw: str | None, field_name: str = "context") -> dict[str, Any]:
    if raw is None or raw == "":
        return {}
    try:
        return _CONTEXT.validate_json(raw)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Stored {field_name} is not a JSON object: {e.errors()[0]['msg']}",
            field=field_name,
            value=raw[:100],
        ) from e


def canonical_json(value: Any) -> str:
    """Deterministic JSON text: sorted keys, no insignificant whitespace."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
