"""Serialization policy for event data.

The client never assumes a schema for `data`. Candidates are turned into
JSON-compatible values on write and converted back into caller types on
read through a DataSerializer, which is passed to the client explicitly
and travels with every event it hydrates.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, TypeVar

from pydantic import BaseModel, PydanticSchemaGenerationError, TypeAdapter, ValidationError

from .errors import ConfigurationError, DecodeError

T = TypeVar("T")


@lru_cache(maxsize=256)
def _adapter(type_: Any) -> TypeAdapter[Any]:
    return TypeAdapter(type_)


def _adapter_for(type_: Any) -> TypeAdapter[Any]:
    """Return the cached adapter for `type_`.

    Raises:
        ConfigurationError: If pydantic cannot handle `type_`.
    """
    try:
        return _adapter(type_)
    except PydanticSchemaGenerationError as e:
        raise ConfigurationError(f"Cannot convert event data with type {type_!r}: {e}") from e


@dataclass(frozen=True)
class DataSerializer:
    """Default data serialization: pydantic in JSON mode.

    Handles pydantic models, dataclasses, enums, datetimes and plain JSON
    values. Subclass and override `serialize`/`deserialize` for anything
    else.

    Attributes:
        by_alias: Dump models using their field aliases
        exclude_none: Drop fields that are None when dumping models
    """

    by_alias: bool = True
    exclude_none: bool = False

    def serialize(self, value: Any) -> Any:
        """Turn a caller value into a JSON-compatible value."""
        if isinstance(value, BaseModel):
            return value.model_dump(
                mode="json", by_alias=self.by_alias, exclude_none=self.exclude_none
            )
        return _adapter_for(type(value)).dump_python(
            value, mode="json", by_alias=self.by_alias, exclude_none=self.exclude_none
        )

    def deserialize(self, data: Any, type_: type[T]) -> T:
        """Turn a JSON value from the server into an instance of `type_`.

        Raises:
            ConfigurationError: If `type_` is not a type pydantic can validate.
            DecodeError: If the value does not fit `type_`.
        """
        adapter = _adapter_for(type_)
        try:
            return adapter.validate_python(data)
        except ValidationError as e:
            raise DecodeError(f"Failed to convert data into {type_!r}: {e}") from e


def canonical_json_bytes(data: Any) -> bytes:
    """Compact JSON bytes of a server-provided value, as hashed by the server.

    Key order is kept as received. Non-ASCII characters stay unescaped.
    """
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
