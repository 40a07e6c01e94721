from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, overload

from .coercion import TypeRegistry, check_format
from .errors import ModelDefinitionError

if TYPE_CHECKING:
    from .record import Record

DEFAULT_HASH_KEY = "id"

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def snake_case(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def pluralize(word: str) -> str:
    if re.search(r"(s|x|z|ch|sh)$", word):
        return word + "es"
    if re.search(r"[^aeiou]y$", word):
        return word[:-1] + "ies"
    return word + "s"


def table_name_for(class_name: str) -> str:
    return pluralize(snake_case(class_name))


class HandledAttribute:
    """Typed accessor installed on a model class for one declared attribute."""

    def __init__(self, format: str, *, of: str | None = None, default: Any = None, name: str | None = None):
        check_format(format, of=of)
        self.format = format
        self.of = of
        self.default = default
        self.name = name

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    @overload
    def __get__(self, instance: None, owner: type) -> HandledAttribute: ...

    @overload
    def __get__(self, instance: Record, owner: type) -> Any: ...

    def __get__(self, instance: Record | None, owner: type) -> Any:
        if instance is None:
            return self
        return instance.read_attribute(self._require_name())

    def __set__(self, instance: Record, value: Any) -> None:
        instance.write_attribute(self._require_name(), value)

    def _require_name(self) -> str:
        if self.name is None:
            raise ModelDefinitionError("attribute is not bound to a model")
        return self.name

    def __repr__(self) -> str:
        of = f", of={self.of!r}" if self.of else ""
        return f"attribute({self.format!r}{of})"


def attribute(format: str, *, of: str | None = None, default: Any = None) -> Any:
    return HandledAttribute(format, of=of, default=default)


@dataclass(frozen=True)
class ModelDefinition[T]:
    model_type: type[T]
    table_name: str
    hash_key: str
    range_key: str | None
    registry: TypeRegistry

    @property
    def key_names(self) -> tuple[str, ...]:
        if self.range_key is None:
            return (self.hash_key,)
        return (self.hash_key, self.range_key)

    @classmethod
    def from_class(
        cls,
        model_type: type[T],
        *,
        table_name: str | None = None,
        hash_key: str = DEFAULT_HASH_KEY,
        range_key: str | None = None,
        registry: TypeRegistry | None = None,
    ) -> ModelDefinition[T]:
        if not hash_key:
            raise ModelDefinitionError("hash_key is required")
        if range_key is not None and not range_key:
            raise ModelDefinitionError("range_key must be a non-empty name")
        if range_key == hash_key:
            raise ModelDefinitionError(f"range_key must differ from hash_key: {hash_key}")
        if table_name is not None and not table_name.strip():
            raise ModelDefinitionError("table_name must be a non-empty name")

        # Declarations inherited from the parent model are copied, never shared.
        resolved = registry.copy() if registry is not None else TypeRegistry()
        for name, value in vars(model_type).items():
            if isinstance(value, HandledAttribute):
                resolved.declare(name, value.format, of=value.of, default=value.default)

        return cls(
            model_type=model_type,
            table_name=table_name or table_name_for(model_type.__name__),
            hash_key=hash_key,
            range_key=range_key,
            registry=resolved,
        )
