"""Attribute formats and the coercion rules applied between typed and wire values.

Every declared attribute has a *write* rule (typed value -> raw wire value) and a
*read* rule (raw wire value -> typed value). The rules live in two explicit tables
keyed by format name. ``date`` and ``time`` are asymmetric: both are written as
epoch seconds but read back as ``datetime.date`` and an aware UTC ``datetime``.

Enumerable formats (``array`` and ``set``) optionally declare an element format.
When the value is a collection, each element goes through the element rule before
the outer rule builds the list or set.
"""

from __future__ import annotations

import sys
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass
from datetime import UTC, date, datetime
from datetime import time as dt_time
from typing import Any, Literal

from .errors import InvalidDeclarationError, InvalidEnumerableValue, UnsupportedTypeError

Rule = Callable[[Any], Any]
Shape = Literal["scalar", "sequence", "set"]

FORMATS = frozenset({"integer", "float", "string", "symbol", "boolean", "date", "time", "array", "set"})
ENUMERABLE_FORMATS = frozenset({"array", "set"})


def shape_of(value: Any) -> Shape:
    if isinstance(value, (set, frozenset)):
        return "set"
    if isinstance(value, (str, bytes, bytearray, Mapping)):
        return "scalar"
    if isinstance(value, Iterable):
        return "sequence"
    return "scalar"


def _to_int(value: Any) -> int:
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return int(float(value))
    return int(value)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _to_epoch(value: Any) -> float:
    if isinstance(value, datetime):
        return _as_utc(value).timestamp()
    if isinstance(value, date):
        return datetime.combine(value, dt_time.min, tzinfo=UTC).timestamp()
    return float(value)


def _read_date(value: Any) -> date:
    if isinstance(value, datetime):
        return _as_utc(value).astimezone(UTC).date()
    if isinstance(value, date):
        return value
    return datetime.fromtimestamp(float(value), tz=UTC).date()


def _read_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, dt_time.min, tzinfo=UTC)
    return datetime.fromtimestamp(float(value), tz=UTC)


def _to_list(value: Any) -> list[Any]:
    if shape_of(value) == "scalar":
        return [value]
    return list(value)


def _to_set(value: Any) -> set[Any]:
    if shape_of(value) == "scalar":
        return {value}
    # DynamoDB sets cannot hold NULL.
    return {element for element in value if element is not None}


def _identity(value: Any) -> Any:
    return value


WRITE_RULES: Mapping[str, Rule] = {
    "integer": _to_int,
    "float": float,
    "string": str,
    "symbol": str,
    "boolean": _identity,
    "date": _to_epoch,
    "time": _to_epoch,
    "array": _to_list,
    "set": _to_set,
}

READ_RULES: Mapping[str, Rule] = {
    "integer": _to_int,
    "float": float,
    "string": str,
    "symbol": lambda value: sys.intern(str(value)),
    "boolean": _identity,
    "date": _read_date,
    "time": _read_time,
    "array": _to_list,
    "set": _to_set,
}


def check_format(format: str, *, of: str | None = None) -> None:
    if format not in FORMATS:
        raise UnsupportedTypeError(format)
    if of is None:
        return
    if of not in FORMATS:
        raise UnsupportedTypeError(of)
    if format not in ENUMERABLE_FORMATS:
        raise InvalidDeclarationError(f"element format is only allowed for array or set, not {format}")
    if of in ENUMERABLE_FORMATS:
        raise InvalidDeclarationError(
            f"Invalid handle: cannot store non-primitive datatypes within a {format}."
        )


@dataclass(frozen=True)
class TypeDeclaration:
    name: str
    format: str
    element_format: str | None = None
    default: Any = None

    @property
    def enumerable(self) -> bool:
        return self.format in ENUMERABLE_FORMATS

    def default_value(self) -> Any:
        # Copy so instances never share a mutable default.
        if isinstance(self.default, (list, set, dict)):
            return type(self.default)(self.default)
        return self.default

    def read(self, raw: Any) -> Any:
        return coerce(self, raw, READ_RULES)

    def write(self, value: Any) -> Any:
        return coerce(self, value, WRITE_RULES)


def coerce(
    declaration: TypeDeclaration,
    value: Any,
    rules: Mapping[str, Rule],
    *,
    validate: bool = False,
) -> Any:
    """Run ``value`` through ``declaration``'s rule from ``rules``.

    ``None`` is replaced by the declared default first. With ``validate`` set, a
    scalar given for an enumerable format raises ``InvalidEnumerableValue``;
    without it the scalar is wrapped into a one-element collection.
    """
    if value is None:
        value = declaration.default_value()
    if value is None:
        return None

    shape = shape_of(value)
    if declaration.element_format is not None and shape != "scalar":
        convert = rules[declaration.element_format]
        value = [None if element is None else convert(element) for element in value]
    elif validate and declaration.enumerable and shape == "scalar":
        raise InvalidEnumerableValue(
            f"Can't write a non-enumerable value to field handled as {declaration.format}"
        )

    return rules[declaration.format](value)


class TypeRegistry:
    """Per-model table of attribute name -> ``TypeDeclaration``."""

    def __init__(self, declarations: Mapping[str, TypeDeclaration] | None = None) -> None:
        self._declarations: dict[str, TypeDeclaration] = dict(declarations or {})

    def declare(
        self,
        name: str,
        format: str,
        *,
        of: str | None = None,
        default: Any = None,
    ) -> TypeDeclaration:
        if not name:
            raise InvalidDeclarationError("attribute name is required")
        check_format(format, of=of)

        if default is None and format == "array":
            default = []
        elif default is None and format == "set":
            default = set()

        declaration = TypeDeclaration(name=name, format=format, element_format=of, default=default)
        self._declarations[name] = declaration
        return declaration

    def get(self, name: str) -> TypeDeclaration | None:
        return self._declarations.get(name)

    def copy(self) -> TypeRegistry:
        return TypeRegistry(self._declarations)

    def __contains__(self, name: object) -> bool:
        return name in self._declarations

    def __iter__(self) -> Iterator[str]:
        return iter(self._declarations)

    def __len__(self) -> int:
        return len(self._declarations)

    def read(self, name: str, raw: Any) -> Any:
        declaration = self._declarations.get(name)
        if declaration is None:
            return raw
        return declaration.read(raw)

    def write(self, name: str, value: Any) -> Any:
        declaration = self._declarations.get(name)
        if declaration is None:
            return value
        return declaration.write(value)

    def handled_key(self, name: str, value: Any) -> Any:
        """Validated write-rule coercion used for key lookups."""
        declaration = self._declarations.get(name)
        if declaration is None:
            return value
        return coerce(declaration, value, WRITE_RULES, validate=True)
