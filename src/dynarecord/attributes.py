from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from .coercion import TypeRegistry
from .errors import ReadOnlyKeyError

_MISSING: Any = object()


class AttributeStore:
    """Raw wire values of one record plus the names changed since the last save.

    ``dirty`` keeps first-dirtied order and holds each name once. Key attributes
    are written only while the record is constructed and never become dirty.
    """

    def __init__(self, registry: TypeRegistry, key_names: Iterable[str]) -> None:
        self._registry = registry
        self._key_names = frozenset(key_names)
        self.raw: dict[str, Any] = {}
        self._dirty: dict[str, Any] = {}

    @classmethod
    def from_item(
        cls, registry: TypeRegistry, key_names: Iterable[str], item: Mapping[str, Any]
    ) -> AttributeStore:
        store = cls(registry, key_names)
        store.raw.update(item)
        return store

    @property
    def dirty(self) -> list[str]:
        return list(self._dirty)

    def is_key(self, name: str) -> bool:
        return name in self._key_names

    def write(self, name: str, value: Any, *, initial: bool = False) -> None:
        if name in self._key_names and not initial:
            raise ReadOnlyKeyError(name)

        previous = self.raw.get(name, _MISSING)
        coerced = self._registry.write(name, value)
        self.raw[name] = coerced

        if name in self._key_names or name in self._dirty:
            return
        if initial or previous is _MISSING or previous != coerced:
            self._dirty[name] = None if previous is _MISSING else previous

    def read(self, name: str) -> Any:
        return self._registry.read(name, self.raw.get(name))

    def changes(self) -> dict[str, tuple[Any, Any]]:
        return {
            name: (self._registry.read(name, previous), self.read(name))
            for name, previous in self._dirty.items()
        }

    def clear_dirty(self) -> None:
        self._dirty.clear()

    def __contains__(self, name: object) -> bool:
        return name in self.raw
