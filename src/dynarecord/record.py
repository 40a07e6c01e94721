from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any, ClassVar, Self

from .attributes import AttributeStore
from .batch import DEFAULT_BATCH_SIZE, BatchQueue
from .coercion import TypeRegistry
from .errors import NotFoundError, StaleRecordError, ValidationError, ValidationFailed
from .model import DEFAULT_HASH_KEY, HandledAttribute, ModelDefinition, attribute
from .table import Table, is_permanent_error

logger = logging.getLogger(__name__)


def _is_blank(value: Any) -> bool:
    return isinstance(value, str) and value == ""


class Record:
    """A DynamoDB item exposed as an object with typed, change-tracked attributes.

    Subclasses configure the model with class keywords::

        class Person(Record, table_name="people", hash_key="email"):
            age = attribute("integer")
            tags = attribute("set", of="string")

    Declared attributes are coerced on every read and write. Any other name is
    stored as given: ``person.nickname = "al"`` works without a declaration and
    reading an unknown name returns ``None``.
    """

    _definition: ClassVar[ModelDefinition[Any]]
    batch_write_queue: ClassVar[BatchQueue[Any]]
    table_name: ClassVar[str]
    hash_key: ClassVar[str]
    range_key: ClassVar[str | None]

    _client: ClassVar[Any] = None
    _clock: ClassVar[Callable[[], float] | None] = None

    created_at = attribute("time")
    updated_at = attribute("time")

    def __init_subclass__(
        cls,
        *,
        table_name: str | None = None,
        hash_key: str | None = None,
        range_key: str | None = None,
        batch_size: int | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init_subclass__(**kwargs)
        parent = cls._definition
        _register(
            cls,
            table_name=table_name,
            hash_key=hash_key or parent.hash_key,
            range_key=range_key if range_key is not None else parent.range_key,
            registry=parent.registry,
            batch_size=batch_size if batch_size is not None else cls.batch_write_queue.limit,
        )

    def __init__(self, attributes: Mapping[str, Any] | None = None, /, **kwargs: Any) -> None:
        definition = type(self)._definition
        self._store = AttributeStore(definition.registry, definition.key_names)
        self._new_record = True
        self._errors: list[str] = []
        for name, value in {**(attributes or {}), **kwargs}.items():
            self._store.write(name, value, initial=True)

    @classmethod
    def load(cls, item: Mapping[str, Any]) -> Self:
        """Build a persisted record from a decoded store item; nothing is dirty."""
        record = cls.__new__(cls)
        definition = cls._definition
        record._store = AttributeStore.from_item(definition.registry, definition.key_names, item)
        record._new_record = False
        record._errors = []
        return record

    # -- model configuration -------------------------------------------------

    @classmethod
    def handle(cls, name: str, format: str, *, of: str | None = None, default: Any = None) -> None:
        """Declare ``name`` with ``format`` after the class body has run."""
        cls._definition.registry.declare(name, format, of=of, default=default)
        setattr(cls, name, HandledAttribute(format, of=of, default=default, name=name))

    @classmethod
    def use_client(cls, client: Any, *, clock: Callable[[], float] | None = None) -> None:
        """Bind the store client (and optionally a clock) for this model and its subclasses."""
        cls._client = client
        cls._clock = clock

    @classmethod
    def _table(cls) -> Table:
        return Table(cls._definition, client=cls._client, clock=cls._clock)

    # -- attribute access ----------------------------------------------------

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        return self._store.read(name)

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_"):
            object.__setattr__(self, name, value)
            return
        declared = getattr(type(self), name, None)
        if isinstance(declared, HandledAttribute):
            declared.__set__(self, value)
            return
        if hasattr(type(self), name):
            raise AttributeError(f"cannot assign to {type(self).__name__}.{name}: not an attribute")
        self.write_attribute(name, value)

    def read_attribute(self, name: str) -> Any:
        return self._store.read(name)

    def write_attribute(self, name: str, value: Any) -> None:
        self._store.write(name, value)

    def assign_attributes(self, attributes: Mapping[str, Any]) -> None:
        for name, value in attributes.items():
            self.write_attribute(name, value)

    @property
    def attributes(self) -> dict[str, Any]:
        return {name: self._store.read(name) for name in self._store.raw}

    @property
    def changed(self) -> list[str]:
        return self._store.dirty

    @property
    def changes(self) -> dict[str, tuple[Any, Any]]:
        return self._store.changes()

    @property
    def new_record(self) -> bool:
        return self._new_record

    def key(self) -> dict[str, Any]:
        return {name: self._store.read(name) for name in self._key_item()}

    def _key_item(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for name in self._definition.key_names:
            value = self._store.raw.get(name)
            if value is None:
                raise ValidationError(f"missing key attribute: {name}")
            out[name] = value
        return out

    # -- validation ----------------------------------------------------------

    @property
    def errors(self) -> list[str]:
        return self._errors

    def validate(self) -> None:
        """Hook for subclasses: append a message to ``self.errors`` for each problem."""

    def is_valid(self) -> bool:
        self._errors = []
        self.validate()
        return not self._errors

    # -- persistence ---------------------------------------------------------

    @classmethod
    def create(
        cls,
        attributes: Mapping[str, Any] | None = None,
        /,
        *,
        validate: bool = True,
        skip_timestamps: bool = False,
        **kwargs: Any,
    ) -> Self:
        record = cls(attributes, **kwargs)
        record._save(validate=validate, skip_timestamps=skip_timestamps, force=True)
        return record

    @classmethod
    def create_or_raise(
        cls,
        attributes: Mapping[str, Any] | None = None,
        /,
        *,
        validate: bool = True,
        skip_timestamps: bool = False,
        **kwargs: Any,
    ) -> Self:
        record = cls(attributes, **kwargs)
        if not record._save(validate=validate, skip_timestamps=skip_timestamps, force=True):
            raise ValidationFailed(errors=record.errors)
        return record

    @classmethod
    def find(cls, hash_value: Any, range_value: Any | None = None, *, consistent_read: bool = False) -> Self:
        item = cls._table().get(cls._lookup_key(hash_value, range_value), consistent_read=consistent_read)
        if item is None:
            raise NotFoundError("Item not found.")
        return cls.load(item)

    @classmethod
    def find_or_new(
        cls, hash_value: Any, range_value: Any | None = None, *, consistent_read: bool = False
    ) -> Self:
        try:
            return cls.find(hash_value, range_value, consistent_read=consistent_read)
        except NotFoundError:
            attributes = {cls._definition.hash_key: hash_value}
            if cls._definition.range_key is not None:
                attributes[cls._definition.range_key] = range_value
            return cls(attributes)

    @classmethod
    def batch_find(cls, keys: Iterable[Any] = ()) -> list[Self]:
        """Fetch up to 100 records in one request; result order is not guaranteed.

        Hash-only models take hash values; models with a range key take
        ``(hash_value, range_value)`` tuples.
        """
        lookups = [
            cls._lookup_key(*key) if isinstance(key, tuple) else cls._lookup_key(key) for key in keys
        ]
        return [cls.load(item) for item in cls._table().batch_get(lookups)]

    @classmethod
    def dynamo_batch_save(cls, records: Iterable[Record]) -> list[Mapping[str, Any]]:
        """Put every record's full attribute set in bulk; returns the client responses."""
        return cls._table().batch_write([dict(record._store.raw) for record in records])

    @classmethod
    def enqueue_for_save(
        cls,
        attributes: Mapping[str, Any] | None = None,
        /,
        *,
        validate: bool = True,
        **kwargs: Any,
    ) -> bool:
        record = cls(attributes, **kwargs)
        try:
            record._key_item()
        except ValidationError as err:
            logger.debug(f"Not enqueueing {cls.__name__}: {err}")
            return False
        if validate and not record.is_valid():
            logger.debug(f"Not enqueueing invalid {cls.__name__}: {record.errors}")
            return False
        cls.batch_write_queue.enqueue(record)
        return True

    @classmethod
    def flush_queue(cls) -> list[Mapping[str, Any]]:
        return cls.batch_write_queue.flush()

    @classmethod
    def _lookup_key(cls, hash_value: Any, range_value: Any | None = None) -> dict[str, Any]:
        definition = cls._definition
        if hash_value is None:
            raise ValidationError(f"{definition.hash_key} is required")
        if definition.range_key is None and range_value is not None:
            raise ValidationError(f"{cls.__name__} does not define a range key")
        if definition.range_key is not None and range_value is None:
            raise ValidationError(f"{definition.range_key} is required")

        registry = definition.registry
        key = {definition.hash_key: registry.handled_key(definition.hash_key, hash_value)}
        if definition.range_key is not None:
            key[definition.range_key] = registry.handled_key(definition.range_key, range_value)
        return key

    def save(self, *, validate: bool = True, skip_timestamps: bool = False) -> bool:
        return self._save(validate=validate, skip_timestamps=skip_timestamps)

    def save_or_raise(self, *, validate: bool = True, skip_timestamps: bool = False) -> bool:
        if not self._save(validate=validate, skip_timestamps=skip_timestamps):
            raise ValidationFailed(errors=self.errors)
        return True

    def _save(self, *, validate: bool, skip_timestamps: bool, force: bool = False) -> bool:
        dirty = self._store.dirty
        if not dirty and not force:
            return True
        if validate and not self.is_valid():
            logger.debug(f"Not saving invalid {type(self).__name__}: {self.errors}")
            return False

        raw = self._store.raw
        updates = {name: raw.get(name) for name in dirty if not _is_blank(raw.get(name))}

        table = self._table()
        if not skip_timestamps:
            now = table.now()
            if self._new_record:
                updates["created_at"] = self._stamp("created_at", now)
            updates["updated_at"] = self._stamp("updated_at", now)

        table.update(self._key_item(), updates)
        self._store.clear_dirty()
        self._new_record = False
        return True

    def _stamp(self, name: str, now: float) -> Any:
        value = self._definition.registry.write(name, now)
        self._store.raw[name] = value
        return value

    def touch(self) -> None:
        if self._new_record:
            raise StaleRecordError("Cannot touch a new record.")
        table = self._table()
        table.update(self._key_item(), {"updated_at": self._stamp("updated_at", table.now())})

    def delete(self) -> Self:
        self._table().delete(self._key_item())
        return self

    def update_attribute(
        self, name: str, value: Any, *, validate: bool = True, skip_timestamps: bool = False
    ) -> bool:
        self.write_attribute(name, value)
        return self.save_or_raise(validate=validate, skip_timestamps=skip_timestamps)

    def update_attributes(
        self, attributes: Mapping[str, Any], *, validate: bool = True, skip_timestamps: bool = False
    ) -> bool:
        self.assign_attributes(attributes)
        return self.save_or_raise(validate=validate, skip_timestamps=skip_timestamps)

    # -- comparison ----------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Record):
            return NotImplemented
        return self.attributes == other.attributes

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.attributes!r})"


def _register(
    cls: type[Record],
    *,
    table_name: str | None,
    hash_key: str,
    range_key: str | None,
    registry: TypeRegistry | None,
    batch_size: int,
) -> None:
    definition = ModelDefinition.from_class(
        cls, table_name=table_name, hash_key=hash_key, range_key=range_key, registry=registry
    )
    cls._definition = definition
    cls.table_name = definition.table_name
    cls.hash_key = definition.hash_key
    cls.range_key = definition.range_key
    cls.batch_write_queue = BatchQueue(
        lambda records: cls.dynamo_batch_save(records), limit=batch_size, discard_on=is_permanent_error
    )


_register(
    Record,
    table_name=None,
    hash_key=DEFAULT_HASH_KEY,
    range_key=None,
    registry=None,
    batch_size=DEFAULT_BATCH_SIZE,
)
