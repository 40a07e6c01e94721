from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from decimal import Decimal
from typing import Any

from boto3.dynamodb.types import Binary, TypeDeserializer, TypeSerializer
from botocore.exceptions import ClientError

from .errors import BatchSizeExceeded, ValidationError
from .model import ModelDefinition
from .runtime import get_dynamodb_client

logger = logging.getLogger(__name__)

MAX_BATCH_GET_KEYS = 100
MAX_BATCH_WRITE_ITEMS = 25


def _chunked[T](items: Sequence[T], size: int) -> Sequence[Sequence[T]]:
    if size <= 0:
        raise ValueError("size must be > 0")
    return [items[i : i + size] for i in range(0, len(items), size)]


def to_wire(value: Any) -> Any:
    """Map a raw attribute value onto the types ``TypeSerializer`` accepts."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    if isinstance(value, (set, frozenset)):
        if not value:
            # DynamoDB has no empty set type.
            return None
        return {to_wire(v) for v in value}
    if isinstance(value, (list, tuple)):
        return [to_wire(v) for v in value]
    if isinstance(value, Mapping):
        return {str(k): to_wire(v) for k, v in value.items()}
    return value


def from_wire(value: Any) -> Any:
    """Map deserialized values back to plain Python.

    Integral numbers come back as ``int`` (an untyped ``3.0`` reads as ``3``);
    declare the attribute as ``float`` to keep a float.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        return float(value)
    if isinstance(value, Binary):
        return bytes(value.value)
    if isinstance(value, set):
        return {from_wire(v) for v in value}
    if isinstance(value, list):
        return [from_wire(v) for v in value]
    if isinstance(value, dict):
        return {k: from_wire(v) for k, v in value.items()}
    return value


def is_permanent_error(err: BaseException) -> bool:
    """True for failures a retry of the same request cannot fix."""
    if isinstance(err, ValidationError):
        return True
    if isinstance(err, ClientError):
        return err.response.get("Error", {}).get("Code") == "ValidationException"
    return False


class Table:
    """Single-table persistence for one model: raw attribute maps in, AttributeValues out."""

    def __init__(
        self,
        model: ModelDefinition[Any],
        *,
        client: Any | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._model = model
        self._table_name = model.table_name
        self._client: Any = client
        self._clock = clock or time.time
        self._serializer = TypeSerializer()
        self._deserializer = TypeDeserializer()

    @property
    def table_name(self) -> str:
        return self._table_name

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = get_dynamodb_client()
        return self._client

    def now(self) -> float:
        return float(self._clock())

    def get(self, key: Mapping[str, Any], *, consistent_read: bool = False) -> dict[str, Any] | None:
        req: dict[str, Any] = {"TableName": self._table_name, "Key": self._to_key(key)}
        if consistent_read:
            req["ConsistentRead"] = True

        logger.debug(f"get_item on {self._table_name}")
        resp = self.client.get_item(**req)
        item = resp.get("Item")
        if not item:
            return None
        return self._from_item(item)

    def update(self, key: Mapping[str, Any], updates: Mapping[str, Any]) -> None:
        req: dict[str, Any] = {"TableName": self._table_name, "Key": self._to_key(key)}
        if updates:
            req["AttributeUpdates"] = {
                name: {"Value": self._serialize(name, value), "Action": "PUT"}
                for name, value in updates.items()
            }

        logger.debug(f"update_item on {self._table_name}: {sorted(updates)}")
        self.client.update_item(**req)

    def delete(self, key: Mapping[str, Any]) -> None:
        logger.debug(f"delete_item on {self._table_name}")
        self.client.delete_item(TableName=self._table_name, Key=self._to_key(key))

    def batch_get(self, keys: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
        if len(keys) > MAX_BATCH_GET_KEYS:
            raise BatchSizeExceeded(requested=len(keys), limit=MAX_BATCH_GET_KEYS)
        if not keys:
            return []

        request = {self._table_name: {"Keys": [self._to_key(key) for key in keys]}}
        logger.debug(f"batch_get_item on {self._table_name}: {len(keys)} keys")
        resp = self.client.batch_get_item(RequestItems=request)

        unprocessed = resp.get("UnprocessedKeys", {}).get(self._table_name, {}).get("Keys") or []
        if unprocessed:
            logger.warning(f"batch_get_item on {self._table_name} left {len(unprocessed)} keys unprocessed")

        return [self._from_item(item) for item in resp.get("Responses", {}).get(self._table_name, [])]

    def batch_write(self, items: Sequence[Mapping[str, Any]]) -> list[Mapping[str, Any]]:
        """Put ``items`` in chunks of 25; returns the client response of every chunk.

        Items repeating a key are collapsed to the last one given.
        """
        if not items:
            return []

        # One put per key: a request repeating a key is rejected as a whole.
        by_key: dict[str, dict[str, Any]] = {}
        for item in items:
            wire = self._to_item(item)
            token = repr([wire[name] for name in self._model.key_names])
            by_key.pop(token, None)
            by_key[token] = wire
        duplicates = len(items) - len(by_key)
        if duplicates:
            logger.debug(f"batch_write_item on {self._table_name}: collapsed {duplicates} duplicate keys")

        requests = [{"PutRequest": {"Item": wire}} for wire in by_key.values()]
        responses: list[Mapping[str, Any]] = []
        for chunk in _chunked(requests, MAX_BATCH_WRITE_ITEMS):
            logger.debug(f"batch_write_item on {self._table_name}: {len(chunk)} puts")
            resp = self.client.batch_write_item(RequestItems={self._table_name: list(chunk)})

            unprocessed = (resp or {}).get("UnprocessedItems", {}).get(self._table_name, []) or []
            if unprocessed:
                logger.warning(
                    f"batch_write_item on {self._table_name} left {len(unprocessed)} items unprocessed"
                )
            responses.append(resp)
        return responses

    def _serialize(self, name: str, value: Any) -> dict[str, Any]:
        try:
            return self._serializer.serialize(to_wire(value))
        except TypeError as err:
            raise ValidationError(f"cannot store attribute {name}: {err}") from err

    def _to_key(self, key: Mapping[str, Any]) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for name in self._model.key_names:
            value = key.get(name)
            if value is None:
                raise ValidationError(f"missing key attribute: {name}")
            out[name] = self._serialize(name, value)

        extra = set(key).difference(self._model.key_names)
        if extra:
            raise ValidationError(f"not a key attribute: {sorted(extra)[0]}")
        return out

    def _to_item(self, item: Mapping[str, Any]) -> dict[str, Any]:
        for name in self._model.key_names:
            if item.get(name) is None:
                raise ValidationError(f"missing key attribute: {name}")
        return {name: self._serialize(name, value) for name, value in item.items()}

    def _from_item(self, item: Mapping[str, Any]) -> dict[str, Any]:
        return {name: from_wire(self._deserializer.deserialize(av)) for name, av in item.items()}
