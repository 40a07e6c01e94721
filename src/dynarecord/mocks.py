from __future__ import annotations

import copy
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from botocore.exceptions import ClientError


class _AnySentinel:
    def __repr__(self) -> str:  # pragma: no cover
        return "ANY"


ANY: Any = _AnySentinel()


def _assert_match(expected: Any, actual: Any, *, path: str) -> None:
    if expected is ANY:
        return

    if isinstance(expected, dict):
        if not isinstance(actual, dict):
            raise AssertionError(f"{path}: expected dict, got {type(actual).__name__}")
        for k, v in expected.items():
            if k not in actual:
                raise AssertionError(f"{path}: missing key {k!r}")
            _assert_match(v, actual[k], path=f"{path}.{k}")
        return

    if isinstance(expected, list):
        if not isinstance(actual, list):
            raise AssertionError(f"{path}: expected list, got {type(actual).__name__}")
        if len(expected) != len(actual):
            raise AssertionError(f"{path}: expected {len(expected)} items, got {len(actual)}")
        for i, (e, a) in enumerate(zip(expected, actual, strict=True)):
            _assert_match(e, a, path=f"{path}[{i}]")
        return

    if expected != actual:
        raise AssertionError(f"{path}: expected {expected!r}, got {actual!r}")


@dataclass(frozen=True)
class ExpectedCall:
    method: str
    expected: Mapping[str, Any] | Callable[[Mapping[str, Any]], None] | None = None
    response: Mapping[str, Any] | None = None
    error: Exception | None = None


class FakeDynamoDBClient:
    """Scripted client: each call must match the next ``expect``-ed one."""

    def __init__(self) -> None:
        self._expected: list[ExpectedCall] = []
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def expect(
        self,
        method: str,
        expected: Mapping[str, Any] | Callable[[Mapping[str, Any]], None] | None = None,
        *,
        response: Mapping[str, Any] | None = None,
        error: Exception | None = None,
    ) -> None:
        self._expected.append(ExpectedCall(method=method, expected=expected, response=response, error=error))

    def assert_no_pending(self) -> None:
        if self._expected:
            raise AssertionError(f"pending expected calls: {self._expected!r}")

    def _handle(self, method: str, req: dict[str, Any]) -> Mapping[str, Any]:
        self.calls.append((method, dict(req)))
        if not self._expected:
            raise AssertionError(f"unexpected call: {method}")

        call = self._expected.pop(0)
        if call.method != method:
            raise AssertionError(f"expected {call.method}, got {method}")

        if callable(call.expected):
            call.expected(req)
        elif call.expected is not None:
            _assert_match(dict(call.expected), req, path=method)

        if call.error is not None:
            raise call.error

        return dict(call.response or {})

    def put_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("put_item", kwargs)

    def get_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("get_item", kwargs)

    def update_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("update_item", kwargs)

    def delete_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("delete_item", kwargs)

    def batch_get_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("batch_get_item", kwargs)

    def batch_write_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("batch_write_item", kwargs)


def client_error(code: str, message: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


def _key_token(av: Mapping[str, Any]) -> tuple[str, Any]:
    ((kind, value),) = av.items()
    if isinstance(value, bytearray):
        value = bytes(value)
    if isinstance(value, list):
        value = repr(value)
    return kind, value


class InMemoryDynamoDBClient:
    """Working single-process stand-in for the DynamoDB item API.

    Items are kept as AttributeValue maps. A table's key schema comes from
    ``create_table`` or, failing that, from the ``Key`` of the first keyed call
    made against it.
    """

    MAX_BATCH_GET_KEYS = 100
    MAX_BATCH_WRITE_ITEMS = 25

    def __init__(self) -> None:
        self._schemas: dict[str, tuple[str, ...]] = {}
        self._tables: dict[str, dict[tuple[Any, ...], dict[str, Any]]] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def create_table(
        self,
        *,
        TableName: str,  # noqa: N803
        KeySchema: list[dict[str, str]],  # noqa: N803
        **_: Any,
    ) -> dict[str, Any]:
        self.calls.append(("create_table", {"TableName": TableName, "KeySchema": KeySchema}))
        if TableName in self._schemas:
            raise client_error("ResourceInUseException", f"Table already exists: {TableName}", "CreateTable")

        ordered = sorted(KeySchema, key=lambda k: k["KeyType"] != "HASH")
        self._schemas[TableName] = tuple(k["AttributeName"] for k in ordered)
        self._tables[TableName] = {}
        return {"TableDescription": {"TableName": TableName, "TableStatus": "ACTIVE"}}

    def items(self, table_name: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(item) for item in self._tables.get(table_name, {}).values()]

    def _table(
        self, name: str, operation: str, key: Mapping[str, Any] | None = None
    ) -> dict[tuple[Any, ...], dict[str, Any]]:
        if name not in self._schemas:
            if key is None:
                raise client_error("ResourceNotFoundException", "Requested resource not found", operation)
            self._schemas[name] = tuple(key)
            self._tables[name] = {}
        return self._tables[name]

    def _token(self, table_name: str, attrs: Mapping[str, Any], operation: str) -> tuple[Any, ...]:
        names = self._schemas[table_name]
        if any(name not in attrs for name in names):
            raise client_error(
                "ValidationException", "The provided key element does not match the schema", operation
            )
        return tuple(_key_token(attrs[name]) for name in names)

    def get_item(self, *, TableName: str, Key: dict[str, Any], **_: Any) -> dict[str, Any]:  # noqa: N803
        self.calls.append(("get_item", {"TableName": TableName, "Key": Key}))
        table = self._table(TableName, "GetItem", Key)
        item = table.get(self._token(TableName, Key, "GetItem"))
        return {"Item": copy.deepcopy(item)} if item is not None else {}

    def put_item(self, *, TableName: str, Item: dict[str, Any], **_: Any) -> dict[str, Any]:  # noqa: N803
        self.calls.append(("put_item", {"TableName": TableName, "Item": Item}))
        table = self._table(TableName, "PutItem")
        table[self._token(TableName, Item, "PutItem")] = copy.deepcopy(Item)
        return {}

    def update_item(
        self,
        *,
        TableName: str,  # noqa: N803
        Key: dict[str, Any],  # noqa: N803
        AttributeUpdates: dict[str, dict[str, Any]] | None = None,  # noqa: N803
        **_: Any,
    ) -> dict[str, Any]:
        self.calls.append(
            ("update_item", {"TableName": TableName, "Key": Key, "AttributeUpdates": AttributeUpdates})
        )
        table = self._table(TableName, "UpdateItem", Key)
        token = self._token(TableName, Key, "UpdateItem")
        item = table.get(token) or copy.deepcopy(Key)

        for name, update in (AttributeUpdates or {}).items():
            if name in Key:
                raise client_error("ValidationException", f"Cannot update attribute {name}", "UpdateItem")
            action = update.get("Action", "PUT")
            if action == "PUT":
                item[name] = copy.deepcopy(update["Value"])
            elif action == "DELETE":
                item.pop(name, None)
            else:
                raise client_error("ValidationException", f"Unsupported action: {action}", "UpdateItem")

        table[token] = item
        return {}

    def delete_item(self, *, TableName: str, Key: dict[str, Any], **_: Any) -> dict[str, Any]:  # noqa: N803
        self.calls.append(("delete_item", {"TableName": TableName, "Key": Key}))
        table = self._table(TableName, "DeleteItem", Key)
        table.pop(self._token(TableName, Key, "DeleteItem"), None)
        return {}

    def batch_get_item(
        self, *, RequestItems: dict[str, dict[str, Any]], **_: Any  # noqa: N803
    ) -> dict[str, Any]:
        self.calls.append(("batch_get_item", {"RequestItems": RequestItems}))
        total = sum(len(req.get("Keys", [])) for req in RequestItems.values())
        if total > self.MAX_BATCH_GET_KEYS:
            raise client_error(
                "ValidationException", "Too many items requested for the BatchGetItem call", "BatchGetItem"
            )

        responses: dict[str, list[dict[str, Any]]] = {}
        for table_name, req in RequestItems.items():
            table = self._table(table_name, "BatchGetItem")
            found = responses.setdefault(table_name, [])
            for key in req.get("Keys", []):
                item = table.get(self._token(table_name, key, "BatchGetItem"))
                if item is not None:
                    found.append(copy.deepcopy(item))
        return {"Responses": responses, "UnprocessedKeys": {}}

    def batch_write_item(
        self, *, RequestItems: dict[str, list[dict[str, Any]]], **_: Any  # noqa: N803
    ) -> dict[str, Any]:
        self.calls.append(("batch_write_item", {"RequestItems": RequestItems}))
        total = sum(len(reqs) for reqs in RequestItems.values())
        if total == 0 or total > self.MAX_BATCH_WRITE_ITEMS:
            raise client_error(
                "ValidationException", f"BatchWriteItem takes 1 to 25 requests, got {total}", "BatchWriteItem"
            )

        for table_name, reqs in RequestItems.items():
            for req in reqs:
                if "PutRequest" in req:
                    self.put_item(TableName=table_name, Item=req["PutRequest"]["Item"])
                elif "DeleteRequest" in req:
                    self.delete_item(TableName=table_name, Key=req["DeleteRequest"]["Key"])
                else:
                    raise client_error("ValidationException", "Unknown write request", "BatchWriteItem")
        return {"UnprocessedItems": {}}
