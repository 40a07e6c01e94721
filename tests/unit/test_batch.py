from __future__ import annotations

import logging
import threading

import pytest
from botocore.exceptions import ClientError

from dynarecord import Record, attribute
from dynarecord.batch import BatchQueue
from dynarecord.errors import BatchSizeExceeded, ValidationError
from dynarecord.mocks import ANY, FakeDynamoDBClient, InMemoryDynamoDBClient, client_error


class Event(Record, batch_size=3):
    kind = attribute("symbol")

    def validate(self) -> None:
        if not self.kind:
            self.errors.append("kind is required")


class AuditEvent(Event):
    pass


class Visit(Record, hash_key="page", range_key="at"):
    at = attribute("integer")


def _bind(client: object) -> None:
    Event.use_client(client)
    Event.batch_write_queue.clear()
    AuditEvent.batch_write_queue.clear()


def test_queue_limit_and_ownership_per_class() -> None:
    assert Event.batch_write_queue.limit == 3
    assert AuditEvent.batch_write_queue.limit == 3
    assert AuditEvent.batch_write_queue is not Event.batch_write_queue
    assert Record.batch_write_queue.limit == 25


def test_enqueue_below_threshold_does_not_write() -> None:
    client = FakeDynamoDBClient()
    _bind(client)

    assert Event.enqueue_for_save(id="e1", kind="click") is True
    assert Event.enqueue_for_save({"id": "e2", "kind": "view"}) is True

    assert client.calls == []
    assert [e.id for e in Event.batch_write_queue] == ["e1", "e2"]


def test_enqueue_flushes_at_threshold() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "batch_write_item",
        {"RequestItems": {"events": [{"PutRequest": {"Item": ANY}}] * 3}},
        response={"UnprocessedItems": {}},
    )
    _bind(client)

    for i in range(3):
        assert Event.enqueue_for_save(id=f"e{i}", kind="click") is True

    client.assert_no_pending()
    assert len(Event.batch_write_queue) == 0
    items = [r["PutRequest"]["Item"] for r in client.calls[0][1]["RequestItems"]["events"]]
    assert items[0] == {"id": {"S": "e0"}, "kind": {"S": "click"}}


def test_enqueue_rejects_invalid_records() -> None:
    client = FakeDynamoDBClient()
    _bind(client)

    assert Event.enqueue_for_save(id="e1") is False
    assert len(Event.batch_write_queue) == 0

    assert Event.enqueue_for_save(id="e1", validate=False) is True
    assert len(Event.batch_write_queue) == 1


def test_flush_queue_returns_bulk_write_result() -> None:
    client = FakeDynamoDBClient()
    client.expect("batch_write_item", response={"UnprocessedItems": {}})
    _bind(client)

    Event.enqueue_for_save(id="e1", kind="click")

    assert Event.flush_queue() == [{"UnprocessedItems": {}}]
    assert len(Event.batch_write_queue) == 0
    client.assert_no_pending()


def test_flush_of_empty_queue_makes_no_call() -> None:
    client = FakeDynamoDBClient()
    _bind(client)

    assert Event.flush_queue() == []
    assert client.calls == []


def test_failed_flush_requeues_records(caplog: pytest.LogCaptureFixture) -> None:
    client = FakeDynamoDBClient()
    err = client_error("ThrottlingException", "slow down", "BatchWriteItem")
    client.expect("batch_write_item", error=err)
    _bind(client)

    Event.enqueue_for_save(id="e1", kind="click")
    Event.enqueue_for_save(id="e2", kind="click")

    with caplog.at_level(logging.WARNING, logger="dynarecord.batch"):
        with pytest.raises(ClientError):
            Event.flush_queue()

    assert [e.id for e in Event.batch_write_queue] == ["e1", "e2"]
    assert "re-queued" in caplog.text


def test_dynamo_batch_save_writes_full_attributes_in_chunks() -> None:
    client = InMemoryDynamoDBClient()
    client.create_table(TableName="events", KeySchema=[{"AttributeName": "id", "KeyType": "HASH"}])
    _bind(client)

    records = [Event.load({"id": f"e{i}", "kind": "view"}) for i in range(30)]
    records[0].kind = "click"

    responses = Event.dynamo_batch_save(records)

    assert len(responses) == 2
    names = [name for name, _ in client.calls]
    assert names.count("batch_write_item") == 2
    assert names.count("put_item") == 30
    assert len(client.items("events")) == 30
    assert Event.find("e0").kind == "click"


def test_dynamo_batch_save_of_nothing_makes_no_call() -> None:
    client = FakeDynamoDBClient()
    _bind(client)
    assert Event.dynamo_batch_save([]) == []
    assert client.calls == []


def test_batch_find_with_no_keys_makes_no_call() -> None:
    client = FakeDynamoDBClient()
    _bind(client)
    assert Event.batch_find() == []
    assert Event.batch_find([]) == []
    assert client.calls == []


def test_batch_find_rejects_more_than_100_keys() -> None:
    client = FakeDynamoDBClient()
    _bind(client)

    with pytest.raises(BatchSizeExceeded) as excinfo:
        Event.batch_find([f"e{i}" for i in range(150)])

    assert excinfo.value.requested == 150
    assert excinfo.value.limit == 100
    assert client.calls == []


def test_batch_find_returns_loaded_records() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "batch_get_item",
        {"RequestItems": {"events": {"Keys": [{"id": {"S": "e1"}}, {"id": {"S": "e2"}}]}}},
        response={
            "Responses": {
                "events": [
                    {"id": {"S": "e2"}, "kind": {"S": "view"}},
                    {"id": {"S": "e1"}, "kind": {"S": "click"}},
                ]
            },
            "UnprocessedKeys": {},
        },
    )
    _bind(client)

    found = Event.batch_find(["e1", "e2"])

    client.assert_no_pending()
    assert sorted(e.id for e in found) == ["e1", "e2"]
    assert all(e.new_record is False and e.changed == [] for e in found)


def test_batch_find_warns_on_unprocessed_keys(caplog: pytest.LogCaptureFixture) -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "batch_get_item",
        response={
            "Responses": {"events": []},
            "UnprocessedKeys": {"events": {"Keys": [{"id": {"S": "e1"}}]}},
        },
    )
    _bind(client)

    with caplog.at_level(logging.WARNING, logger="dynarecord.table"):
        assert Event.batch_find(["e1"]) == []

    assert "1 keys unprocessed" in caplog.text


def test_batch_find_with_range_keys() -> None:
    client = InMemoryDynamoDBClient()
    client.create_table(
        TableName="visits",
        KeySchema=[{"AttributeName": "page", "KeyType": "HASH"}, {"AttributeName": "at", "KeyType": "RANGE"}],
    )
    Visit.use_client(client)
    Visit.dynamo_batch_save([Visit(page="home", at=1), Visit(page="home", at=2), Visit(page="docs", at=1)])

    found = Visit.batch_find([("home", 2), ("docs", "1"), ("home", 9)])

    assert sorted((v.page, v.at) for v in found) == [("docs", 1), ("home", 2)]


def test_batch_queue_validates_limit() -> None:
    with pytest.raises(ValidationError):
        BatchQueue(list, limit=0)

    queue: BatchQueue[int] = BatchQueue(list, limit=2)
    with pytest.raises(ValidationError):
        queue.limit = True  # type: ignore[assignment]
    queue.limit = 5
    assert queue.limit == 5


def test_batch_queue_returns_writer_result_on_threshold() -> None:
    written: list[list[int]] = []

    def writer(items: list[int]) -> int:
        written.append(items)
        return len(items)

    queue: BatchQueue[int] = BatchQueue(writer, limit=2)
    assert queue.enqueue(1) is None
    assert queue.enqueue(2) == 2
    assert queue.enqueue(3) is None
    queue.clear()
    assert queue.flush() == 0
    assert written == [[1, 2], []]


def test_batch_queue_requeues_ahead_of_newer_items() -> None:
    calls = 0

    def writer(items: list[int]) -> None:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("boom")

    queue: BatchQueue[int] = BatchQueue(writer, limit=10)
    queue.enqueue(1)
    queue.enqueue(2)
    with pytest.raises(RuntimeError, match="boom"):
        queue.flush()
    queue.enqueue(3)

    assert list(queue) == [1, 2, 3]


def test_batch_queue_is_safe_across_threads() -> None:
    batches: list[list[int]] = []
    queue: BatchQueue[int] = BatchQueue(batches.append, limit=10)

    def produce(start: int) -> None:
        for i in range(start, start + 25):
            queue.enqueue(i)

    threads = [threading.Thread(target=produce, args=(n * 100,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(queue) == 0
    assert [len(b) for b in batches] == [10] * 10
    expected = [i for n in range(4) for i in range(n * 100, n * 100 + 25)]
    assert sorted(i for b in batches for i in b) == sorted(expected)


def test_zero_batch_size_is_rejected() -> None:
    with pytest.raises(ValidationError, match="must be > 0"):

        class Tiny(Record, batch_size=0):
            pass


def test_enqueue_rejects_records_without_a_key() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "batch_write_item", {"RequestItems": {"events": [ANY] * 3}}, response={"UnprocessedItems": {}}
    )
    _bind(client)

    assert Event.enqueue_for_save(kind="no-key") is False
    assert Event.enqueue_for_save(kind="no-key", validate=False) is False
    assert [Event.enqueue_for_save(id=f"e{i}", kind="click") for i in range(3)] == [True, True, True]

    client.assert_no_pending()
    assert len(client.calls) == 1
    assert len(Event.batch_write_queue) == 0


def test_permanent_flush_failure_drops_the_batch(caplog: pytest.LogCaptureFixture) -> None:
    client = FakeDynamoDBClient()
    err = client_error("ValidationException", "Item keys contain duplicates", "BatchWriteItem")
    client.expect("batch_write_item", error=err)
    client.expect("batch_write_item", response={"UnprocessedItems": {}})
    _bind(client)

    Event.enqueue_for_save(id="e1", kind="click")
    with caplog.at_level(logging.WARNING, logger="dynarecord.batch"):
        with pytest.raises(ClientError):
            Event.flush_queue()

    assert len(Event.batch_write_queue) == 0
    assert "dropped" in caplog.text
    assert [Event.enqueue_for_save(id=f"e{i}", kind="click") for i in range(3)] == [True, True, True]
    client.assert_no_pending()
    assert len(Event.batch_write_queue) == 0


def test_dynamo_batch_save_collapses_duplicate_keys() -> None:
    def check(req: dict) -> None:
        puts = req["RequestItems"]["events"]
        assert [p["PutRequest"]["Item"] for p in puts] == [
            {"id": {"S": "e2"}, "kind": {"S": "view"}},
            {"id": {"S": "e1"}, "kind": {"S": "click"}},
        ]

    client = FakeDynamoDBClient()
    client.expect("batch_write_item", check, response={"UnprocessedItems": {}})
    _bind(client)

    Event.dynamo_batch_save(
        [Event(id="e1", kind="view"), Event(id="e2", kind="view"), Event(id="e1", kind="click")]
    )

    client.assert_no_pending()


def test_batch_queue_discards_on_matching_errors() -> None:
    def writer(items: list[int]) -> None:
        raise ValueError("bad item")

    queue: BatchQueue[int] = BatchQueue(writer, limit=10, discard_on=lambda err: isinstance(err, ValueError))
    queue.enqueue(1)
    with pytest.raises(ValueError, match="bad item"):
        queue.flush()

    assert len(queue) == 0
