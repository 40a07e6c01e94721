from __future__ import annotations

import pytest

from dynarecord.errors import ValidationError
from dynarecord.mocks import FakeDynamoDBClient
from dynarecord.runtime import (
    AwsCallMetric,
    Settings,
    _reset_clients_for_tests,
    create_boto3_config,
    get_dynamodb_client,
    instrument_client,
    load_settings,
)


def test_load_settings_defaults() -> None:
    assert load_settings({}) == Settings()


def test_load_settings_from_environment() -> None:
    settings = load_settings(
        {
            "AWS_REGION": "eu-west-1",
            "DYNARECORD_ENDPOINT_URL": " http://localhost:8000 ",
            "DYNARECORD_CONNECT_TIMEOUT": "1.5",
            "DYNARECORD_READ_TIMEOUT": "3",
            "DYNARECORD_MAX_ATTEMPTS": "7",
        }
    )
    assert settings == Settings(
        region="eu-west-1",
        endpoint_url="http://localhost:8000",
        connect_timeout=1.5,
        read_timeout=3.0,
        max_attempts=7,
    )


def test_dynarecord_region_wins_over_aws_region() -> None:
    settings = load_settings({"AWS_REGION": "eu-west-1", "DYNARECORD_REGION": "us-west-2"})
    assert settings.region == "us-west-2"


@pytest.mark.parametrize(
    ("name", "value", "match"),
    [
        ("DYNARECORD_MAX_ATTEMPTS", "three", "must be a number"),
        ("DYNARECORD_MAX_ATTEMPTS", "2.5", "must be a number"),
        ("DYNARECORD_READ_TIMEOUT", "0", "must be > 0"),
        ("DYNARECORD_CONNECT_TIMEOUT", "-1", "must be > 0"),
    ],
)
def test_load_settings_rejects_bad_numbers(name: str, value: str, match: str) -> None:
    with pytest.raises(ValidationError, match=match):
        load_settings({name: value})


def test_create_boto3_config() -> None:
    cfg = create_boto3_config(connect_timeout=2.0, read_timeout=4.0, max_attempts=3)
    assert cfg.connect_timeout == 2.0
    assert cfg.read_timeout == 4.0
    assert cfg.retries == {"max_attempts": 3, "mode": "adaptive"}


def test_instrument_client_records_calls() -> None:
    metrics: list[AwsCallMetric] = []

    client = FakeDynamoDBClient()
    client.expect("put_item", response={})
    client.expect("get_item", error=RuntimeError("boom"))
    wrapped = instrument_client(client, on_call=metrics.append)

    wrapped.put_item(TableName="t", Item={})
    with pytest.raises(RuntimeError, match="boom"):
        wrapped.get_item(TableName="t", Key={})

    assert [(m.service, m.operation, m.ok) for m in metrics] == [
        ("dynamodb", "put_item", True),
        ("dynamodb", "get_item", False),
    ]
    assert all(m.seconds >= 0 for m in metrics)
    assert wrapped.calls is client.calls


class _FakeSession:
    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, object]]] = []

    def client(self, service_name: str, **kwargs: object) -> object:
        self.calls.append((service_name, kwargs))
        return FakeDynamoDBClient()


def test_get_dynamodb_client_caches_per_region_and_endpoint() -> None:
    _reset_clients_for_tests()
    sess = _FakeSession()
    settings = Settings(region="us-east-1", endpoint_url="http://localhost:8000", max_attempts=5)

    c1 = get_dynamodb_client(settings, session=sess)
    c2 = get_dynamodb_client(settings, session=sess)
    c3 = get_dynamodb_client(Settings(region="eu-west-1"), session=sess)

    assert c1 is c2
    assert c3 is not c1
    assert len(sess.calls) == 2
    service, kwargs = sess.calls[0]
    assert service == "dynamodb"
    assert kwargs["region_name"] == "us-east-1"
    assert kwargs["endpoint_url"] == "http://localhost:8000"
    assert kwargs["config"].retries["max_attempts"] == 5
    _reset_clients_for_tests()


def test_get_dynamodb_client_can_instrument() -> None:
    _reset_clients_for_tests()
    metrics: list[AwsCallMetric] = []

    client = get_dynamodb_client(Settings(region="us-east-1"), session=_FakeSession(), metrics=metrics.append)
    client.expect("delete_item")
    client.delete_item(TableName="t", Key={})

    assert [m.operation for m in metrics] == ["expect", "delete_item"]
    _reset_clients_for_tests()
