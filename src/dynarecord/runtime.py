from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, cast

import boto3
from botocore.config import Config

from .errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AwsCallMetric:
    service: str
    operation: str
    seconds: float
    ok: bool


@dataclass(frozen=True)
class Settings:
    region: str | None = None
    endpoint_url: str | None = None
    connect_timeout: float = 5.0
    read_timeout: float = 10.0
    max_attempts: int = 3


def _env_number[N: (int, float)](
    environ: Mapping[str, str], name: str, default: N, cast_to: Callable[[str], N]
) -> N:
    raw = (environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = cast_to(raw)
    except ValueError as err:
        raise ValidationError(f"{name} must be a number, got {raw!r}") from err
    if value <= 0:
        raise ValidationError(f"{name} must be > 0")
    return value


def load_settings(environ: Mapping[str, str] = os.environ) -> Settings:
    defaults = Settings()
    region = (environ.get("DYNARECORD_REGION") or environ.get("AWS_REGION") or "").strip() or None
    endpoint_url = (environ.get("DYNARECORD_ENDPOINT_URL") or "").strip() or None
    return Settings(
        region=region,
        endpoint_url=endpoint_url,
        connect_timeout=_env_number(
            environ, "DYNARECORD_CONNECT_TIMEOUT", defaults.connect_timeout, float
        ),
        read_timeout=_env_number(environ, "DYNARECORD_READ_TIMEOUT", defaults.read_timeout, float),
        max_attempts=_env_number(environ, "DYNARECORD_MAX_ATTEMPTS", defaults.max_attempts, int),
    )


def create_boto3_config(
    *,
    connect_timeout: float = 5.0,
    read_timeout: float = 10.0,
    max_attempts: int = 3,
) -> Config:
    return Config(
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
        retries={"max_attempts": max_attempts, "mode": "adaptive"},
    )


class _InstrumentedClient:
    def __init__(self, client: Any, service: str, on_call: Callable[[AwsCallMetric], None]) -> None:
        self._client = client
        self._service = service
        self._on_call = on_call

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self._client, name)
        if name.startswith("_") or not callable(attr):
            return attr

        def wrapped(*args: Any, **kwargs: Any) -> Any:
            start = time.monotonic()
            try:
                out = attr(*args, **kwargs)
            except Exception:
                self._on_call(
                    AwsCallMetric(
                        service=self._service,
                        operation=name,
                        seconds=time.monotonic() - start,
                        ok=False,
                    )
                )
                raise

            self._on_call(
                AwsCallMetric(
                    service=self._service,
                    operation=name,
                    seconds=time.monotonic() - start,
                    ok=True,
                )
            )
            return out

        return wrapped


def instrument_client(
    client: Any,
    *,
    on_call: Callable[[AwsCallMetric], None],
    service: str = "dynamodb",
) -> Any:
    return _InstrumentedClient(client, service, on_call)


_clients: dict[tuple[str | None, str | None], Any] = {}


def get_dynamodb_client(
    settings: Settings | None = None,
    *,
    session: Any | None = None,
    metrics: Callable[[AwsCallMetric], None] | None = None,
) -> Any:
    """Return the process-wide DynamoDB client for ``settings``, creating it once."""
    settings = settings or load_settings()
    key = (settings.region, settings.endpoint_url)
    existing = _clients.get(key)
    if existing is not None:
        return existing

    sess = session or boto3.session.Session(region_name=settings.region)
    config = create_boto3_config(
        connect_timeout=settings.connect_timeout,
        read_timeout=settings.read_timeout,
        max_attempts=settings.max_attempts,
    )
    client = cast(Any, sess).client(
        "dynamodb",
        region_name=settings.region,
        endpoint_url=settings.endpoint_url,
        config=config,
    )
    if metrics is not None:
        client = instrument_client(client, on_call=metrics)

    logger.debug(f"Created DynamoDB client (region={settings.region}, endpoint={settings.endpoint_url})")
    _clients[key] = client
    return client


def _reset_clients_for_tests() -> None:
    _clients.clear()
