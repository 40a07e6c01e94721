from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from .mocks import ANY, FakeDynamoDBClient, InMemoryDynamoDBClient


def fixed_clock(value: float | datetime) -> Callable[[], float]:
    """Clock for ``Model.use_client`` that always returns ``value`` as epoch seconds."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            raise ValueError("datetime must be timezone-aware")
        seconds = value.timestamp()
    else:
        seconds = float(value)
    if seconds < 0:
        raise ValueError("clock value must be >= 0")

    def clock() -> float:
        return seconds

    return clock


__all__ = [
    "ANY",
    "FakeDynamoDBClient",
    "InMemoryDynamoDBClient",
    "fixed_clock",
]
