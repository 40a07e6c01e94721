from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from typing import Any

from .errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 25


class BatchQueue[T]:
    """Pending writes for one model class, flushed in bulk through ``writer``.

    Appending and the threshold flush it may trigger run under one lock, as do
    draining and flushing, so a queue can be shared between threads. The writer
    runs while the lock is held.

    If the writer raises, the drained items go back to the front of the queue
    and the error propagates. Errors matching ``discard_on`` drop the drained
    items instead, since writing them again would fail the same way.
    """

    def __init__(
        self,
        writer: Callable[[list[T]], Any],
        *,
        limit: int = DEFAULT_BATCH_SIZE,
        discard_on: Callable[[BaseException], bool] | None = None,
    ) -> None:
        self._writer = writer
        self._discard_on = discard_on
        self._limit = self._check_limit(limit)
        self._items: list[T] = []
        self._lock = threading.Lock()

    @staticmethod
    def _check_limit(limit: int) -> int:
        if not isinstance(limit, int) or isinstance(limit, bool) or limit <= 0:
            raise ValidationError("batch size limit must be > 0")
        return limit

    @property
    def limit(self) -> int:
        return self._limit

    @limit.setter
    def limit(self, value: int) -> None:
        self._limit = self._check_limit(value)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))

    def enqueue(self, item: T) -> Any | None:
        """Append ``item``; returns the writer's result when this triggered a flush."""
        with self._lock:
            self._items.append(item)
            if len(self._items) < self._limit:
                return None
            return self._drain()

    def flush(self) -> Any:
        with self._lock:
            return self._drain()

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def _drain(self) -> Any:
        pending = self._items
        self._items = []
        try:
            result = self._writer(pending)
        except Exception as err:
            if self._discard_on is not None and self._discard_on(err):
                logger.warning(f"Batch write of {len(pending)} items failed permanently; dropped: {err}")
            else:
                logger.warning(f"Batch write of {len(pending)} items failed; re-queued")
                self._items[:0] = pending
            raise

        logger.info(f"Flushed {len(pending)} queued items")
        return result
