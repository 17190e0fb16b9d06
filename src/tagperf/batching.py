from __future__ import annotations

import logging
from typing import Callable, Generic, Sequence, TypeVar

from tagperf.util.logging import log_structured_event

LOG = logging.getLogger(__name__)
DEFAULT_PROGRESS_INTERVAL = 10_000

T = TypeVar("T")


class BatchBuffer(Generic[T]):
    """Accumulate items and hand them to ``flush_fn`` in fixed-size batches.

    ``flush()`` must be called once input is exhausted so the trailing partial
    batch is written too. Used as a context manager, the buffer flushes on a
    clean exit and discards pending items when the block raises.
    """

    def __init__(self, capacity: int, flush_fn: Callable[[Sequence[T]], object]):
        capacity = int(capacity)
        if capacity <= 0:
            raise ValueError("capacity must be a positive integer")
        self.capacity = capacity
        self._flush_fn = flush_fn
        self._pending: list[T] = []
        self.batches_flushed = 0
        self.items_flushed = 0

    def __len__(self):
        return len(self._pending)

    def add(self, item: T) -> None:
        self._pending.append(item)
        if len(self._pending) >= self.capacity:
            self.flush()

    def flush(self) -> int:
        if not self._pending:
            return 0
        batch = self._pending
        self._pending = []
        self._flush_fn(batch)
        self.batches_flushed += 1
        self.items_flushed += len(batch)
        return len(batch)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.flush()
        else:
            self._pending = []
        return False


class ProgressCounter:
    def __init__(self, label: str, interval: int = DEFAULT_PROGRESS_INTERVAL, *, logger: logging.Logger | None = None):
        self.label = label
        self.interval = max(1, int(interval))
        self.count = 0
        self._log = logger or LOG

    def increment(self, step: int = 1) -> int:
        before = self.count
        self.count += int(step)
        if self.count // self.interval > before // self.interval:
            log_structured_event(
                self._log,
                logging.INFO,
                "setup_progress",
                backend=self.label,
                processed=self.count,
            )
        return self.count
