from __future__ import annotations

from contextlib import contextmanager
from time import perf_counter


@contextmanager
def timed():
    """Measure the wall-clock duration of the enclosed block.

    The yielded payload is filled in on exit, including when the block raises,
    so callers can still report how long a failed operation ran.
    """
    start = perf_counter()
    payload = {"seconds": 0.0}
    try:
        yield payload
    finally:
        payload["seconds"] = perf_counter() - start


def elapsed_ms(seconds: float) -> float:
    return round(max(0.0, float(seconds)) * 1000.0, 3)
