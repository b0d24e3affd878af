"""
StorageOS api helper metrics.

Latency and result counts for calls made through the StorageOS client,
exported on the fencer's /metrics route:

- storageos_api_helper_duration_seconds{function}
- storageos_api_helper_total{function, error}

The error label is empty for successful calls.
"""

import time
from contextlib import contextmanager
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Histogram

registry = CollectorRegistry()

api_helper_latency = Histogram(
    "storageos_api_helper_duration_seconds",
    "Distribution of the length of time api helpers take to complete.",
    ["function"],
    registry=registry,
)

api_helper_results = Counter(
    "storageos_api_helper_total",
    "Number of api helper calls, partitioned by function name and error string.",
    ["function", "error"],
    registry=registry,
)


def record_result(function: str, error: Optional[BaseException] = None) -> None:
    api_helper_results.labels(function, str(error) if error is not None else "").inc()


@contextmanager
def observe(function: str):
    """Time the wrapped api call and count its result."""
    start = time.monotonic()
    try:
        yield
    except Exception as e:
        record_result(function, e)
        raise
    else:
        record_result(function)
    finally:
        api_helper_latency.labels(function).observe(time.monotonic() - start)
