"""Prometheus metrics for key management operations.

Metrics follow Prometheus naming conventions:
- Operation counts by outcome
- KMS request latencies
- Reconciliation outcomes per key
- Rotation conflicts (Put rejected because a newer entry won)
"""

import asyncio
import time
from contextlib import contextmanager
from typing import Iterator

from prometheus_client import Counter, Gauge, Histogram


KEY_OPERATIONS_TOTAL = Counter(
    "keymanager_operations_total",
    "Total number of key manager operations",
    ["operation", "status"],
)

KMS_ERRORS_TOTAL = Counter(
    "keymanager_kms_errors_total",
    "Total number of failed KMS requests",
    ["operation", "error_type"],
)

# Buckets sized for remote KMS round trips (in seconds)
KMS_LATENCY_BUCKETS = (
    0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0
)

KMS_REQUEST_LATENCY = Histogram(
    "keymanager_kms_request_latency_seconds",
    "Latency of KMS requests",
    ["operation"],
    buckets=KMS_LATENCY_BUCKETS,
)

RECONCILED_KEYS_TOTAL = Counter(
    "keymanager_reconciled_keys_total",
    "KMS keys seen during reconciliation, by outcome",
    ["outcome"],
)

ROTATION_CONFLICTS_TOTAL = Counter(
    "keymanager_rotation_conflicts_total",
    "Generated keys orphaned because a newer entry already existed",
)

KEY_ENTRIES = Gauge(
    "keymanager_entries",
    "Number of logical keys currently held in the key entry store",
)


class KeyManagerMetrics:
    """Helpers that record operation and KMS request metrics."""

    @contextmanager
    def track_operation(self, operation: str) -> Iterator[None]:
        """Count a key manager operation by outcome.

        Usage:
            with metrics.track_operation("generate_key"):
                ...
        """
        status = "success"
        try:
            yield
        except asyncio.CancelledError:
            status = "cancelled"
            raise
        except Exception:
            status = "error"
            raise
        finally:
            KEY_OPERATIONS_TOTAL.labels(operation=operation, status=status).inc()

    @contextmanager
    def track_kms_request(self, operation: str) -> Iterator[None]:
        """Time a single KMS request and count its failures."""
        start_time = time.perf_counter()
        try:
            yield
        except Exception as e:
            KMS_ERRORS_TOTAL.labels(
                operation=operation,
                error_type=type(e).__name__,
            ).inc()
            raise
        finally:
            KMS_REQUEST_LATENCY.labels(operation=operation).observe(
                time.perf_counter() - start_time
            )

    def record_reconciliation(self, outcome: str, count: int = 1) -> None:
        if count:
            RECONCILED_KEYS_TOTAL.labels(outcome=outcome).inc(count)

    def record_rotation_conflict(self) -> None:
        ROTATION_CONFLICTS_TOTAL.inc()

    def set_entry_count(self, count: int) -> None:
        KEY_ENTRIES.set(count)


metrics = KeyManagerMetrics()
