"""Tests for the Prometheus metrics module."""

from datetime import datetime, timezone

import pytest
from prometheus_client import REGISTRY

from keymanager.core.exceptions import ReconciliationError
from keymanager.core.key_types import KeyType
from keymanager.core.metrics import KeyManagerMetrics


def sample(name: str, **labels) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


@pytest.fixture
def fresh_metrics():
    return KeyManagerMetrics()


class TestTrackOperation:
    """Tests for operation tracking."""

    def test_success_counted(self, fresh_metrics):
        before = sample("keymanager_operations_total", operation="test_op", status="success")

        with fresh_metrics.track_operation("test_op"):
            pass

        assert sample("keymanager_operations_total", operation="test_op", status="success") == before + 1

    def test_error_counted(self, fresh_metrics):
        before = sample("keymanager_operations_total", operation="test_op", status="error")

        with pytest.raises(ValueError):
            with fresh_metrics.track_operation("test_op"):
                raise ValueError("bad digest")

        assert sample("keymanager_operations_total", operation="test_op", status="error") == before + 1

    def test_kms_request_failure_counted(self, fresh_metrics):
        before = sample("keymanager_kms_errors_total", operation="test_req", error_type="RuntimeError")

        with pytest.raises(RuntimeError):
            with fresh_metrics.track_kms_request("test_req"):
                raise RuntimeError("boom")

        assert sample(
            "keymanager_kms_errors_total", operation="test_req", error_type="RuntimeError"
        ) == before + 1
        assert sample("keymanager_kms_request_latency_seconds_count", operation="test_req") >= 1


class TestKeyManagerMetrics:
    """Tests for metrics recorded by key manager operations."""

    @pytest.mark.asyncio
    async def test_rotation_conflict_counted(self, manager, make_entry):
        before = sample("keymanager_rotation_conflicts_total")
        manager.store.put("svid-1", make_entry("svid-1", "kms-x", datetime(2100, 1, 1, tzinfo=timezone.utc)))

        await manager.generate_key("svid-1", KeyType.EC_P256)

        assert sample("keymanager_rotation_conflicts_total") == before + 1

    @pytest.mark.asyncio
    async def test_entry_gauge(self, manager):
        await manager.generate_key("svid-1", KeyType.EC_P256)
        await manager.generate_key("svid-2", KeyType.EC_P256)

        assert sample("keymanager_entries") == 2

    @pytest.mark.asyncio
    async def test_entry_gauge_kept_when_reconfigure_fails(self, manager, seed_key):
        await manager.generate_key("svid-1", KeyType.EC_P256)
        await seed_key("svid-2")
        await seed_key("svid-3")
        await seed_key("svid-odd", "ECC_NIST_P521")

        with pytest.raises(ReconciliationError):
            await manager.configure({"backend": "local", "fail_on_partial_reconciliation": True})

        assert len(manager.store) == 1
        assert sample("keymanager_entries") == 1
