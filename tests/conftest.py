from datetime import datetime, timedelta, timezone

import pytest

from sunset_core.config import get_config
from sunset_core.devices.types import ComplianceState, DeviceRecord, ManagementState

_ENV_KEYS = (
    "SUNSET_BACKEND",
    "SUNSET_SANDBOX_STATE",
    "SUNSET_AUDIT_ROOT",
    "SUNSET_MAX_WORKERS",
    "SUNSET_GATE_CLEANUP_ON_WIPE",
    "GRAPH_BASE_URL",
    "GRAPH_ACCESS_TOKEN",
    "GRAPH_TIMEOUT_S",
    "NOTIFY_WEBHOOK_URL",
    "NOTIFY_WEBHOOK_SECRET",
    "NOTIFY_TIMEOUT_S",
)

NOW = datetime(2026, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch):
    for name in _ENV_KEYS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("LOG_LEVEL", "INFO")
    get_config.cache_clear()
    yield
    get_config.cache_clear()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def make_device():
    counter = {"value": 0}

    def _factory(**overrides) -> DeviceRecord:
        counter["value"] += 1
        index = counter["value"]
        fields = {
            "device_id": f"dev-{index}",
            "serial_number": f"SN{index:04d}",
            "model": "Chromebook 11",
            "manufacturer": "Acme",
            "owner_principal": f"student{index}@school.test",
            "management_state": ManagementState.MANAGED,
            "compliance_state": ComplianceState.COMPLIANT,
            "last_sync_time": NOW - timedelta(days=2),
            "free_storage_bytes": 8_000_000_000,
            "total_storage_bytes": 32_000_000_000,
            "provisioning_registry_id": None,
            "directory_object_id": None,
            "group_memberships": (),
            "device_name": f"LAPTOP-{index:04d}",
        }
        fields.update(overrides)
        return DeviceRecord(**fields)

    return _factory
