from __future__ import annotations

from datetime import timezone

import pytest

from sunset_core.devices import (
    ComplianceState,
    ManagementState,
    device_from_dict,
    load_inventory,
    normalize_serial,
    save_inventory,
)


@pytest.mark.core
def test_inventory_roundtrip(tmp_path, make_device):
    uri = (tmp_path / "inventory" / "devices.json").as_posix()
    devices = [make_device(group_memberships=("g1", "g2")), make_device(last_sync_time=None)]
    save_inventory(uri, devices)
    assert load_inventory(uri) == devices


@pytest.mark.core
def test_load_inventory_missing_file(tmp_path):
    assert load_inventory((tmp_path / "missing.json").as_posix()) == []


@pytest.mark.core
def test_device_from_dict_coerces_loose_values():
    device = device_from_dict(
        {
            "device_id": "dev-1",
            "serial_number": " sn-42 ",
            "management_state": "managed",
            "compliance_state": "noncompliant",
            "last_sync_time": "2026-05-01T10:00:00Z",
            "free_storage_bytes": "1024",
            "group_memberships": ["g1", "g1", "", "g2"],
        }
    )
    assert device.serial_number == "SN-42"
    assert device.management_state is ManagementState.MANAGED
    assert device.compliance_state is ComplianceState.NON_COMPLIANT
    assert device.last_sync_time is not None
    assert device.last_sync_time.tzinfo == timezone.utc
    assert device.free_storage_bytes == 1024
    assert device.group_memberships == ("g1", "g2")


@pytest.mark.core
def test_device_from_dict_never_synced_and_unknown_states():
    device = device_from_dict(
        {
            "device_id": "dev-1",
            "last_sync_time": "0001-01-01T00:00:00Z",
            "management_state": "retirePending",
        }
    )
    assert device.last_sync_time is None
    assert device.management_state is ManagementState.UNKNOWN
    assert device.serial_number is None
    assert normalize_serial("  ") is None


@pytest.mark.core
def test_device_from_dict_requires_device_id():
    with pytest.raises(ValueError):
        device_from_dict({"serial_number": "SN1"})
