from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Iterable

import fsspec

from sunset_core.devices.types import ComplianceState, DeviceRecord, ManagementState
from sunset_core.storage.paths import parent_path


def load_inventory(uri: str) -> list[DeviceRecord]:
    fs, path = fsspec.core.url_to_fs(uri)
    if not fs.exists(path):
        return []
    with fs.open(path, "rb") as handle:
        payload = json.loads(handle.read().decode("utf-8"))
    items = payload.get("devices", []) if isinstance(payload, dict) else []
    results: list[DeviceRecord] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        results.append(device_from_dict(item))
    return results


def save_inventory(uri: str, devices: Iterable[DeviceRecord]) -> str:
    fs, path = fsspec.core.url_to_fs(uri)
    fs.makedirs(parent_path(path), exist_ok=True)
    payload = {
        "updated_at": datetime.now(timezone.utc).isoformat(),
        "devices": [device_to_dict(device) for device in devices],
    }
    with fs.open(path, "wb") as handle:
        handle.write(json.dumps(payload, ensure_ascii=True).encode("utf-8"))
    return uri


def device_to_dict(device: DeviceRecord) -> dict[str, object]:
    return {
        "device_id": device.device_id,
        "serial_number": device.serial_number,
        "model": device.model,
        "manufacturer": device.manufacturer,
        "owner_principal": device.owner_principal,
        "management_state": device.management_state.value,
        "compliance_state": device.compliance_state.value,
        "last_sync_time": (
            device.last_sync_time.isoformat() if device.last_sync_time else None
        ),
        "free_storage_bytes": device.free_storage_bytes,
        "total_storage_bytes": device.total_storage_bytes,
        "provisioning_registry_id": device.provisioning_registry_id,
        "directory_object_id": device.directory_object_id,
        "group_memberships": list(device.group_memberships),
        "device_name": device.device_name,
        "membership_error": device.membership_error,
    }


def device_from_dict(payload: dict[str, object]) -> DeviceRecord:
    device_id = coerce_optional_str(payload.get("device_id"))
    if device_id is None:
        raise ValueError("Device record is missing device_id")
    return DeviceRecord(
        device_id=device_id,
        serial_number=normalize_serial(payload.get("serial_number")),
        model=coerce_optional_str(payload.get("model")),
        manufacturer=coerce_optional_str(payload.get("manufacturer")),
        owner_principal=coerce_optional_str(payload.get("owner_principal")),
        management_state=coerce_management_state(payload.get("management_state")),
        compliance_state=coerce_compliance_state(payload.get("compliance_state")),
        last_sync_time=coerce_datetime(payload.get("last_sync_time")),
        free_storage_bytes=coerce_int(payload.get("free_storage_bytes")),
        total_storage_bytes=coerce_int(payload.get("total_storage_bytes")),
        provisioning_registry_id=coerce_optional_str(
            payload.get("provisioning_registry_id")
        ),
        directory_object_id=coerce_optional_str(payload.get("directory_object_id")),
        group_memberships=_coerce_groups(payload.get("group_memberships")),
        device_name=coerce_optional_str(payload.get("device_name")),
        membership_error=coerce_optional_str(payload.get("membership_error")),
    )


def normalize_serial(value: object) -> str | None:
    text = coerce_optional_str(value)
    if text is None:
        return None
    return text.upper()


def coerce_optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def coerce_int(value: object) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def coerce_datetime(value: object) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    else:
        text = coerce_optional_str(value)
        if text is None:
            return None
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    # Management systems report "never synced" as the epoch floor.
    if parsed.year <= 1:
        return None
    return parsed


def coerce_management_state(value: object) -> ManagementState:
    text = (coerce_optional_str(value) or "").lower()
    for state in ManagementState:
        if state.value.lower() == text:
            return state
    return ManagementState.UNKNOWN


def coerce_compliance_state(value: object) -> ComplianceState:
    text = (coerce_optional_str(value) or "").lower()
    for state in ComplianceState:
        if state.value.lower() == text:
            return state
    return ComplianceState.UNKNOWN


def _coerce_groups(value: object) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple, set)):
        return ()
    deduped: list[str] = []
    for item in value:
        text = coerce_optional_str(item)
        if text and text not in deduped:
            deduped.append(text)
    return tuple(deduped)
