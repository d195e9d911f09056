from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from typing import Any, Iterable

import fsspec

from sunset_core.devices.store import (
    coerce_optional_str,
    device_from_dict,
    device_to_dict,
    normalize_serial,
)
from sunset_core.devices.types import DeviceRecord
from sunset_core.errors import NotFoundError, ServiceError
from sunset_core.logging import get_logger
from sunset_core.pipeline import Backend
from sunset_core.providers.types import DirectoryEntry, RegistryEntry, ServiceBundle
from sunset_core.storage.paths import parent_path

logger = get_logger(__name__)

FAILURE_KEYS = ("wipe", "provisioning", "directory", "groups")


class SandboxState:
    """JSON state file standing in for every external system.

    Removals are written back immediately so a later run observes them.
    Identifiers listed under ``failures`` make the matching call raise
    ServiceError, which lets rehearsals exercise partial-failure paths.
    """

    def __init__(self, uri: str) -> None:
        self.uri = uri
        self._lock = threading.RLock()

    def read(self) -> dict[str, Any]:
        fs, path = fsspec.core.url_to_fs(self.uri)
        with self._lock:
            if not fs.exists(path):
                return _empty_state()
            with fs.open(path, "rb") as handle:
                payload = json.loads(handle.read().decode("utf-8"))
        if not isinstance(payload, dict):
            raise ValueError(f"Sandbox state at {self.uri} is not a JSON object")
        state = _empty_state()
        state.update(payload)
        return state

    def write(self, state: dict[str, Any]) -> None:
        fs, path = fsspec.core.url_to_fs(self.uri)
        fs.makedirs(parent_path(path), exist_ok=True)
        state["updated_at"] = datetime.now(timezone.utc).isoformat()
        with fs.open(path, "wb") as handle:
            handle.write(json.dumps(state, ensure_ascii=True, indent=2).encode("utf-8"))

    def mutate(self, fn) -> Any:
        with self._lock:
            state = self.read()
            result = fn(state)
            self.write(state)
            return result

    def check_failure(self, kind: str, key: str) -> None:
        failures = self.read().get("failures") or {}
        if key in (failures.get(kind) or []):
            raise ServiceError(f"sandbox {kind} call failed for {key}")


def _empty_state() -> dict[str, Any]:
    return {
        "devices": [],
        "groups": {},
        "provisioning": [],
        "directory": [],
        "wipes": [],
        "failures": {key: [] for key in FAILURE_KEYS},
    }


def seed_sandbox(
    uri: str,
    *,
    devices: Iterable[DeviceRecord] = (),
    groups: dict[str, str] | None = None,
    provisioning: Iterable[RegistryEntry] = (),
    directory: Iterable[DirectoryEntry] = (),
    failures: dict[str, list[str]] | None = None,
) -> SandboxState:
    sandbox = SandboxState(uri)
    state = _empty_state()
    state["devices"] = [device_to_dict(device) for device in devices]
    state["groups"] = dict(groups or {})
    state["provisioning"] = [
        {
            "entry_id": entry.entry_id,
            "serial_number": entry.serial_number,
            "directory_device_id": entry.directory_device_id,
            "model": entry.model,
        }
        for entry in provisioning
    ]
    state["directory"] = [
        {
            "object_id": entry.object_id,
            "device_id": entry.device_id,
            "display_name": entry.display_name,
        }
        for entry in directory
    ]
    for key, values in (failures or {}).items():
        if key not in FAILURE_KEYS:
            raise ValueError(f"Unknown sandbox failure kind: {key}")
        state["failures"][key] = list(values)
    sandbox.write(state)
    return sandbox


class SandboxGroupLookup:
    def __init__(self, sandbox: SandboxState) -> None:
        self._sandbox = sandbox

    def group_name(self, group_id: str) -> str:
        self._sandbox.check_failure("groups", group_id)
        groups = self._sandbox.read().get("groups") or {}
        if group_id not in groups:
            raise NotFoundError(f"group {group_id} not found")
        return str(groups[group_id])


class SandboxInventoryProvider:
    def __init__(self, sandbox: SandboxState) -> None:
        self._sandbox = sandbox

    def list_devices(self, cohort_tag: str | None = None) -> list[DeviceRecord]:
        state = self._sandbox.read()
        devices = [
            device_from_dict(item)
            for item in state.get("devices") or []
            if isinstance(item, dict)
        ]
        if cohort_tag:
            needle = cohort_tag.lower()
            groups = state.get("groups") or {}
            devices = [
                device
                for device in devices
                if any(
                    needle in str(groups.get(group_id, "")).lower()
                    for group_id in device.group_memberships
                )
            ]
        return devices


class SandboxManagementService:
    def __init__(self, sandbox: SandboxState) -> None:
        self._sandbox = sandbox

    def wipe_device(self, device_id: str) -> None:
        self._sandbox.check_failure("wipe", device_id)

        def _wipe(state: dict[str, Any]) -> None:
            known = {
                str(item.get("device_id"))
                for item in state.get("devices") or []
                if isinstance(item, dict)
            }
            if device_id not in known:
                raise NotFoundError(f"managed device {device_id} not found")
            state["wipes"].append(
                {"device_id": device_id, "at": datetime.now(timezone.utc).isoformat()}
            )

        self._sandbox.mutate(_wipe)
        logger.info("Sandbox wipe issued", extra={"device_id": device_id})


class SandboxProvisioningRegistry:
    def __init__(self, sandbox: SandboxState) -> None:
        self._sandbox = sandbox

    def find_by_serial(self, serial_number: str) -> RegistryEntry | None:
        self._sandbox.check_failure("provisioning", serial_number)
        wanted = normalize_serial(serial_number)
        for item in self._sandbox.read().get("provisioning") or []:
            if normalize_serial(item.get("serial_number")) != wanted:
                continue
            return RegistryEntry(
                entry_id=str(item.get("entry_id")),
                serial_number=wanted or serial_number,
                directory_device_id=coerce_optional_str(item.get("directory_device_id")),
                model=coerce_optional_str(item.get("model")),
            )
        return None

    def remove_entry(self, entry_id: str) -> None:
        self._sandbox.check_failure("provisioning", entry_id)

        def _remove(state: dict[str, Any]) -> None:
            entries = state.get("provisioning") or []
            remaining = [item for item in entries if str(item.get("entry_id")) != entry_id]
            if len(remaining) == len(entries):
                raise NotFoundError(f"provisioning entry {entry_id} not found")
            state["provisioning"] = remaining

        self._sandbox.mutate(_remove)


class SandboxDirectoryService:
    def __init__(self, sandbox: SandboxState) -> None:
        self._sandbox = sandbox

    def find_by_device_id(self, device_id: str) -> DirectoryEntry | None:
        self._sandbox.check_failure("directory", device_id)
        for item in self._sandbox.read().get("directory") or []:
            if device_id in (str(item.get("object_id")), item.get("device_id")):
                return DirectoryEntry(
                    object_id=str(item.get("object_id")),
                    device_id=coerce_optional_str(item.get("device_id")),
                    display_name=coerce_optional_str(item.get("display_name")),
                )
        return None

    def remove_entry(self, object_id: str) -> None:
        self._sandbox.check_failure("directory", object_id)

        def _remove(state: dict[str, Any]) -> None:
            entries = state.get("directory") or []
            remaining = [item for item in entries if str(item.get("object_id")) != object_id]
            if len(remaining) == len(entries):
                raise NotFoundError(f"directory object {object_id} not found")
            state["directory"] = remaining

        self._sandbox.mutate(_remove)


def build_sandbox_backend(uri: str) -> Backend:
    sandbox = SandboxState(uri)
    groups = SandboxGroupLookup(sandbox)
    return Backend(
        inventory=SandboxInventoryProvider(sandbox),
        services=ServiceBundle(
            management=SandboxManagementService(sandbox),
            provisioning=SandboxProvisioningRegistry(sandbox),
            directory=SandboxDirectoryService(sandbox),
        ),
        groups=groups,
    )
