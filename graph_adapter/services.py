from __future__ import annotations

from graph_adapter.client import GraphClient, odata_quote, path_segment
from sunset_core.devices.store import coerce_optional_str, normalize_serial
from sunset_core.providers.types import DirectoryEntry, RegistryEntry


class GraphManagementService:
    def __init__(self, client: GraphClient) -> None:
        self._client = client

    def wipe_device(self, device_id: str) -> None:
        self._client.post(
            f"deviceManagement/managedDevices/{path_segment(device_id)}/wipe",
            {"keepEnrollmentData": False, "keepUserData": False},
        )


class GraphProvisioningRegistry:
    def __init__(self, client: GraphClient) -> None:
        self._client = client

    def find_by_serial(self, serial_number: str) -> RegistryEntry | None:
        wanted = normalize_serial(serial_number)
        for item in self._client.iter_collection(
            "deviceManagement/windowsAutopilotDeviceIdentities",
            params={"$filter": f"contains(serialNumber,'{odata_quote(serial_number)}')"},
        ):
            # contains() is a substring match; keep exact serials only.
            if normalize_serial(item.get("serialNumber")) != wanted:
                continue
            return RegistryEntry(
                entry_id=str(item.get("id")),
                serial_number=wanted or serial_number,
                directory_device_id=coerce_optional_str(item.get("azureActiveDirectoryDeviceId")),
                model=coerce_optional_str(item.get("model")),
            )
        return None

    def remove_entry(self, entry_id: str) -> None:
        self._client.delete(
            f"deviceManagement/windowsAutopilotDeviceIdentities/{path_segment(entry_id)}"
        )


class GraphDirectoryService:
    def __init__(self, client: GraphClient) -> None:
        self._client = client

    def find_by_device_id(self, device_id: str) -> DirectoryEntry | None:
        # Accepts either the directory object id or the device id the
        # provisioning registry recorded for it.
        key = odata_quote(device_id)
        payload = self._client.get(
            "devices",
            params={
                "$filter": f"id eq '{key}' or deviceId eq '{key}'",
                "$select": "id,deviceId,displayName",
            },
        )
        entries = payload.get("value") or []
        if not entries:
            return None
        entry = entries[0]
        return DirectoryEntry(
            object_id=str(entry.get("id")),
            device_id=coerce_optional_str(entry.get("deviceId")),
            display_name=coerce_optional_str(entry.get("displayName")),
        )

    def remove_entry(self, object_id: str) -> None:
        self._client.delete(f"devices/{path_segment(object_id)}")
