from __future__ import annotations

from typing import Any

from graph_adapter.client import GraphClient, odata_quote, path_segment
from sunset_core.devices.store import (
    coerce_compliance_state,
    coerce_datetime,
    coerce_int,
    coerce_management_state,
    coerce_optional_str,
    normalize_serial,
)
from sunset_core.devices.types import DeviceRecord
from sunset_core.errors import NotFoundError, SunsetError
from sunset_core.logging import get_logger

logger = get_logger(__name__)

MANAGED_DEVICE_FIELDS = (
    "id",
    "deviceName",
    "serialNumber",
    "model",
    "manufacturer",
    "userPrincipalName",
    "managementState",
    "complianceState",
    "lastSyncDateTime",
    "freeStorageSpaceInBytes",
    "totalStorageSpaceInBytes",
    "azureADDeviceId",
)


class GraphGroupLookup:
    def __init__(self, client: GraphClient) -> None:
        self._client = client

    def group_name(self, group_id: str) -> str:
        payload = self._client.get(
            f"groups/{path_segment(group_id)}",
            params={"$select": "id,displayName"},
        )
        return str(payload.get("displayName") or "")


class GraphInventoryProvider:
    def __init__(
        self,
        client: GraphClient,
        *,
        groups: GraphGroupLookup | None = None,
        resolve_memberships: bool = True,
    ) -> None:
        self._client = client
        self._groups = groups or GraphGroupLookup(client)
        self._resolve_memberships = resolve_memberships

    def list_devices(self, cohort_tag: str | None = None) -> list[DeviceRecord]:
        devices: list[DeviceRecord] = []
        for item in self._client.iter_collection(
            "deviceManagement/managedDevices",
            params={"$select": ",".join(MANAGED_DEVICE_FIELDS)},
        ):
            directory_key = coerce_optional_str(item.get("azureADDeviceId"))
            object_id: str | None = None
            memberships: tuple[str, ...] = ()
            membership_error: str | None = None
            if directory_key and self._resolve_memberships:
                try:
                    object_id, memberships = self._directory_memberships(directory_key)
                except SunsetError as exc:
                    membership_error = f"Directory lookup failed for {directory_key}: {exc}"
                    logger.warning(
                        "Device memberships unavailable",
                        extra={
                            "serial_number": normalize_serial(item.get("serialNumber")),
                            "device_id": item.get("id"),
                            "error_message": str(exc),
                        },
                    )
            devices.append(
                _device_from_graph(
                    item,
                    object_id=object_id,
                    memberships=memberships,
                    membership_error=membership_error,
                )
            )
        if cohort_tag:
            devices = [
                device for device in devices if self._in_cohort(device, cohort_tag)
            ]
        logger.info(
            "Graph inventory loaded",
            extra={"device_count": len(devices)},
        )
        return devices

    def _directory_memberships(self, device_key: str) -> tuple[str | None, tuple[str, ...]]:
        payload = self._client.get(
            "devices",
            params={
                "$filter": f"deviceId eq '{odata_quote(device_key)}'",
                "$select": "id,deviceId",
            },
        )
        entries = payload.get("value") or []
        if not entries:
            return None, ()
        object_id = coerce_optional_str(entries[0].get("id"))
        if object_id is None:
            return None, ()
        groups: list[str] = []
        try:
            for member in self._client.iter_collection(
                f"devices/{path_segment(object_id)}/memberOf",
                params={"$select": "id"},
            ):
                group_id = coerce_optional_str(member.get("id"))
                if group_id:
                    groups.append(group_id)
        except NotFoundError:
            return object_id, ()
        return object_id, tuple(groups)

    def _in_cohort(self, device: DeviceRecord, cohort_tag: str) -> bool:
        # Devices whose groups cannot be read are left out of a tagged listing.
        needle = cohort_tag.lower()
        for group_id in device.group_memberships:
            try:
                name = self._groups.group_name(group_id)
            except SunsetError as exc:
                logger.warning(
                    "Group lookup failed",
                    extra={
                        "serial_number": device.serial_number,
                        "device_id": device.device_id,
                        "error_message": str(exc),
                    },
                )
                continue
            if needle in name.lower():
                return True
        return False


def _device_from_graph(
    item: dict[str, Any],
    *,
    object_id: str | None,
    memberships: tuple[str, ...],
    membership_error: str | None = None,
) -> DeviceRecord:
    return DeviceRecord(
        device_id=str(item.get("id")),
        serial_number=normalize_serial(item.get("serialNumber")),
        model=coerce_optional_str(item.get("model")),
        manufacturer=coerce_optional_str(item.get("manufacturer")),
        owner_principal=coerce_optional_str(item.get("userPrincipalName")),
        management_state=coerce_management_state(item.get("managementState")),
        compliance_state=coerce_compliance_state(item.get("complianceState")),
        last_sync_time=coerce_datetime(item.get("lastSyncDateTime")),
        free_storage_bytes=coerce_int(item.get("freeStorageSpaceInBytes")),
        total_storage_bytes=coerce_int(item.get("totalStorageSpaceInBytes")),
        provisioning_registry_id=None,
        directory_object_id=object_id,
        group_memberships=memberships,
        device_name=coerce_optional_str(item.get("deviceName")),
        membership_error=membership_error,
    )
