from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from sunset_core.devices.types import DeviceRecord

if TYPE_CHECKING:
    from sunset_core.audit.summary import AuditSummary


@dataclass(frozen=True)
class RegistryEntry:
    entry_id: str
    serial_number: str
    directory_device_id: str | None = None
    model: str | None = None


@dataclass(frozen=True)
class DirectoryEntry:
    object_id: str
    device_id: str | None = None
    display_name: str | None = None


@runtime_checkable
class InventoryProvider(Protocol):
    def list_devices(self, cohort_tag: str | None = None) -> list[DeviceRecord]: ...


@runtime_checkable
class GroupLookup(Protocol):
    def group_name(self, group_id: str) -> str: ...


@runtime_checkable
class ManagementService(Protocol):
    def wipe_device(self, device_id: str) -> None: ...


@runtime_checkable
class ProvisioningRegistry(Protocol):
    def find_by_serial(self, serial_number: str) -> RegistryEntry | None: ...

    def remove_entry(self, entry_id: str) -> None: ...


@runtime_checkable
class DirectoryService(Protocol):
    def find_by_device_id(self, device_id: str) -> DirectoryEntry | None: ...

    def remove_entry(self, object_id: str) -> None: ...


@runtime_checkable
class NotificationSink(Protocol):
    def send(
        self, summary: "AuditSummary", *, audit_uri: str | None = None
    ) -> None: ...


@dataclass(frozen=True)
class ServiceBundle:
    management: ManagementService
    provisioning: ProvisioningRegistry
    directory: DirectoryService
