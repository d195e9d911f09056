from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class ManagementState(str, Enum):
    MANAGED = "Managed"
    UNMANAGED = "Unmanaged"
    UNKNOWN = "Unknown"


class ComplianceState(str, Enum):
    COMPLIANT = "Compliant"
    NON_COMPLIANT = "NonCompliant"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class DeviceRecord:
    device_id: str
    serial_number: str | None
    model: str | None
    manufacturer: str | None
    owner_principal: str | None
    management_state: ManagementState
    compliance_state: ComplianceState
    last_sync_time: datetime | None
    free_storage_bytes: int | None
    total_storage_bytes: int | None
    provisioning_registry_id: str | None
    directory_object_id: str | None
    group_memberships: tuple[str, ...]
    device_name: str | None = None
    # Set when group memberships could not be read; cohort checks then fail.
    membership_error: str | None = None

    @property
    def has_serial(self) -> bool:
        return bool(self.serial_number and self.serial_number.strip())
