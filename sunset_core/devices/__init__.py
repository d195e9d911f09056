from sunset_core.devices.store import (
    device_from_dict,
    device_to_dict,
    load_inventory,
    normalize_serial,
    save_inventory,
)
from sunset_core.devices.types import ComplianceState, DeviceRecord, ManagementState

__all__ = [
    "ComplianceState",
    "DeviceRecord",
    "ManagementState",
    "device_from_dict",
    "device_to_dict",
    "load_inventory",
    "normalize_serial",
    "save_inventory",
]
