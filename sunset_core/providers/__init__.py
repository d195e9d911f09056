from sunset_core.providers.types import (
    DirectoryEntry,
    DirectoryService,
    GroupLookup,
    InventoryProvider,
    ManagementService,
    NotificationSink,
    ProvisioningRegistry,
    RegistryEntry,
    ServiceBundle,
)

__all__ = [
    "DirectoryEntry",
    "DirectoryService",
    "GroupLookup",
    "InventoryProvider",
    "ManagementService",
    "NotificationSink",
    "ProvisioningRegistry",
    "RegistryEntry",
    "ServiceBundle",
]
