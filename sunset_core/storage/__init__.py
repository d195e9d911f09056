from sunset_core.storage.paths import (
    audit_csv_uri,
    audit_json_uri,
    join_uri,
    parent_path,
    schedule_registry_uri,
)

__all__ = [
    "audit_csv_uri",
    "audit_json_uri",
    "join_uri",
    "parent_path",
    "schedule_registry_uri",
]
