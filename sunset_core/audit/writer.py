from __future__ import annotations

import csv
import json
from dataclasses import dataclass

import fsspec

from sunset_core.audit.summary import AuditSummary, DeviceAudit
from sunset_core.retirement.types import PHASE_ORDER
from sunset_core.storage.paths import audit_csv_uri, audit_json_uri, parent_path


@dataclass(frozen=True)
class AuditArtifact:
    json_uri: str
    csv_uri: str


def _csv_columns() -> list[str]:
    columns = ["serialNumber", "deviceId", "deviceName", "model", "overallStatus"]
    for phase in PHASE_ORDER:
        columns.extend(
            [f"{phase.value}Status", f"{phase.value}Detail", f"{phase.value}At"]
        )
    return columns


def _csv_row(device: DeviceAudit) -> dict[str, str]:
    row = {
        "serialNumber": device.serial_number,
        "deviceId": device.device_id,
        "deviceName": device.device_name or "",
        "model": device.model or "",
        "overallStatus": device.overall_status.value,
    }
    for outcome in device.outcomes:
        prefix = outcome.phase.value
        row[f"{prefix}Status"] = outcome.status.value
        row[f"{prefix}Detail"] = outcome.error_detail or ""
        row[f"{prefix}At"] = outcome.timestamp.isoformat()
    return row


def write_audit_artifact(base_uri: str, summary: AuditSummary) -> AuditArtifact:
    json_uri = audit_json_uri(base_uri, summary.run_id)
    csv_uri = audit_csv_uri(base_uri, summary.run_id)

    fs, path = fsspec.core.url_to_fs(json_uri)
    fs.makedirs(parent_path(path), exist_ok=True)
    with fs.open(path, "wb") as handle:
        handle.write(
            json.dumps(summary.to_dict(), ensure_ascii=True, indent=2).encode("utf-8")
        )

    fs, path = fsspec.core.url_to_fs(csv_uri)
    with fs.open(path, "w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=_csv_columns(), restval="")
        writer.writeheader()
        for device in summary.devices:
            writer.writerow(_csv_row(device))

    return AuditArtifact(json_uri=json_uri, csv_uri=csv_uri)


def load_audit_record(uri: str) -> dict[str, object]:
    fs, path = fsspec.core.url_to_fs(uri)
    with fs.open(path, "rb") as handle:
        payload = json.loads(handle.read().decode("utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"Audit record at {uri} is not a JSON object")
    return payload
