from __future__ import annotations

import csv

import fsspec

from sunset_core.decisions.ingest import DECISION_COLUMN, SERIAL_COLUMN
from sunset_core.decisions.types import ReviewExport
from sunset_core.devices.types import DeviceRecord
from sunset_core.eligibility.types import EligibilitySelection, ExclusionReason
from sunset_core.storage.paths import parent_path

REVIEW_COLUMNS: tuple[str, ...] = (
    SERIAL_COLUMN,
    DECISION_COLUMN,
    "deviceName",
    "model",
    "manufacturer",
    "ownerPrincipal",
    "lastSyncTime",
    "freeStorageBytes",
    "complianceState",
    "eligibility",
)

ELIGIBLE = "eligible"

# Rows for these cannot be joined back to a single device.
_UNEXPORTABLE = frozenset({ExclusionReason.MISSING_SERIAL, ExclusionReason.DUPLICATE_SERIAL})


def review_row(device: DeviceRecord, eligibility: str) -> dict[str, str]:
    return {
        SERIAL_COLUMN: device.serial_number or "",
        DECISION_COLUMN: "",
        "deviceName": device.device_name or "",
        "model": device.model or "",
        "manufacturer": device.manufacturer or "",
        "ownerPrincipal": device.owner_principal or "",
        "lastSyncTime": device.last_sync_time.isoformat() if device.last_sync_time else "",
        "freeStorageBytes": (
            "" if device.free_storage_bytes is None else str(device.free_storage_bytes)
        ),
        "complianceState": device.compliance_state.value,
        "eligibility": eligibility,
    }


def export_review_artifact(
    selection: EligibilitySelection,
    uri: str,
    *,
    include_excluded: bool = True,
) -> ReviewExport:
    rows = [review_row(device, ELIGIBLE) for device in selection.candidates]
    skipped = 0
    for exclusion in selection.exclusions:
        if exclusion.reason in _UNEXPORTABLE or not include_excluded:
            skipped += 1
            continue
        label = exclusion.reason.value
        if exclusion.detail:
            label = f"{label}: {exclusion.detail}"
        rows.append(review_row(exclusion.device, label))

    fs, path = fsspec.core.url_to_fs(uri)
    directory = parent_path(path)
    if directory:
        fs.makedirs(directory, exist_ok=True)
    with fs.open(path, "w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=list(REVIEW_COLUMNS))
        writer.writeheader()
        writer.writerows(rows)
    return ReviewExport(uri=uri, row_count=len(rows), skipped_count=skipped)
