from __future__ import annotations

import json
import uuid
from dataclasses import asdict, replace
from datetime import datetime, timezone
from typing import Iterable

import fsspec

from sunset_core.devices.store import coerce_datetime, coerce_optional_str
from sunset_core.errors import ValidationError
from sunset_core.schedule.types import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    ScheduledRun,
)
from sunset_core.storage.paths import parent_path, schedule_registry_uri


def load_scheduled_runs(base_uri: str) -> list[ScheduledRun]:
    uri = schedule_registry_uri(base_uri)
    fs, path = fsspec.core.url_to_fs(uri)
    if not fs.exists(path):
        return []
    with fs.open(path, "rb") as handle:
        payload = json.loads(handle.read().decode("utf-8"))
    items = payload.get("runs", []) if isinstance(payload, dict) else []
    results: list[ScheduledRun] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        results.append(_run_from_dict(item))
    return results


def save_scheduled_runs(base_uri: str, runs: Iterable[ScheduledRun]) -> str:
    uri = schedule_registry_uri(base_uri)
    fs, path = fsspec.core.url_to_fs(uri)
    fs.makedirs(parent_path(path), exist_ok=True)
    payload = {
        "updated_at": datetime.now(timezone.utc).isoformat(),
        "runs": [asdict(run) for run in runs],
    }
    with fs.open(path, "wb") as handle:
        handle.write(json.dumps(payload, ensure_ascii=True).encode("utf-8"))
    return uri


def register_scheduled_run(
    *,
    base_uri: str,
    run_at: datetime,
    criteria_uri: str | None = None,
    decision_artifact_uri: str | None = None,
    dry_run: bool = False,
    remove_from_provisioning: bool = False,
    remove_from_directory: bool = False,
    gate_cleanup_on_wipe_success: bool | None = None,
) -> ScheduledRun:
    if criteria_uri is None and decision_artifact_uri is None:
        raise ValidationError(
            "A scheduled run needs a criteria file or a decision artifact"
        )
    if run_at.tzinfo is None:
        run_at = run_at.replace(tzinfo=timezone.utc)
    now = datetime.now(timezone.utc).isoformat()
    run = ScheduledRun(
        id=str(uuid.uuid4()),
        run_at=run_at.astimezone(timezone.utc).isoformat(),
        criteria_uri=criteria_uri,
        decision_artifact_uri=decision_artifact_uri,
        dry_run=dry_run,
        remove_from_provisioning=remove_from_provisioning,
        remove_from_directory=remove_from_directory,
        gate_cleanup_on_wipe_success=gate_cleanup_on_wipe_success,
        status=STATUS_PENDING,
        run_id=None,
        audit_uri=None,
        error=None,
        created_at=now,
        updated_at=now,
    )
    runs = load_scheduled_runs(base_uri)
    runs.append(run)
    save_scheduled_runs(base_uri, runs)
    return run


def update_scheduled_run(*, base_uri: str, run: ScheduledRun) -> ScheduledRun:
    runs = load_scheduled_runs(base_uri)
    updated: list[ScheduledRun] = []
    found = False
    for existing in runs:
        if existing.id == run.id:
            updated.append(run)
            found = True
        else:
            updated.append(existing)
    if not found:
        updated.append(run)
    save_scheduled_runs(base_uri, updated)
    return run


def due_runs(base_uri: str, *, now: datetime | None = None) -> list[ScheduledRun]:
    current = now or datetime.now(timezone.utc)
    due: list[ScheduledRun] = []
    for run in load_scheduled_runs(base_uri):
        if run.status != STATUS_PENDING:
            continue
        run_at = coerce_datetime(run.run_at)
        if run_at is None or run_at > current:
            continue
        due.append(run)
    return sorted(due, key=lambda item: item.run_at)


def mark_completed(
    *,
    base_uri: str,
    run: ScheduledRun,
    run_id: str,
    audit_uri: str,
) -> ScheduledRun:
    updated = replace(
        run,
        status=STATUS_COMPLETED,
        run_id=run_id,
        audit_uri=audit_uri,
        error=None,
        updated_at=datetime.now(timezone.utc).isoformat(),
    )
    return update_scheduled_run(base_uri=base_uri, run=updated)


def mark_failed(*, base_uri: str, run: ScheduledRun, error: str) -> ScheduledRun:
    updated = replace(
        run,
        status=STATUS_FAILED,
        error=error,
        updated_at=datetime.now(timezone.utc).isoformat(),
    )
    return update_scheduled_run(base_uri=base_uri, run=updated)


def _run_from_dict(payload: dict[str, object]) -> ScheduledRun:
    gate = payload.get("gate_cleanup_on_wipe_success")
    return ScheduledRun(
        id=str(payload.get("id")),
        run_at=str(payload.get("run_at", "")),
        criteria_uri=coerce_optional_str(payload.get("criteria_uri")),
        decision_artifact_uri=coerce_optional_str(payload.get("decision_artifact_uri")),
        dry_run=bool(payload.get("dry_run", False)),
        remove_from_provisioning=bool(payload.get("remove_from_provisioning", False)),
        remove_from_directory=bool(payload.get("remove_from_directory", False)),
        gate_cleanup_on_wipe_success=None if gate is None else bool(gate),
        status=str(payload.get("status", STATUS_PENDING)),
        run_id=coerce_optional_str(payload.get("run_id")),
        audit_uri=coerce_optional_str(payload.get("audit_uri")),
        error=coerce_optional_str(payload.get("error")),
        created_at=str(payload.get("created_at", "")),
        updated_at=str(payload.get("updated_at", "")),
    )
