from __future__ import annotations

from dataclasses import dataclass

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


@dataclass(frozen=True)
class ScheduledRun:
    id: str
    run_at: str
    criteria_uri: str | None
    decision_artifact_uri: str | None
    dry_run: bool
    remove_from_provisioning: bool
    remove_from_directory: bool
    gate_cleanup_on_wipe_success: bool | None
    status: str
    run_id: str | None
    audit_uri: str | None
    error: str | None
    created_at: str
    updated_at: str
