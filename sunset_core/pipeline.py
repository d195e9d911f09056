from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime

from sunset_core.audit.summary import (
    AuditSummary,
    SelectionReport,
    aggregate,
    selection_from_decisions,
    selection_from_eligibility,
)
from sunset_core.audit.writer import AuditArtifact, write_audit_artifact
from sunset_core.decisions.ingest import load_decision_artifact
from sunset_core.decisions.reconcile import reconcile_decisions
from sunset_core.devices.types import DeviceRecord
from sunset_core.eligibility.criteria import load_criteria
from sunset_core.eligibility.select import evaluate
from sunset_core.errors import ValidationError
from sunset_core.logging import get_logger
from sunset_core.providers.types import (
    GroupLookup,
    InventoryProvider,
    NotificationSink,
    ServiceBundle,
)
from sunset_core.retirement.orchestrator import Confirmer, retire
from sunset_core.retirement.types import RetirementConfig, new_run_id

logger = get_logger(__name__)


@dataclass(frozen=True)
class Backend:
    inventory: InventoryProvider
    services: ServiceBundle
    groups: GroupLookup | None = None


@dataclass(frozen=True)
class RunRequest:
    criteria_uri: str | None = None
    decision_artifact_uri: str | None = None
    dry_run: bool = False
    remove_from_provisioning: bool = False
    remove_from_directory: bool = False
    gate_cleanup_on_wipe_success: bool | None = None
    confirmation_required: bool = False
    cohort_tag: str | None = None


@dataclass(frozen=True)
class PipelineOutcome:
    run_id: str
    summary: AuditSummary
    artifact: AuditArtifact

    @property
    def exit_code(self) -> int:
        return self.summary.exit_code()


def resolve_retirement_config(
    request: RunRequest,
    *,
    default_gate: bool = True,
) -> RetirementConfig:
    """Build the run configuration, applying the gate default.

    An explicit gate setting always wins. Otherwise cleanup is gated on a
    successful wipe when ``default_gate`` is set and a cleanup phase is on.
    """
    gate = request.gate_cleanup_on_wipe_success
    if gate is None:
        gate = default_gate and (
            request.remove_from_provisioning or request.remove_from_directory
        )
    return RetirementConfig(
        dry_run=request.dry_run,
        remove_from_provisioning=request.remove_from_provisioning,
        remove_from_directory=request.remove_from_directory,
        gate_cleanup_on_wipe_success=gate,
        confirmation_required=request.confirmation_required,
    )


def select_candidates(
    request: RunRequest,
    backend: Backend,
    *,
    now: datetime | None = None,
) -> tuple[list[DeviceRecord], SelectionReport]:
    if request.criteria_uri is None and request.decision_artifact_uri is None:
        raise ValidationError("Either a criteria file or a decision artifact is required")

    devices = backend.inventory.list_devices(request.cohort_tag)
    automatic = None
    if request.criteria_uri is not None:
        criteria = load_criteria(request.criteria_uri)
        automatic = evaluate(
            devices,
            criteria,
            group_lookup=backend.groups,
            now=now,
        )
        if request.decision_artifact_uri is None:
            return list(automatic.candidates), selection_from_eligibility(automatic)

    decisions = load_decision_artifact(request.decision_artifact_uri)
    reconciled = reconcile_decisions(devices, decisions, automatic=automatic)
    return list(reconciled.candidates), selection_from_decisions(
        reconciled,
        automatic=automatic,
    )


def run_pipeline(
    request: RunRequest,
    backend: Backend,
    *,
    audit_root: str,
    notifier: NotificationSink | None = None,
    confirm: Confirmer | None = None,
    cancel_event: threading.Event | None = None,
    max_workers: int = 1,
    default_gate: bool = True,
    run_id: str | None = None,
    now: datetime | None = None,
) -> PipelineOutcome:
    config = resolve_retirement_config(request, default_gate=default_gate)
    config.validate()
    resolved_run_id = run_id or new_run_id()

    candidates, report = select_candidates(request, backend, now=now)
    logger.info(
        "Retirement candidates selected",
        extra={
            "run_id": resolved_run_id,
            "candidate_count": len(candidates),
            "dry_run": config.dry_run,
        },
    )

    results = retire(
        candidates,
        config,
        backend.services,
        confirm=confirm,
        cancel_event=cancel_event,
        max_workers=max_workers,
        run_id=resolved_run_id,
    )
    summary = aggregate(results, config, run_id=resolved_run_id, selection=report)
    artifact = write_audit_artifact(audit_root, summary)
    logger.info(
        "Audit artifact written",
        extra={"run_id": resolved_run_id, "audit_uri": artifact.json_uri},
    )

    if notifier is not None:
        notifier.send(summary, audit_uri=artifact.json_uri)

    return PipelineOutcome(run_id=resolved_run_id, summary=summary, artifact=artifact)
