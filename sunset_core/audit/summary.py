from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable

from sunset_core.decisions.types import ReconciledDecisions
from sunset_core.eligibility.types import EligibilitySelection
from sunset_core.retirement.types import (
    PHASE_ORDER,
    Phase,
    PhaseStatus,
    RetirementConfig,
    RetirementPhaseOutcome,
    RetirementResult,
    new_run_id,
)

EXIT_OK = 0
EXIT_DEVICES_FAILED = 2


class OverallStatus(str, Enum):
    DONE = "Done"
    PARTIAL = "Partial"
    FAILED = "Failed"
    DRY_RUN = "DryRun"
    CANCELLED = "Cancelled"


@dataclass(frozen=True)
class DeviceAudit:
    serial_number: str
    device_id: str
    device_name: str | None
    model: str | None
    overall_status: OverallStatus
    outcomes: tuple[RetirementPhaseOutcome, ...]


@dataclass(frozen=True)
class SelectionReport:
    mode: str
    candidate_count: int
    excluded: dict[str, int] = field(default_factory=dict)
    kept_count: int = 0
    unset_count: int = 0
    no_decision_serials: tuple[str, ...] = ()
    unknown_serials: tuple[str, ...] = ()


@dataclass(frozen=True)
class AuditSummary:
    run_id: str
    generated_at: datetime
    config: RetirementConfig
    devices: tuple[DeviceAudit, ...]
    phase_counts: dict[str, dict[str, int]]
    status_counts: dict[str, int]
    selection: SelectionReport | None = None

    @property
    def failed_count(self) -> int:
        return self.status_counts.get(OverallStatus.FAILED.value, 0)

    def exit_code(self) -> int:
        return EXIT_OK if self.failed_count == 0 else EXIT_DEVICES_FAILED

    def to_dict(self) -> dict[str, object]:
        return {
            "run_id": self.run_id,
            "generated_at": self.generated_at.isoformat(),
            "config": {
                "dry_run": self.config.dry_run,
                "remove_from_provisioning": self.config.remove_from_provisioning,
                "remove_from_directory": self.config.remove_from_directory,
                "gate_cleanup_on_wipe_success": self.config.gate_cleanup_on_wipe_success,
                "confirmation_required": self.config.confirmation_required,
            },
            "phase_counts": self.phase_counts,
            "status_counts": self.status_counts,
            "selection": _selection_to_dict(self.selection),
            "devices": [_device_to_dict(device) for device in self.devices],
        }


def derive_overall_status(
    result: RetirementResult,
    config: RetirementConfig,
) -> OverallStatus:
    if config.dry_run:
        return OverallStatus.DRY_RUN
    wipe = result.outcome(Phase.WIPE)
    if (
        wipe is not None
        and wipe.status is PhaseStatus.FAILED
        and config.gate_cleanup_on_wipe_success
    ):
        return OverallStatus.FAILED

    enabled = set(config.enabled_phases())
    statuses = [item.status for item in result.outcomes if item.phase in enabled]
    completed = sum(1 for item in result.outcomes if item.phase in enabled and item.completed)
    failed = statuses.count(PhaseStatus.FAILED)
    skipped = statuses.count(PhaseStatus.SKIPPED)

    if failed == 0 and skipped == 0:
        return OverallStatus.DONE
    if failed and completed:
        return OverallStatus.PARTIAL
    if failed:
        return OverallStatus.FAILED
    return OverallStatus.CANCELLED


def aggregate(
    results: Iterable[RetirementResult],
    config: RetirementConfig,
    *,
    run_id: str | None = None,
    selection: SelectionReport | None = None,
) -> AuditSummary:
    """Fold per-device results into counts and overall statuses.

    Results are read, never modified.
    """
    enabled = config.enabled_phases()
    phase_counts: dict[str, dict[str, int]] = {
        phase.value: {status.value: 0 for status in PhaseStatus}
        for phase in PHASE_ORDER
        if phase in enabled
    }
    status_counter: Counter[str] = Counter()
    devices: list[DeviceAudit] = []

    for result in results:
        for outcome in result.outcomes:
            bucket = phase_counts.get(outcome.phase.value)
            if bucket is not None:
                bucket[outcome.status.value] += 1
        overall = derive_overall_status(result, config)
        status_counter[overall.value] += 1
        devices.append(
            DeviceAudit(
                serial_number=result.device.serial_number or "",
                device_id=result.device.device_id,
                device_name=result.device.device_name,
                model=result.device.model,
                overall_status=overall,
                outcomes=result.outcomes,
            )
        )

    status_counts = {status.value: status_counter.get(status.value, 0) for status in OverallStatus}
    return AuditSummary(
        run_id=run_id or new_run_id(),
        generated_at=datetime.now(timezone.utc),
        config=config,
        devices=tuple(devices),
        phase_counts=phase_counts,
        status_counts=status_counts,
        selection=selection,
    )


def selection_from_eligibility(selection: EligibilitySelection) -> SelectionReport:
    return SelectionReport(
        mode="criteria",
        candidate_count=len(selection.candidates),
        excluded=selection.excluded_counts(),
    )


def selection_from_decisions(
    reconciled: ReconciledDecisions,
    *,
    automatic: EligibilitySelection | None = None,
) -> SelectionReport:
    return SelectionReport(
        mode="decision_artifact",
        candidate_count=len(reconciled.candidates),
        excluded=automatic.excluded_counts() if automatic is not None else {},
        kept_count=len(reconciled.kept),
        unset_count=len(reconciled.unset),
        no_decision_serials=tuple(
            device.serial_number or "" for device in reconciled.no_decision
        ),
        unknown_serials=reconciled.unknown_serials,
    )


def _outcome_to_dict(outcome: RetirementPhaseOutcome) -> dict[str, object]:
    return {
        "phase": outcome.phase.value,
        "status": outcome.status.value,
        "error_detail": outcome.error_detail,
        "timestamp": outcome.timestamp.isoformat(),
    }


def _device_to_dict(device: DeviceAudit) -> dict[str, object]:
    return {
        "serial_number": device.serial_number,
        "device_id": device.device_id,
        "device_name": device.device_name,
        "model": device.model,
        "overall_status": device.overall_status.value,
        "outcomes": [_outcome_to_dict(outcome) for outcome in device.outcomes],
    }


def _selection_to_dict(selection: SelectionReport | None) -> dict[str, object] | None:
    if selection is None:
        return None
    return {
        "mode": selection.mode,
        "candidate_count": selection.candidate_count,
        "excluded": selection.excluded,
        "kept_count": selection.kept_count,
        "unset_count": selection.unset_count,
        "no_decision_serials": list(selection.no_decision_serials),
        "unknown_serials": list(selection.unknown_serials),
    }
