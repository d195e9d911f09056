from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from sunset_core.devices.types import DeviceRecord
from sunset_core.errors import ConfigurationError


class Phase(str, Enum):
    WIPE = "Wipe"
    REMOVE_FROM_PROVISIONING = "RemoveFromProvisioning"
    REMOVE_FROM_DIRECTORY = "RemoveFromDirectory"


PHASE_ORDER: tuple[Phase, ...] = (
    Phase.WIPE,
    Phase.REMOVE_FROM_PROVISIONING,
    Phase.REMOVE_FROM_DIRECTORY,
)


class PhaseStatus(str, Enum):
    SUCCESS = "Success"
    FAILED = "Failed"
    SKIPPED = "Skipped"
    NOT_FOUND = "NotFound"


DRY_RUN_DETAIL = "dry-run"
WIPE_FAILED_DETAIL = "wipe-failed"
CANCELLED_DETAIL = "cancelled"


@dataclass(frozen=True)
class RetirementConfig:
    dry_run: bool = False
    remove_from_provisioning: bool = False
    remove_from_directory: bool = False
    gate_cleanup_on_wipe_success: bool = False
    confirmation_required: bool = False

    def enabled_phases(self) -> tuple[Phase, ...]:
        phases = [Phase.WIPE]
        if self.remove_from_provisioning:
            phases.append(Phase.REMOVE_FROM_PROVISIONING)
        if self.remove_from_directory:
            phases.append(Phase.REMOVE_FROM_DIRECTORY)
        return tuple(phases)

    def validate(self) -> None:
        if self.gate_cleanup_on_wipe_success and not (
            self.remove_from_provisioning or self.remove_from_directory
        ):
            raise ConfigurationError(
                "gate_cleanup_on_wipe_success requires at least one cleanup phase "
                "(remove_from_provisioning or remove_from_directory)"
            )


@dataclass(frozen=True)
class RetirementPhaseOutcome:
    phase: Phase
    status: PhaseStatus
    error_detail: str | None
    timestamp: datetime

    @property
    def completed(self) -> bool:
        return self.status in (PhaseStatus.SUCCESS, PhaseStatus.NOT_FOUND)


@dataclass(frozen=True)
class RetirementResult:
    device: DeviceRecord
    outcomes: tuple[RetirementPhaseOutcome, ...]
    started_at: datetime
    finished_at: datetime

    @property
    def serial_number(self) -> str | None:
        return self.device.serial_number

    def outcome(self, phase: Phase) -> RetirementPhaseOutcome | None:
        return next((item for item in self.outcomes if item.phase is phase), None)


@dataclass(frozen=True)
class DevicePlan:
    serial_number: str
    device_id: str
    phases: tuple[Phase, ...]


@dataclass(frozen=True)
class RetirementPlan:
    run_id: str
    config: RetirementConfig
    devices: tuple[DevicePlan, ...]

    @property
    def device_count(self) -> int:
        return len(self.devices)


def new_run_id() -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return f"{stamp}-{uuid.uuid4().hex[:8]}"
