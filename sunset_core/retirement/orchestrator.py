from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable

from sunset_core.devices.types import DeviceRecord
from sunset_core.errors import (
    ConfigurationError,
    ConfirmationDeclined,
    NotFoundError,
    SunsetError,
    ValidationError,
)
from sunset_core.logging import get_logger
from sunset_core.providers.types import RegistryEntry, ServiceBundle
from sunset_core.retirement.types import (
    CANCELLED_DETAIL,
    DRY_RUN_DETAIL,
    WIPE_FAILED_DETAIL,
    DevicePlan,
    Phase,
    PhaseStatus,
    RetirementConfig,
    RetirementPhaseOutcome,
    RetirementPlan,
    RetirementResult,
    new_run_id,
)

logger = get_logger(__name__)

Confirmer = Callable[[RetirementPlan], bool]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _outcome(
    phase: Phase,
    status: PhaseStatus,
    detail: str | None = None,
) -> RetirementPhaseOutcome:
    return RetirementPhaseOutcome(
        phase=phase,
        status=status,
        error_detail=detail,
        timestamp=_utcnow(),
    )


def plan_retirement(
    devices: Iterable[DeviceRecord],
    config: RetirementConfig,
    *,
    run_id: str | None = None,
) -> RetirementPlan:
    phases = config.enabled_phases()
    return RetirementPlan(
        run_id=run_id or new_run_id(),
        config=config,
        devices=tuple(
            DevicePlan(
                serial_number=device.serial_number or "",
                device_id=device.device_id,
                phases=phases,
            )
            for device in devices
        ),
    )


@dataclass
class _DeviceState:
    registry_checked: bool = False
    registry_entry: RegistryEntry | None = None


class _DeviceRunner:
    """Walks one device through its enabled phases, strictly in order."""

    def __init__(
        self,
        *,
        config: RetirementConfig,
        session: ServiceBundle,
        run_id: str,
        cancel_event: threading.Event | None,
    ) -> None:
        self._config = config
        self._session = session
        self._run_id = run_id
        self._cancel_event = cancel_event

    def run(self, device: DeviceRecord) -> RetirementResult:
        started_at = _utcnow()
        phases = self._config.enabled_phases()
        outcomes: list[RetirementPhaseOutcome] = []
        state = _DeviceState()
        skip_detail = DRY_RUN_DETAIL if self._config.dry_run else None

        for phase in phases:
            if skip_detail is None and self._cancelled():
                skip_detail = CANCELLED_DETAIL
            if skip_detail is not None:
                outcome = _outcome(phase, PhaseStatus.SKIPPED, skip_detail)
            else:
                outcome = self._attempt(phase, device, state)
            outcomes.append(outcome)
            self._log_outcome(device, outcome)
            if (
                skip_detail is None
                and phase is Phase.WIPE
                and outcome.status is PhaseStatus.FAILED
                and self._config.gate_cleanup_on_wipe_success
            ):
                skip_detail = WIPE_FAILED_DETAIL

        return RetirementResult(
            device=device,
            outcomes=tuple(outcomes),
            started_at=started_at,
            finished_at=_utcnow(),
        )

    def _cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    def _attempt(
        self,
        phase: Phase,
        device: DeviceRecord,
        state: _DeviceState,
    ) -> RetirementPhaseOutcome:
        handlers = {
            Phase.WIPE: self._wipe,
            Phase.REMOVE_FROM_PROVISIONING: self._remove_from_provisioning,
            Phase.REMOVE_FROM_DIRECTORY: self._remove_from_directory,
        }
        try:
            status, detail = handlers[phase](device, state)
        except NotFoundError as exc:
            return _outcome(phase, PhaseStatus.NOT_FOUND, str(exc) or None)
        except SunsetError as exc:
            return _outcome(phase, PhaseStatus.FAILED, str(exc) or type(exc).__name__)
        except Exception as exc:
            logger.exception(
                "Unexpected collaborator error",
                extra={
                    "run_id": self._run_id,
                    "serial_number": device.serial_number,
                    "phase": phase.value,
                },
            )
            return _outcome(phase, PhaseStatus.FAILED, f"{type(exc).__name__}: {exc}")
        return _outcome(phase, status, detail)

    def _wipe(
        self,
        device: DeviceRecord,
        state: _DeviceState,
    ) -> tuple[PhaseStatus, str | None]:
        self._session.management.wipe_device(device.device_id)
        return PhaseStatus.SUCCESS, None

    def _remove_from_provisioning(
        self,
        device: DeviceRecord,
        state: _DeviceState,
    ) -> tuple[PhaseStatus, str | None]:
        entry = self._registry_entry(device, state)
        if entry is None:
            return PhaseStatus.NOT_FOUND, "not registered for provisioning"
        self._session.provisioning.remove_entry(entry.entry_id)
        return PhaseStatus.SUCCESS, None

    def _remove_from_directory(
        self,
        device: DeviceRecord,
        state: _DeviceState,
    ) -> tuple[PhaseStatus, str | None]:
        key = device.directory_object_id
        if key is None:
            # Falls back to the registry's record of the directory device id;
            # the provisioning phase has usually fetched it before removal.
            entry = self._registry_entry(device, state)
            key = entry.directory_device_id if entry is not None else None
        if key is None:
            return PhaseStatus.NOT_FOUND, "no directory identifier"
        directory_entry = self._session.directory.find_by_device_id(key)
        if directory_entry is None:
            return PhaseStatus.NOT_FOUND, "not present in directory"
        self._session.directory.remove_entry(directory_entry.object_id)
        return PhaseStatus.SUCCESS, None

    def _registry_entry(
        self,
        device: DeviceRecord,
        state: _DeviceState,
    ) -> RegistryEntry | None:
        if not state.registry_checked:
            state.registry_entry = self._session.provisioning.find_by_serial(
                device.serial_number or ""
            )
            state.registry_checked = True
        return state.registry_entry

    def _log_outcome(self, device: DeviceRecord, outcome: RetirementPhaseOutcome) -> None:
        extra = {
            "run_id": self._run_id,
            "serial_number": device.serial_number,
            "device_id": device.device_id,
            "phase": outcome.phase.value,
            "status": outcome.status.value,
            "error_message": outcome.error_detail,
        }
        if outcome.status is PhaseStatus.FAILED:
            logger.warning("Retirement phase failed", extra=extra)
        else:
            logger.info("Retirement phase recorded", extra=extra)


def _validate_devices(devices: list[DeviceRecord]) -> None:
    seen: set[str] = set()
    for device in devices:
        if not device.has_serial:
            raise ValidationError(
                f"Device {device.device_id} has no serial number and cannot be retired"
            )
        serial = device.serial_number or ""
        if serial in seen:
            raise ValidationError(f"Serial {serial} appears more than once in the batch")
        seen.add(serial)


def retire(
    devices: Iterable[DeviceRecord],
    config: RetirementConfig,
    session: ServiceBundle,
    *,
    confirm: Confirmer | None = None,
    cancel_event: threading.Event | None = None,
    max_workers: int = 1,
    run_id: str | None = None,
) -> list[RetirementResult]:
    """Run the teardown pipeline for every device and return one result each.

    Configuration and batch validation happen before any collaborator call.
    With ``confirmation_required`` the confirmer is consulted exactly once for
    the whole batch; a missing or negative answer raises ConfirmationDeclined.
    Results come back in input order regardless of ``max_workers``.
    """
    config.validate()
    if max_workers < 1:
        raise ConfigurationError("max_workers must be at least 1")
    batch = list(devices)
    _validate_devices(batch)
    resolved_run_id = run_id or new_run_id()

    if config.confirmation_required:
        plan = plan_retirement(batch, config, run_id=resolved_run_id)
        if confirm is None or not confirm(plan):
            raise ConfirmationDeclined(
                f"Retirement of {plan.device_count} device(s) was not confirmed"
            )

    logger.info(
        "Retirement batch started",
        extra={
            "run_id": resolved_run_id,
            "device_count": len(batch),
            "dry_run": config.dry_run,
            "max_workers": max_workers,
        },
    )
    runner = _DeviceRunner(
        config=config,
        session=session,
        run_id=resolved_run_id,
        cancel_event=cancel_event,
    )

    if max_workers == 1 or len(batch) <= 1:
        results = [runner.run(device) for device in batch]
    else:
        slots: list[RetirementResult | None] = [None] * len(batch)
        with ThreadPoolExecutor(max_workers=min(max_workers, len(batch))) as executor:
            future_map = {
                executor.submit(runner.run, device): idx
                for idx, device in enumerate(batch)
            }
            for future in as_completed(future_map):
                slots[future_map[future]] = future.result()
        results = [item for item in slots if item is not None]

    logger.info(
        "Retirement batch finished",
        extra={"run_id": resolved_run_id, "device_count": len(results)},
    )
    return results
