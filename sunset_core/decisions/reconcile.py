from __future__ import annotations

from typing import Iterable

from sunset_core.decisions.types import DecisionSet, ReconciledDecisions
from sunset_core.devices.types import DeviceRecord
from sunset_core.eligibility.types import EligibilitySelection
from sunset_core.logging import get_logger

logger = get_logger(__name__)


def reconcile_decisions(
    inventory: Iterable[DeviceRecord],
    decisions: DecisionSet,
    *,
    automatic: EligibilitySelection | None = None,
) -> ReconciledDecisions:
    """Only Delete rows become candidates, in artifact order."""
    by_serial: dict[str, DeviceRecord] = {}
    for device in inventory:
        if device.serial_number and device.serial_number not in by_serial:
            by_serial[device.serial_number] = device

    candidates: list[DeviceRecord] = []
    unknown: list[str] = []
    for record in decisions.delete:
        device = by_serial.get(record.serial_number)
        if device is None:
            unknown.append(record.serial_number)
            continue
        candidates.append(device)

    no_decision: list[DeviceRecord] = []
    if automatic is not None:
        decided = decisions.serials()
        no_decision = [
            device
            for device in automatic.candidates
            if device.serial_number not in decided
        ]

    if unknown:
        logger.warning(
            "Delete decisions reference serials missing from inventory",
            extra={"device_count": len(unknown)},
        )

    return ReconciledDecisions(
        candidates=tuple(candidates),
        kept=decisions.keep,
        unset=decisions.unset,
        no_decision=tuple(no_decision),
        unknown_serials=tuple(unknown),
    )
