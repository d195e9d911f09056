from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from sunset_core.devices.types import DeviceRecord


class Decision(str, Enum):
    KEEP = "Keep"
    DELETE = "Delete"
    UNSET = "Unset"


@dataclass(frozen=True)
class DecisionRecord:
    serial_number: str
    decision: Decision
    columns: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class DecisionSet:
    keep: tuple[DecisionRecord, ...] = ()
    delete: tuple[DecisionRecord, ...] = ()
    unset: tuple[DecisionRecord, ...] = ()

    def serials(self) -> frozenset[str]:
        return frozenset(
            record.serial_number for record in (*self.keep, *self.delete, *self.unset)
        )

    @property
    def total(self) -> int:
        return len(self.keep) + len(self.delete) + len(self.unset)


@dataclass(frozen=True)
class ReconciledDecisions:
    """Result of applying an authoritative decision artifact to the inventory."""

    candidates: tuple[DeviceRecord, ...]
    kept: tuple[DecisionRecord, ...]
    unset: tuple[DecisionRecord, ...]
    no_decision: tuple[DeviceRecord, ...]
    unknown_serials: tuple[str, ...]


@dataclass(frozen=True)
class ReviewExport:
    uri: str
    row_count: int
    skipped_count: int
