from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum

from sunset_core.devices.types import DeviceRecord


class ExclusionReason(str, Enum):
    MISSING_SERIAL = "missing_serial"
    DUPLICATE_SERIAL = "duplicate_serial"
    MODEL_KEPT = "model_kept"
    MODEL_NOT_RETIRED = "model_not_retired"
    NOT_IN_COHORT = "not_in_cohort"
    LOOKUP_FAILED = "lookup_failed"
    INSUFFICIENT_STORAGE = "insufficient_storage"
    STALE_SYNC = "stale_sync"


@dataclass(frozen=True)
class EligibilityCriteria:
    cohort_tags: frozenset[str] = field(default_factory=frozenset)
    models_to_retire: frozenset[str] = field(default_factory=frozenset)
    models_to_keep: frozenset[str] = field(default_factory=frozenset)
    include_other_cohorts_for_retired_models: bool = False
    minimum_free_storage_bytes_for_safe_wipe: int = 0
    max_inactivity_days: int = 0


@dataclass(frozen=True)
class Exclusion:
    device: DeviceRecord
    reason: ExclusionReason
    detail: str | None = None


@dataclass(frozen=True)
class EligibilitySelection:
    candidates: tuple[DeviceRecord, ...]
    exclusions: tuple[Exclusion, ...]

    def excluded_counts(self) -> dict[str, int]:
        counts = Counter(exclusion.reason.value for exclusion in self.exclusions)
        return dict(sorted(counts.items()))
