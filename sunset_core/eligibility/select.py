from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable

from sunset_core.devices.types import DeviceRecord
from sunset_core.eligibility.types import (
    EligibilityCriteria,
    EligibilitySelection,
    Exclusion,
    ExclusionReason,
)
from sunset_core.errors import EligibilityLookupError, SunsetError
from sunset_core.logging import get_logger
from sunset_core.providers.types import GroupLookup

logger = get_logger(__name__)


class _CohortResolver:
    """Resolves device group memberships to cohort membership, caching names."""

    def __init__(self, cohort_tags: Iterable[str], lookup: GroupLookup | None) -> None:
        self._tags = tuple(tag.strip().lower() for tag in cohort_tags if tag.strip())
        self._lookup = lookup
        self._names: dict[str, str] = {}
        self._failures: dict[str, str] = {}

    @property
    def unrestricted(self) -> bool:
        return not self._tags

    def in_cohort(self, device: DeviceRecord) -> bool:
        """True when any group matches a tag, whatever the membership order.

        Lookup failures only matter when no other group matched.
        """
        if self.unrestricted:
            return True
        errors: list[str] = []
        if device.membership_error:
            errors.append(device.membership_error)
        for group_id in device.group_memberships:
            try:
                name = self._group_name(group_id).lower()
            except EligibilityLookupError as exc:
                errors.append(str(exc))
                continue
            if any(tag in name for tag in self._tags):
                return True
        if errors:
            raise EligibilityLookupError("; ".join(errors))
        return False

    def _group_name(self, group_id: str) -> str:
        if group_id in self._names:
            return self._names[group_id]
        if group_id in self._failures:
            raise EligibilityLookupError(self._failures[group_id])
        if self._lookup is None:
            raise EligibilityLookupError("No group lookup configured")
        try:
            name = self._lookup.group_name(group_id)
        except SunsetError as exc:
            message = f"Group lookup failed for {group_id}: {exc}"
            self._failures[group_id] = message
            raise EligibilityLookupError(message) from exc
        self._names[group_id] = name or ""
        return self._names[group_id]


def evaluate(
    devices: Iterable[DeviceRecord],
    criteria: EligibilityCriteria,
    *,
    group_lookup: GroupLookup | None = None,
    now: datetime | None = None,
) -> EligibilitySelection:
    reference = now or datetime.now(timezone.utc)
    resolver = _CohortResolver(criteria.cohort_tags, group_lookup)
    keep_models = _normalize_models(criteria.models_to_keep)
    retire_models = _normalize_models(criteria.models_to_retire)

    candidates: list[DeviceRecord] = []
    exclusions: list[Exclusion] = []
    selected_serials: set[str] = set()

    for device in devices:
        exclusion = _check_device(
            device,
            criteria,
            resolver=resolver,
            keep_models=keep_models,
            retire_models=retire_models,
            now=reference,
        )
        if exclusion is None and device.serial_number in selected_serials:
            exclusion = Exclusion(
                device=device,
                reason=ExclusionReason.DUPLICATE_SERIAL,
                detail="serial already selected earlier in the inventory",
            )
        if exclusion is not None:
            exclusions.append(exclusion)
            continue
        selected_serials.add(device.serial_number or "")
        candidates.append(device)

    selection = EligibilitySelection(
        candidates=tuple(candidates),
        exclusions=tuple(exclusions),
    )
    logger.info(
        "Eligibility evaluated",
        extra={
            "device_count": len(candidates) + len(exclusions),
            "candidate_count": len(candidates),
            "excluded_count": len(exclusions),
        },
    )
    return selection


def select(
    devices: Iterable[DeviceRecord],
    criteria: EligibilityCriteria,
    *,
    group_lookup: GroupLookup | None = None,
    now: datetime | None = None,
) -> list[DeviceRecord]:
    selection = evaluate(devices, criteria, group_lookup=group_lookup, now=now)
    return list(selection.candidates)


def _check_device(
    device: DeviceRecord,
    criteria: EligibilityCriteria,
    *,
    resolver: _CohortResolver,
    keep_models: frozenset[str],
    retire_models: frozenset[str],
    now: datetime,
) -> Exclusion | None:
    if not device.has_serial:
        return Exclusion(device=device, reason=ExclusionReason.MISSING_SERIAL)

    model = _normalize_model(device.model)
    if model in keep_models:
        return Exclusion(device=device, reason=ExclusionReason.MODEL_KEPT, detail=device.model)

    if retire_models and model not in retire_models:
        return Exclusion(
            device=device,
            reason=ExclusionReason.MODEL_NOT_RETIRED,
            detail=device.model,
        )

    cohort_required = not (
        retire_models and criteria.include_other_cohorts_for_retired_models
    )
    if cohort_required:
        try:
            in_cohort = resolver.in_cohort(device)
        except EligibilityLookupError as exc:
            logger.warning(
                "Cohort lookup failed; excluding device",
                extra={
                    "serial_number": device.serial_number,
                    "device_id": device.device_id,
                    "error_message": str(exc),
                },
            )
            return Exclusion(
                device=device,
                reason=ExclusionReason.LOOKUP_FAILED,
                detail=str(exc),
            )
        if not in_cohort:
            return Exclusion(device=device, reason=ExclusionReason.NOT_IN_COHORT)

    return _safety_exclusion(device, criteria, now)


def _safety_exclusion(
    device: DeviceRecord,
    criteria: EligibilityCriteria,
    now: datetime,
) -> Exclusion | None:
    minimum = criteria.minimum_free_storage_bytes_for_safe_wipe
    if minimum > 0:
        free = device.free_storage_bytes
        if free is None or free < minimum:
            detail = "free storage unknown" if free is None else f"{free} < {minimum} bytes"
            return Exclusion(
                device=device,
                reason=ExclusionReason.INSUFFICIENT_STORAGE,
                detail=detail,
            )

    max_days = criteria.max_inactivity_days
    if max_days > 0:
        last_sync = device.last_sync_time
        if last_sync is None:
            return Exclusion(
                device=device,
                reason=ExclusionReason.STALE_SYNC,
                detail="never synced",
            )
        if now - last_sync > timedelta(days=max_days):
            days = (now - last_sync).days
            return Exclusion(
                device=device,
                reason=ExclusionReason.STALE_SYNC,
                detail=f"last sync {days} days ago",
            )
    return None


def _normalize_model(value: str | None) -> str:
    return (value or "").strip().lower()


def _normalize_models(values: Iterable[str]) -> frozenset[str]:
    return frozenset(_normalize_model(value) for value in values if value.strip())
