from __future__ import annotations

from typing import Iterable

import fsspec
import yaml

from sunset_core.eligibility.types import EligibilityCriteria
from sunset_core.errors import ConfigurationError

_KNOWN_KEYS = frozenset(
    {
        "cohort_tags",
        "models_to_retire",
        "models_to_keep",
        "include_other_cohorts_for_retired_models",
        "minimum_free_storage_bytes_for_safe_wipe",
        "max_inactivity_days",
    }
)


def load_criteria(uri: str) -> EligibilityCriteria:
    fs, path = fsspec.core.url_to_fs(uri)
    if not fs.exists(path):
        raise ConfigurationError(f"Criteria file not found: {uri}")
    with fs.open(path, "rb") as handle:
        try:
            payload = yaml.safe_load(handle.read().decode("utf-8"))
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Criteria file is not valid YAML: {exc}") from exc
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ConfigurationError("Criteria file must contain a mapping")
    return criteria_from_dict(payload)


def criteria_from_dict(payload: dict[str, object]) -> EligibilityCriteria:
    unknown = sorted(str(key) for key in payload if key not in _KNOWN_KEYS)
    if unknown:
        raise ConfigurationError(f"Unknown criteria keys: {', '.join(unknown)}")
    return EligibilityCriteria(
        cohort_tags=_string_set(payload.get("cohort_tags"), "cohort_tags"),
        models_to_retire=_string_set(payload.get("models_to_retire"), "models_to_retire"),
        models_to_keep=_string_set(payload.get("models_to_keep"), "models_to_keep"),
        include_other_cohorts_for_retired_models=bool(
            payload.get("include_other_cohorts_for_retired_models", False)
        ),
        minimum_free_storage_bytes_for_safe_wipe=_non_negative_int(
            payload.get("minimum_free_storage_bytes_for_safe_wipe"),
            "minimum_free_storage_bytes_for_safe_wipe",
        ),
        max_inactivity_days=_non_negative_int(
            payload.get("max_inactivity_days"),
            "max_inactivity_days",
        ),
    )


def criteria_to_dict(criteria: EligibilityCriteria) -> dict[str, object]:
    return {
        "cohort_tags": sorted(criteria.cohort_tags),
        "models_to_retire": sorted(criteria.models_to_retire),
        "models_to_keep": sorted(criteria.models_to_keep),
        "include_other_cohorts_for_retired_models": (
            criteria.include_other_cohorts_for_retired_models
        ),
        "minimum_free_storage_bytes_for_safe_wipe": (
            criteria.minimum_free_storage_bytes_for_safe_wipe
        ),
        "max_inactivity_days": criteria.max_inactivity_days,
    }


def _string_set(value: object, name: str) -> frozenset[str]:
    if value is None:
        return frozenset()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, Iterable) or isinstance(value, dict):
        raise ConfigurationError(f"{name} must be a list of strings")
    cleaned = {str(item).strip() for item in value if str(item).strip()}
    return frozenset(cleaned)


def _non_negative_int(value: object, name: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be an integer")
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be an integer") from exc
    if parsed < 0:
        raise ConfigurationError(f"{name} must not be negative")
    return parsed
