from sunset_core.eligibility.criteria import (
    criteria_from_dict,
    criteria_to_dict,
    load_criteria,
)
from sunset_core.eligibility.select import evaluate, select
from sunset_core.eligibility.types import (
    EligibilityCriteria,
    EligibilitySelection,
    Exclusion,
    ExclusionReason,
)

__all__ = [
    "EligibilityCriteria",
    "EligibilitySelection",
    "Exclusion",
    "ExclusionReason",
    "criteria_from_dict",
    "criteria_to_dict",
    "evaluate",
    "load_criteria",
    "select",
]
