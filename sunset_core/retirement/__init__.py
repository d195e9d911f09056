from sunset_core.retirement.orchestrator import Confirmer, plan_retirement, retire
from sunset_core.retirement.types import (
    CANCELLED_DETAIL,
    DRY_RUN_DETAIL,
    PHASE_ORDER,
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

__all__ = [
    "CANCELLED_DETAIL",
    "Confirmer",
    "DRY_RUN_DETAIL",
    "DevicePlan",
    "PHASE_ORDER",
    "Phase",
    "PhaseStatus",
    "RetirementConfig",
    "RetirementPhaseOutcome",
    "RetirementPlan",
    "RetirementResult",
    "WIPE_FAILED_DETAIL",
    "new_run_id",
    "plan_retirement",
    "retire",
]
