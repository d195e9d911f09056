from sunset_core.decisions.export import REVIEW_COLUMNS, export_review_artifact
from sunset_core.decisions.ingest import ingest, load_decision_artifact
from sunset_core.decisions.reconcile import reconcile_decisions
from sunset_core.decisions.types import (
    Decision,
    DecisionRecord,
    DecisionSet,
    ReconciledDecisions,
    ReviewExport,
)

__all__ = [
    "Decision",
    "DecisionRecord",
    "DecisionSet",
    "REVIEW_COLUMNS",
    "ReconciledDecisions",
    "ReviewExport",
    "export_review_artifact",
    "ingest",
    "load_decision_artifact",
    "reconcile_decisions",
]
