from sunset_core.audit.summary import (
    EXIT_DEVICES_FAILED,
    EXIT_OK,
    AuditSummary,
    DeviceAudit,
    OverallStatus,
    SelectionReport,
    aggregate,
    derive_overall_status,
    selection_from_decisions,
    selection_from_eligibility,
)
from sunset_core.audit.writer import AuditArtifact, load_audit_record, write_audit_artifact

__all__ = [
    "AuditArtifact",
    "AuditSummary",
    "DeviceAudit",
    "EXIT_DEVICES_FAILED",
    "EXIT_OK",
    "OverallStatus",
    "SelectionReport",
    "aggregate",
    "derive_overall_status",
    "load_audit_record",
    "selection_from_decisions",
    "selection_from_eligibility",
    "write_audit_artifact",
]
