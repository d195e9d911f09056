from __future__ import annotations

import csv
import io
import os
import re
import time

import fsspec
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from local_adapter.sandbox import build_sandbox_backend
from sunset_core.audit.writer import load_audit_record
from sunset_core.config import Config, get_config
from sunset_core.decisions.ingest import ingest
from sunset_core.eligibility.criteria import criteria_from_dict
from sunset_core.eligibility.select import evaluate
from sunset_core.errors import (
    ConfirmationDeclined,
    RecoverableError,
    SunsetError,
    ValidationError,
)
from sunset_core.logging import configure_logging, get_logger
from sunset_core.notify.webhook import build_notifier
from sunset_core.pipeline import Backend, RunRequest, run_pipeline
from sunset_core.storage.paths import audit_json_uri

SERVICE_NAME = "sunset-local-retirement"

configure_logging(
    service=SERVICE_NAME,
    env=os.getenv("ENV", "local"),
    version=os.getenv("SUNSET_VERSION"),
)
logger = get_logger(__name__)

app = FastAPI()

_RUN_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    timestamp: str


class PreviewRequest(BaseModel):
    criteria: dict[str, object] = Field(default_factory=dict)
    cohort_tag: str | None = None


class DeviceSummary(BaseModel):
    serial_number: str | None
    device_id: str
    device_name: str | None = None
    model: str | None = None
    reason: str | None = None
    detail: str | None = None


class PreviewResponse(BaseModel):
    candidate_count: int
    excluded_count: int
    excluded_by_reason: dict[str, int]
    candidates: list[DeviceSummary]
    exclusions: list[DeviceSummary]


class DecisionValidateRequest(BaseModel):
    csv_text: str


class DecisionValidateResponse(BaseModel):
    valid: bool
    total: int
    keep: list[str]
    delete: list[str]
    unset: list[str]


class RetirementRequest(BaseModel):
    criteria_uri: str | None = None
    decision_artifact_uri: str | None = None
    dry_run: bool = False
    remove_from_provisioning: bool = False
    remove_from_directory: bool = False
    gate_cleanup_on_wipe_success: bool | None = None
    confirm: bool = False
    cohort_tag: str | None = None


class RetirementResponse(BaseModel):
    run_id: str
    exit_code: int
    status_counts: dict[str, int]
    phase_counts: dict[str, dict[str, int]]
    audit_uri: str
    audit_csv_uri: str


def _backend(config: Config) -> Backend:
    if config.backend == "graph":
        from graph_adapter.backend import build_graph_backend

        return build_graph_backend(config)
    if not config.sandbox_state_uri:
        raise HTTPException(status_code=500, detail="SUNSET_SANDBOX_STATE is not set")
    return build_sandbox_backend(config.sandbox_state_uri)


def _http_error(exc: SunsetError) -> HTTPException:
    if isinstance(exc, ConfirmationDeclined):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, RecoverableError):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(
        status="ok",
        service=SERVICE_NAME,
        version=os.getenv("SUNSET_VERSION", "dev"),
        timestamp=time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
    )


@app.post("/eligibility/preview", response_model=PreviewResponse)
def preview_eligibility(payload: PreviewRequest) -> PreviewResponse:
    config = get_config()
    backend = _backend(config)
    try:
        criteria = criteria_from_dict(payload.criteria)
        devices = backend.inventory.list_devices(payload.cohort_tag)
        selection = evaluate(devices, criteria, group_lookup=backend.groups)
    except SunsetError as exc:
        raise _http_error(exc) from exc

    return PreviewResponse(
        candidate_count=len(selection.candidates),
        excluded_count=len(selection.exclusions),
        excluded_by_reason=selection.excluded_counts(),
        candidates=[
            DeviceSummary(
                serial_number=device.serial_number,
                device_id=device.device_id,
                device_name=device.device_name,
                model=device.model,
            )
            for device in selection.candidates
        ],
        exclusions=[
            DeviceSummary(
                serial_number=item.device.serial_number,
                device_id=item.device.device_id,
                device_name=item.device.device_name,
                model=item.device.model,
                reason=item.reason.value,
                detail=item.detail,
            )
            for item in selection.exclusions
        ],
    )


@app.post("/decisions/validate", response_model=DecisionValidateResponse)
def validate_decisions(payload: DecisionValidateRequest) -> DecisionValidateResponse:
    reader = csv.DictReader(io.StringIO(payload.csv_text))
    try:
        decisions = ingest(reader, fieldnames=reader.fieldnames)
    except SunsetError as exc:
        raise _http_error(exc) from exc
    return DecisionValidateResponse(
        valid=True,
        total=decisions.total,
        keep=[record.serial_number for record in decisions.keep],
        delete=[record.serial_number for record in decisions.delete],
        unset=[record.serial_number for record in decisions.unset],
    )


@app.post("/retirements", response_model=RetirementResponse)
def start_retirement(payload: RetirementRequest) -> RetirementResponse:
    config = get_config()
    backend = _backend(config)
    request = RunRequest(
        criteria_uri=payload.criteria_uri,
        decision_artifact_uri=payload.decision_artifact_uri,
        dry_run=payload.dry_run,
        remove_from_provisioning=payload.remove_from_provisioning,
        remove_from_directory=payload.remove_from_directory,
        gate_cleanup_on_wipe_success=payload.gate_cleanup_on_wipe_success,
        confirmation_required=True,
        cohort_tag=payload.cohort_tag,
    )
    try:
        outcome = run_pipeline(
            request,
            backend,
            audit_root=config.audit_root,
            notifier=build_notifier(config),
            confirm=lambda plan: payload.confirm,
            max_workers=config.max_workers,
            default_gate=config.gate_cleanup_on_wipe,
        )
    except SunsetError as exc:
        raise _http_error(exc) from exc

    logger.info(
        "Retirement request completed",
        extra={
            "run_id": outcome.run_id,
            "device_count": len(outcome.summary.devices),
            "audit_uri": outcome.artifact.json_uri,
        },
    )
    return RetirementResponse(
        run_id=outcome.run_id,
        exit_code=outcome.exit_code,
        status_counts=outcome.summary.status_counts,
        phase_counts=outcome.summary.phase_counts,
        audit_uri=outcome.artifact.json_uri,
        audit_csv_uri=outcome.artifact.csv_uri,
    )


@app.get("/retirements/{run_id}")
def get_retirement(run_id: str) -> dict[str, object]:
    if not _RUN_ID_RE.match(run_id):
        raise HTTPException(status_code=400, detail="Invalid run id")
    uri = audit_json_uri(get_config().audit_root, run_id)
    fs, path = fsspec.core.url_to_fs(uri)
    if not fs.exists(path):
        raise HTTPException(status_code=404, detail="Run not found")
    return load_audit_record(uri)
