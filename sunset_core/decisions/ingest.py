from __future__ import annotations

import csv
from typing import Iterable, Mapping, Sequence

import fsspec

from sunset_core.decisions.types import Decision, DecisionRecord, DecisionSet
from sunset_core.devices.store import normalize_serial
from sunset_core.errors import MalformedArtifactError
from sunset_core.logging import get_logger

logger = get_logger(__name__)

SERIAL_COLUMN = "serialNumber"
DECISION_COLUMN = "decision"

_SERIAL_ALIASES = frozenset({"serialnumber", "serial_number", "serial number"})
_DECISION_ALIASES = frozenset({"decision"})

_DECISION_VALUES: dict[str, Decision] = {
    "keep": Decision.KEEP,
    "delete": Decision.DELETE,
    "unset": Decision.UNSET,
    "": Decision.UNSET,
}


def ingest(
    rows: Iterable[Mapping[str, object]],
    *,
    fieldnames: Sequence[str] | None = None,
) -> DecisionSet:
    """Validate decision rows and split them by decision.

    Fails fast with MalformedArtifactError; nothing is partially accepted.
    Header line is row 1, so the first data row is reported as row 2.
    """
    materialized = list(rows)
    headers = list(fieldnames) if fieldnames is not None else _headers_from_rows(materialized)
    if not headers:
        raise MalformedArtifactError("Decision artifact has no header row")
    serial_key = _find_column(headers, _SERIAL_ALIASES)
    if serial_key is None:
        raise MalformedArtifactError(
            f"Decision artifact is missing the {SERIAL_COLUMN} column"
        )
    decision_key = _find_column(headers, _DECISION_ALIASES)
    if decision_key is None:
        raise MalformedArtifactError(
            f"Decision artifact is missing the {DECISION_COLUMN} column"
        )

    keep: list[DecisionRecord] = []
    delete: list[DecisionRecord] = []
    unset: list[DecisionRecord] = []
    seen: dict[str, Decision] = {}

    for index, row in enumerate(materialized, start=2):
        serial = normalize_serial(row.get(serial_key))
        if serial is None:
            raise MalformedArtifactError(f"Row {index}: {SERIAL_COLUMN} is blank")
        decision = _parse_decision(row.get(decision_key), index=index, serial=serial)
        previous = seen.get(serial)
        if previous is not None:
            if previous != decision:
                raise MalformedArtifactError(
                    f"Row {index}: serial {serial} has conflicting decisions "
                    f"({previous.value} and {decision.value})"
                )
            continue
        seen[serial] = decision
        record = DecisionRecord(
            serial_number=serial,
            decision=decision,
            columns=_passthrough(row, skip=(serial_key, decision_key)),
        )
        if decision is Decision.KEEP:
            keep.append(record)
        elif decision is Decision.DELETE:
            delete.append(record)
        else:
            unset.append(record)

    decisions = DecisionSet(keep=tuple(keep), delete=tuple(delete), unset=tuple(unset))
    logger.info(
        "Decision artifact ingested",
        extra={
            "device_count": decisions.total,
            "candidate_count": len(decisions.delete),
        },
    )
    return decisions


def load_decision_artifact(uri: str) -> DecisionSet:
    fs, path = fsspec.core.url_to_fs(uri)
    if not fs.exists(path):
        raise MalformedArtifactError(f"Decision artifact not found: {uri}")
    with fs.open(path, "r", encoding="utf-8-sig", newline="") as handle:
        reader = csv.DictReader(handle)
        rows = list(reader)
        fieldnames = list(reader.fieldnames or [])
    return ingest(rows, fieldnames=fieldnames)


def _parse_decision(value: object, *, index: int, serial: str) -> Decision:
    text = "" if value is None else str(value).strip().lower()
    decision = _DECISION_VALUES.get(text)
    if decision is None:
        raise MalformedArtifactError(
            f"Row {index}: invalid decision {value!r} for serial {serial} "
            "(expected Keep, Delete or blank)"
        )
    return decision


def _headers_from_rows(rows: list[Mapping[str, object]]) -> list[str]:
    headers: list[str] = []
    for row in rows:
        for key in row:
            if key not in headers:
                headers.append(key)
    return headers


def _find_column(headers: Sequence[str], aliases: frozenset[str]) -> str | None:
    for header in headers:
        if header is not None and header.strip().lower() in aliases:
            return header
    return None


def _passthrough(row: Mapping[str, object], *, skip: tuple[str, ...]) -> dict[str, str]:
    columns: dict[str, str] = {}
    for key, value in row.items():
        # csv.DictReader files surplus cells under a None key.
        if key is None or key in skip:
            continue
        columns[str(key)] = "" if value is None else str(value)
    return columns
