from __future__ import annotations

from pathlib import Path
from typing import Iterable
from urllib.parse import urlparse


def _strip_slashes(value: str) -> str:
    return value.strip("/")


def _join_parts(parts: Iterable[str]) -> str:
    return "/".join(_strip_slashes(part) for part in parts if part)


def join_uri(base_uri: str, *parts: str) -> str:
    parsed = urlparse(base_uri)
    if parsed.scheme == "file":
        safe_parts = [_strip_slashes(part) for part in parts if part]
        return str(Path(parsed.path).joinpath(*safe_parts))
    if parsed.scheme and parsed.netloc:
        base = base_uri.rstrip("/")
        return f"{base}/{_join_parts(parts)}"
    safe_parts = [_strip_slashes(part) for part in parts if part]
    return str(Path(base_uri).joinpath(*safe_parts))


def parent_path(path: str) -> str:
    return "/".join(path.split("/")[:-1])


def audit_json_uri(base_uri: str, run_id: str) -> str:
    return join_uri(base_uri, "audit", "retirement", f"{run_id}.json")


def audit_csv_uri(base_uri: str, run_id: str) -> str:
    return join_uri(base_uri, "audit", "retirement", f"{run_id}.csv")


def schedule_registry_uri(base_uri: str) -> str:
    return join_uri(base_uri, "control", "scheduled_runs.json")
