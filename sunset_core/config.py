import os
from dataclasses import dataclass
from functools import lru_cache

DEFAULT_AUDIT_ROOT = "./sunset_data"
DEFAULT_GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
ALLOWED_BACKENDS = ("graph", "sandbox")


@dataclass(frozen=True)
class Config:
    env: str
    log_level: str
    audit_root: str
    backend: str
    sandbox_state_uri: str | None
    graph_base_url: str
    graph_access_token: str | None
    graph_timeout_s: float
    max_workers: int
    gate_cleanup_on_wipe: bool
    notify_webhook_url: str | None
    notify_webhook_secret: str | None
    notify_timeout_s: float

    @classmethod
    def from_env(cls) -> "Config":
        missing: list[str] = []

        def require(name: str) -> str:
            value = os.getenv(name)
            if value is None or value == "":
                missing.append(name)
                return ""
            return value

        backend = os.getenv("SUNSET_BACKEND", "sandbox").strip().lower()
        if backend not in ALLOWED_BACKENDS:
            allowed = ", ".join(ALLOWED_BACKENDS)
            raise ValueError(f"SUNSET_BACKEND must be one of: {allowed}")

        sandbox_state_uri = os.getenv("SUNSET_SANDBOX_STATE") or None
        graph_access_token = os.getenv("GRAPH_ACCESS_TOKEN") or None
        if backend == "sandbox" and sandbox_state_uri is None:
            require("SUNSET_SANDBOX_STATE")
        if backend == "graph" and graph_access_token is None:
            require("GRAPH_ACCESS_TOKEN")

        max_workers = _parse_int(os.getenv("SUNSET_MAX_WORKERS", "1"), "SUNSET_MAX_WORKERS")
        if max_workers < 1:
            raise ValueError("SUNSET_MAX_WORKERS must be at least 1")

        if missing:
            missing_str = ", ".join(missing)
            raise ValueError(f"Missing required env vars: {missing_str}")

        return cls(
            env=os.getenv("ENV", "local"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            audit_root=os.getenv("SUNSET_AUDIT_ROOT", DEFAULT_AUDIT_ROOT),
            backend=backend,
            sandbox_state_uri=sandbox_state_uri,
            graph_base_url=os.getenv("GRAPH_BASE_URL", DEFAULT_GRAPH_BASE_URL).rstrip("/"),
            graph_access_token=graph_access_token,
            graph_timeout_s=_parse_float(os.getenv("GRAPH_TIMEOUT_S", "30")),
            max_workers=max_workers,
            gate_cleanup_on_wipe=_parse_bool(
                os.getenv("SUNSET_GATE_CLEANUP_ON_WIPE"),
                True,
            ),
            notify_webhook_url=os.getenv("NOTIFY_WEBHOOK_URL") or None,
            notify_webhook_secret=os.getenv("NOTIFY_WEBHOOK_SECRET") or None,
            notify_timeout_s=_parse_float(os.getenv("NOTIFY_TIMEOUT_S", "10")),
        )


def _parse_int(value: str, name: str) -> int:
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc


def _parse_float(value: str) -> float:
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"Invalid float value: {value}") from exc


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


@lru_cache(maxsize=1)
def get_config() -> Config:
    return Config.from_env()
