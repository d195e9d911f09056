from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from sunset_core.audit.summary import AuditSummary, OverallStatus
from sunset_core.config import Config
from sunset_core.logging import get_logger
from sunset_core.notify.signer import sign_payload

logger = get_logger(__name__)

EVENT_TYPE = "retirement.completed"


@dataclass(frozen=True)
class DeliveryOptions:
    timeout_s: float = 10.0
    max_attempts: int = 3
    backoff_s: float = 0.5
    retry_statuses: tuple[int, ...] = (429, 500, 502, 503, 504)


@dataclass(frozen=True)
class DeliveryResult:
    delivery_id: str
    status: str
    status_code: int | None
    attempts: int
    duration_ms: int
    error: str | None = None


def notification_payload(
    summary: AuditSummary,
    *,
    audit_uri: str | None = None,
) -> dict[str, object]:
    attention = [
        device.serial_number
        for device in summary.devices
        if device.overall_status in (OverallStatus.FAILED, OverallStatus.PARTIAL)
    ]
    return {
        "event_type": EVENT_TYPE,
        "run_id": summary.run_id,
        "generated_at": summary.generated_at.isoformat(),
        "dry_run": summary.config.dry_run,
        "device_count": len(summary.devices),
        "status_counts": summary.status_counts,
        "phase_counts": summary.phase_counts,
        "needs_attention": attention,
        "audit_uri": audit_uri,
    }


def deliver_notification(
    url: str,
    payload: dict[str, object],
    options: DeliveryOptions,
    *,
    secret: str | None = None,
) -> DeliveryResult:
    body = json.dumps(payload, ensure_ascii=True).encode("utf-8")
    timestamp = datetime.now(timezone.utc).isoformat()
    headers = {
        "Content-Type": "application/json",
        "User-Agent": "Sunset-Notifier/1.0",
        "X-Sunset-Event": str(payload.get("event_type", EVENT_TYPE)),
        "X-Sunset-Timestamp": timestamp,
    }
    if secret:
        headers["X-Sunset-Signature"] = sign_payload(secret, timestamp, body)

    delivery_id = str(uuid.uuid4())
    attempts = 0
    started = time.monotonic()
    last_error: str | None = None
    last_status: int | None = None

    while attempts < max(1, options.max_attempts):
        attempts += 1
        status_code: int | None = None
        error: str | None = None
        try:
            request = Request(url, data=body, headers=headers, method="POST")
            with urlopen(request, timeout=options.timeout_s) as response:
                status_code = getattr(response, "status", None) or response.getcode()
        except HTTPError as exc:
            status_code = exc.code
            error = exc.reason if isinstance(exc.reason, str) else str(exc)
        except URLError as exc:
            error = str(exc)
        except OSError as exc:
            error = str(exc)

        last_error = error
        last_status = status_code
        if status_code is not None and 200 <= status_code < 300:
            return DeliveryResult(
                delivery_id=delivery_id,
                status="success",
                status_code=status_code,
                attempts=attempts,
                duration_ms=int((time.monotonic() - started) * 1000),
            )

        if not _should_retry(status_code, options.retry_statuses):
            break
        if attempts < options.max_attempts and options.backoff_s > 0:
            time.sleep(options.backoff_s * (2 ** (attempts - 1)))

    return DeliveryResult(
        delivery_id=delivery_id,
        status="failed",
        status_code=last_status,
        attempts=attempts,
        duration_ms=int((time.monotonic() - started) * 1000),
        error=last_error,
    )


def _should_retry(status_code: int | None, retry_statuses: tuple[int, ...]) -> bool:
    if status_code is None:
        return True
    return status_code in retry_statuses


class WebhookNotifier:
    """Fire-and-forget sink: delivery failures are logged, never raised."""

    def __init__(
        self,
        url: str,
        *,
        secret: str | None = None,
        options: DeliveryOptions | None = None,
    ) -> None:
        self._url = url
        self._secret = secret
        self._options = options or DeliveryOptions()
        self.last_result: DeliveryResult | None = None

    def send(self, summary: AuditSummary, *, audit_uri: str | None = None) -> None:
        payload = notification_payload(summary, audit_uri=audit_uri)
        result = deliver_notification(
            self._url,
            payload,
            self._options,
            secret=self._secret,
        )
        self.last_result = result
        extra = {
            "run_id": summary.run_id,
            "status": result.status,
            "status_code": result.status_code,
            "duration_ms": result.duration_ms,
            "error_message": result.error,
        }
        if result.status == "success":
            logger.info("Retirement notification delivered", extra=extra)
        else:
            logger.warning("Retirement notification failed", extra=extra)


def build_notifier(config: Config) -> WebhookNotifier | None:
    if not config.notify_webhook_url:
        return None
    return WebhookNotifier(
        config.notify_webhook_url,
        secret=config.notify_webhook_secret,
        options=DeliveryOptions(timeout_s=config.notify_timeout_s),
    )
