from __future__ import annotations

import json
from datetime import datetime, timezone
from urllib.error import HTTPError, URLError

import pytest

from sunset_core.audit import aggregate
from sunset_core.config import Config
from sunset_core.notify import (
    DeliveryOptions,
    WebhookNotifier,
    build_notifier,
    deliver_notification,
    notification_payload,
    sign_payload,
    verify_signature,
)
from sunset_core.retirement import (
    Phase,
    PhaseStatus,
    RetirementConfig,
    RetirementPhaseOutcome,
    RetirementResult,
)

STAMP = datetime(2026, 6, 20, 9, 30, tzinfo=timezone.utc)


class DummyResponse:
    status = 200

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def getcode(self):
        return 200


def _summary(make_device):
    failed = make_device(serial_number="SN-BAD")
    results = [
        RetirementResult(
            device=device,
            outcomes=(
                RetirementPhaseOutcome(
                    phase=Phase.WIPE,
                    status=status,
                    error_detail=None,
                    timestamp=STAMP,
                ),
            ),
            started_at=STAMP,
            finished_at=STAMP,
        )
        for device, status in (
            (make_device(serial_number="SN-OK"), PhaseStatus.SUCCESS),
            (failed, PhaseStatus.FAILED),
        )
    ]
    return aggregate(results, RetirementConfig(), run_id="run-1")


@pytest.mark.core
def test_signature_roundtrip():
    header = sign_payload("secret", "2026-06-20T00:00:00Z", b"{}")
    assert header.startswith("t=2026-06-20T00:00:00Z,v1=")
    assert verify_signature("secret", header, b"{}")
    assert not verify_signature("other", header, b"{}")
    assert not verify_signature("secret", "garbage", b"{}")


@pytest.mark.core
def test_payload_lists_devices_needing_attention(make_device):
    payload = notification_payload(_summary(make_device), audit_uri="audit.json")
    assert payload["run_id"] == "run-1"
    assert payload["needs_attention"] == ["SN-BAD"]
    assert payload["status_counts"]["Failed"] == 1
    assert payload["audit_uri"] == "audit.json"


@pytest.mark.core
def test_notifier_signs_requests(monkeypatch, make_device):
    captured: dict[str, object] = {}

    def fake_urlopen(request, timeout):
        captured["request"] = request
        return DummyResponse()

    monkeypatch.setattr("sunset_core.notify.webhook.urlopen", fake_urlopen)
    notifier = WebhookNotifier(
        "https://hooks.test/sunset",
        secret="secret",
        options=DeliveryOptions(timeout_s=1, max_attempts=1, backoff_s=0),
    )
    notifier.send(_summary(make_device), audit_uri="audit.json")

    assert notifier.last_result is not None
    assert notifier.last_result.status == "success"
    request = captured["request"]
    headers = {key.lower(): value for key, value in request.header_items()}
    assert verify_signature("secret", headers["x-sunset-signature"], request.data)
    assert json.loads(request.data)["audit_uri"] == "audit.json"


@pytest.mark.core
def test_delivery_retries_then_gives_up(monkeypatch):
    calls: list[int] = []

    def fake_urlopen(request, timeout):
        calls.append(1)
        raise HTTPError(request.full_url, 503, "unavailable", hdrs=None, fp=None)

    monkeypatch.setattr("sunset_core.notify.webhook.urlopen", fake_urlopen)
    result = deliver_notification(
        "https://hooks.test/sunset",
        {"event_type": "retirement.completed"},
        DeliveryOptions(timeout_s=1, max_attempts=3, backoff_s=0),
    )
    assert result.status == "failed"
    assert result.status_code == 503
    assert len(calls) == 3


@pytest.mark.core
def test_notifier_never_raises(monkeypatch, make_device):
    def fake_urlopen(request, timeout):
        raise URLError("connection refused")

    monkeypatch.setattr("sunset_core.notify.webhook.urlopen", fake_urlopen)
    notifier = WebhookNotifier(
        "https://hooks.test/sunset",
        options=DeliveryOptions(timeout_s=1, max_attempts=2, backoff_s=0),
    )
    notifier.send(_summary(make_device))
    assert notifier.last_result is not None
    assert notifier.last_result.status == "failed"
    assert notifier.last_result.attempts == 2


@pytest.mark.core
def test_build_notifier_requires_url(monkeypatch):
    monkeypatch.setenv("SUNSET_SANDBOX_STATE", "/tmp/sandbox.json")
    assert build_notifier(Config.from_env()) is None
    monkeypatch.setenv("NOTIFY_WEBHOOK_URL", "https://hooks.test/sunset")
    assert isinstance(build_notifier(Config.from_env()), WebhookNotifier)
