from sunset_core.notify.signer import sign_payload, verify_signature
from sunset_core.notify.webhook import (
    DeliveryOptions,
    DeliveryResult,
    WebhookNotifier,
    build_notifier,
    deliver_notification,
    notification_payload,
)

__all__ = [
    "DeliveryOptions",
    "DeliveryResult",
    "WebhookNotifier",
    "build_notifier",
    "deliver_notification",
    "notification_payload",
    "sign_payload",
    "verify_signature",
]
