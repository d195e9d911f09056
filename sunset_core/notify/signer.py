from __future__ import annotations

import hashlib
import hmac


def sign_payload(secret: str, timestamp: str, body: bytes) -> str:
    message = f"{timestamp}.".encode("utf-8") + body
    signature = hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def verify_signature(secret: str, header: str, body: bytes) -> bool:
    parts = dict(
        item.split("=", 1) for item in header.split(",") if "=" in item
    )
    timestamp = parts.get("t")
    if not timestamp or "v1" not in parts:
        return False
    expected = sign_payload(secret, timestamp, body)
    return hmac.compare_digest(expected, header)
