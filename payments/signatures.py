"""HMAC helpers for authenticating gateway callbacks."""

import hashlib
import hmac
from typing import Union


def compute_signature(secret: str, *parts: str) -> str:
    """
    Return the lowercase hex HMAC-SHA256 of ``parts`` joined with ``|``.

    Razorpay signs checkout results as ``"{order_id}|{payment_id}"`` with the
    API key secret, so the field order matters.
    """

    msg = "|".join("" if p is None else str(p) for p in parts).encode("utf-8")
    return hmac.new(secret.encode("utf-8"), msg, hashlib.sha256).hexdigest()


def signatures_match(expected: str, received: str) -> bool:
    # compare_digest on bytes so non-ASCII input doesn't raise
    return hmac.compare_digest(
        expected.encode("utf-8"), (received or "").strip().encode("utf-8")
    )


def verify_payment_signature(secret: str, order_id: str, payment_id: str, signature: str) -> bool:
    return signatures_match(compute_signature(secret, order_id, payment_id), signature)


def verify_webhook_signature(secret: str, body: Union[bytes, str], signature: str) -> bool:
    """Webhooks are signed over the raw request body with the webhook secret."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return signatures_match(expected, signature)
