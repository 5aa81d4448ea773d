import logging
from dataclasses import dataclass, field
from typing import Optional

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.razorpay.com"
DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class PaymentsConfig:
    """Credentials and gateway settings shared by the issuer and verifier.

    Built once per request from ``settings.RAZORPAY`` (or directly in tests)
    and passed in explicitly. Secrets are kept out of ``repr`` so the object
    can be logged safely.
    """

    key_id: str
    key_secret: str = field(repr=False)
    webhook_secret: Optional[str] = field(default=None, repr=False)
    base_url: str = DEFAULT_BASE_URL
    timeout: float = DEFAULT_TIMEOUT

    @classmethod
    def from_settings(cls, conf: Optional[dict] = None) -> "PaymentsConfig":
        conf = conf if conf is not None else getattr(settings, "RAZORPAY", {}) or {}

        key_id = conf.get("KEY_ID")
        key_secret = conf.get("KEY_SECRET")
        if not key_id or not key_secret:
            logger.error("Razorpay KEY_ID/KEY_SECRET missing in settings")
            raise ImproperlyConfigured(
                "RAZORPAY['KEY_ID'] and RAZORPAY['KEY_SECRET'] settings are required"
            )

        try:
            timeout = float(conf.get("TIMEOUT") or DEFAULT_TIMEOUT)
        except (TypeError, ValueError):
            raise ImproperlyConfigured("RAZORPAY['TIMEOUT'] must be a number of seconds")

        return cls(
            key_id=key_id,
            key_secret=key_secret,
            webhook_secret=conf.get("WEBHOOK_SECRET") or None,
            base_url=(conf.get("BASE_URL") or DEFAULT_BASE_URL).rstrip("/"),
            timeout=timeout,
        )
