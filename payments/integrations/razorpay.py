import json
import logging

import requests
from requests import RequestException
from requests.auth import HTTPBasicAuth

logger = logging.getLogger(__name__)

COMMON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


class RazorpayError(Exception):
    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class RazorpayClient:
    """Minimal Razorpay Orders API client.

    Only order creation is needed server-side; checkout happens on the
    gateway's hosted page and signatures are verified locally.
    """

    def __init__(self, config, session=None):
        self.config = config
        self.session = session or requests.Session()
        self.auth = HTTPBasicAuth(config.key_id, config.key_secret)

    def _url(self, path: str) -> str:
        return f"{self.config.base_url}/v1/{path.lstrip('/')}"

    def create_order(self, *, amount: int, currency: str, receipt: str, notes=None) -> dict:
        """
        POST /v1/orders. ``amount`` is in the smallest currency unit.
        Returns the order entity (``id``, ``amount``, ``currency``, ``status``...).
        """
        payload = {"amount": amount, "currency": currency, "receipt": receipt}
        if notes:
            payload["notes"] = notes

        try:
            resp = self.session.post(
                self._url("orders"),
                json=payload,
                headers=COMMON_HEADERS,
                auth=self.auth,
                timeout=self.config.timeout,
            )
        except RequestException as e:
            raise RazorpayError(f"Gateway request failed: {e}")

        try:
            data = resp.json()
        except ValueError:
            data = {"raw": resp.text}

        if resp.status_code == 200:
            if not isinstance(data, dict) or not data.get("id"):
                raise RazorpayError(
                    f"Create order failed: response missing order id. Response: {json.dumps(data)[:800]}",
                    status_code=resp.status_code,
                )
            return data

        if resp.status_code == 401:
            hint = "Check Authorization (key_id/key_secret)."
        elif resp.status_code == 400:
            desc = ((data or {}).get("error") or {}).get("description") if isinstance(data, dict) else None
            hint = f"Bad request: {desc or 'amount/currency/receipt'}."
        elif resp.status_code >= 500:
            hint = f"Gateway error {resp.status_code}."
        else:
            hint = f"HTTP {resp.status_code}"
        raise RazorpayError(
            f"Create order failed: {hint} Response: {json.dumps(data)[:800]}",
            status_code=resp.status_code,
        )
