import json
from unittest.mock import patch

from django.test import TestCase, override_settings
from django.urls import reverse

from .integrations.razorpay import RazorpayError
from .models import Order
from .signatures import compute_signature

RAZORPAY = {
    "KEY_ID": "rzp_test_key",
    "KEY_SECRET": "s3cr3t",
    "WEBHOOK_SECRET": "whsec",
    "BASE_URL": "https://api.razorpay.test",
    "TIMEOUT": 5,
}


class JsonPostMixin:
    def _post(self, name, payload):
        return self.client.post(
            reverse(name),
            data=json.dumps(payload),
            content_type="application/json",
        )


@override_settings(RAZORPAY=RAZORPAY)
class CreateOrderViewTests(JsonPostMixin, TestCase):
    gateway_order = {"id": "order_abc123", "amount": 50000, "currency": "INR", "status": "created"}

    def test_creates_order(self):
        with patch(
            "payments.services.RazorpayClient.create_order", return_value=self.gateway_order
        ) as create:
            resp = self._post("payments:create_order", {"amount": 50000, "currency": "INR"})

        self.assertEqual(resp.status_code, 200)
        order = Order.objects.get()
        self.assertEqual(resp.json(), {
            "order_id": "order_abc123",
            "record_id": str(order.pk),
            "amount": 50000,
            "currency": "INR",
            "status": "created",
        })
        kwargs = create.call_args.kwargs
        self.assertEqual(kwargs["amount"], 50000)
        self.assertEqual(kwargs["currency"], "INR")
        self.assertTrue(kwargs["receipt"].startswith("receipt_order_"))

    def test_missing_currency_is_bad_request(self):
        with patch("payments.services.RazorpayClient.create_order") as create:
            resp = self._post("payments:create_order", {"amount": 50000})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"]["kind"], "invalid-argument")
        create.assert_not_called()
        self.assertFalse(Order.objects.exists())

    def test_gateway_error_is_upstream_failure(self):
        with patch(
            "payments.services.RazorpayClient.create_order",
            side_effect=RazorpayError("Create order failed: HTTP 503", status_code=503),
        ):
            with self.assertLogs("payments.services", level="ERROR"):
                resp = self._post("payments:create_order", {"amount": 50000, "currency": "INR"})
        self.assertEqual(resp.status_code, 502)
        self.assertEqual(resp.json()["error"]["kind"], "upstream-failure")
        self.assertFalse(Order.objects.exists())

    def test_invalid_json_is_bad_request(self):
        resp = self.client.post(
            reverse("payments:create_order"), data="not json", content_type="application/json"
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"]["kind"], "invalid-argument")

    def test_get_not_allowed(self):
        resp = self.client.get(reverse("payments:create_order"))
        self.assertEqual(resp.status_code, 405)


@override_settings(RAZORPAY=RAZORPAY)
class VerifyPaymentViewTests(JsonPostMixin, TestCase):
    def setUp(self):
        self.order = Order.objects.create(gateway_order_id="order_abc123", amount=50000, currency="INR")
        self.signature = compute_signature("s3cr3t", "order_abc123", "pay_xyz789")

    def test_valid_payment_marks_paid(self):
        resp = self._post("payments:verify_payment", {
            "order_id": "order_abc123",
            "payment_id": "pay_xyz789",
            "signature": self.signature,
        })
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"status": "paid"})
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, "paid")

    def test_accepts_checkout_field_names(self):
        resp = self._post("payments:verify_payment", {
            "razorpay_order_id": "order_abc123",
            "razorpay_payment_id": "pay_xyz789",
            "razorpay_signature": self.signature,
        })
        self.assertEqual(resp.status_code, 200)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_id, "pay_xyz789")

    def test_wrong_signature_is_unauthorized(self):
        with self.assertLogs("payments.services", level="WARNING"):
            resp = self._post("payments:verify_payment", {
                "order_id": "order_abc123",
                "payment_id": "pay_xyz789",
                "signature": "deadbeef",
            })
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()["error"]["kind"], "unauthenticated")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, "created")

    def test_orphan_is_not_found(self):
        sig = compute_signature("s3cr3t", "order_unknown", "pay_xyz789")
        with self.assertLogs("payments.services", level="ERROR"):
            resp = self._post("payments:verify_payment", {
                "order_id": "order_unknown",
                "payment_id": "pay_xyz789",
                "signature": sig,
            })
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json()["error"]["kind"], "not-found")

    def test_missing_signature_is_bad_request(self):
        resp = self._post("payments:verify_payment", {"order_id": "order_abc123", "payment_id": "pay_xyz789"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"]["kind"], "invalid-argument")

    def test_double_submission_succeeds(self):
        payload = {"order_id": "order_abc123", "payment_id": "pay_xyz789", "signature": self.signature}
        first = self._post("payments:verify_payment", payload)
        second = self._post("payments:verify_payment", payload)
        self.assertEqual(first.status_code, 200)
        self.assertEqual(second.status_code, 200)
        self.order.refresh_from_db()
        self.assertEqual(self.order.signature, self.signature)

    def test_error_body_never_contains_secret(self):
        resp = self._post("payments:verify_payment", {
            "order_id": "order_abc123",
            "payment_id": "pay_xyz789",
            "signature": "deadbeef",
        })
        self.assertNotIn("s3cr3t", resp.content.decode())


@override_settings(RAZORPAY={**RAZORPAY, "KEY_SECRET": ""})
class UnconfiguredViewTests(JsonPostMixin, TestCase):
    def test_missing_secret_returns_json_error(self):
        for name, payload in (
            ("payments:create_order", {"amount": 50000, "currency": "INR"}),
            ("payments:verify_payment", {"order_id": "o", "payment_id": "p", "signature": "s"}),
        ):
            with self.assertLogs("payments.config", level="ERROR"):
                resp = self._post(name, payload)
            self.assertEqual(resp.status_code, 500)
            self.assertEqual(resp.json()["error"]["kind"], "internal")
            self.assertFalse(resp.json()["ok"])
        self.assertFalse(Order.objects.exists())
