import hashlib
import hmac
import json

from django.test import TestCase, override_settings
from django.urls import reverse

from .models import Order
from .test_views import RAZORPAY


def _sign(body: bytes, secret: str = "whsec") -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def _captured(order_id="order_abc123", payment_id="pay_xyz789", event="payment.captured"):
    return {
        "entity": "event",
        "event": event,
        "payload": {
            "payment": {
                "entity": {
                    "id": payment_id,
                    "order_id": order_id,
                    "amount": 50000,
                    "currency": "INR",
                    "status": "captured",
                }
            }
        },
    }


@override_settings(RAZORPAY=RAZORPAY)
class RazorpayWebhookTests(TestCase):
    def setUp(self):
        self.order = Order.objects.create(gateway_order_id="order_abc123", amount=50000, currency="INR")

    def _post(self, payload, signature=None):
        body = json.dumps(payload).encode()
        return self.client.post(
            reverse("payments:razorpay_webhook"),
            data=body,
            content_type="application/json",
            HTTP_X_RAZORPAY_SIGNATURE=signature if signature is not None else _sign(body),
        )

    def test_payment_captured_marks_paid(self):
        resp = self._post(_captured())
        self.assertEqual(resp.status_code, 200)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, "paid")
        self.assertEqual(self.order.payment_id, "pay_xyz789")

    def test_order_paid_event_marks_paid(self):
        resp = self._post(_captured(event="order.paid"))
        self.assertEqual(resp.status_code, 200)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, "paid")

    def test_bad_signature_rejected(self):
        with self.assertLogs("payments.services", level="WARNING"):
            resp = self._post(_captured(), signature="deadbeef")
        self.assertEqual(resp.status_code, 401)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, "created")

    def test_unhandled_event_acknowledged(self):
        resp = self._post(_captured(event="payment.failed"))
        self.assertEqual(resp.status_code, 202)
        self.assertEqual(resp.json(), {"status": "ignored"})
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, "created")

    def test_webhook_after_client_verification_keeps_first_signature(self):
        from .signatures import compute_signature

        client_sig = compute_signature("s3cr3t", "order_abc123", "pay_xyz789")
        self.client.post(
            reverse("payments:verify_payment"),
            data=json.dumps({"order_id": "order_abc123", "payment_id": "pay_xyz789", "signature": client_sig}),
            content_type="application/json",
        )
        resp = self._post(_captured())
        self.assertEqual(resp.status_code, 200)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, "paid")
        self.assertEqual(self.order.signature, client_sig)

    @override_settings(RAZORPAY={**RAZORPAY, "WEBHOOK_SECRET": ""})
    def test_unconfigured_webhook_secret_rejected(self):
        with self.assertLogs("payments.services", level="ERROR"):
            resp = self._post(_captured())
        self.assertEqual(resp.status_code, 401)

    def _post_raw(self, body: bytes):
        return self.client.post(
            reverse("payments:razorpay_webhook"),
            data=body,
            content_type="application/json",
            HTTP_X_RAZORPAY_SIGNATURE=_sign(body),
        )

    def test_unknown_order_is_not_found(self):
        with self.assertLogs("payments.services", level="ERROR") as cm:
            resp = self._post(_captured(order_id="order_unknown"))
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json()["error"]["kind"], "not-found")
        self.assertIn("order_unknown", cm.output[0])

    def test_non_json_body_is_bad_request(self):
        resp = self._post_raw(b"not json")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"]["kind"], "invalid-argument")

    def test_non_object_body_is_bad_request(self):
        resp = self._post_raw(b'["payment.captured"]')
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"]["kind"], "invalid-argument")

    def test_entity_without_ids_is_bad_request(self):
        payload = _captured()
        del payload["payload"]["payment"]["entity"]["order_id"]
        resp = self._post(payload)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"]["kind"], "invalid-argument")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, "created")

    def test_non_object_payment_is_bad_request(self):
        for payload in (
            {"event": "payment.captured", "payload": {"payment": "x"}},
            {"event": "payment.captured", "payload": {"payment": {"entity": ["pay_xyz789"]}}},
            {"event": "payment.captured", "payload": "x"},
        ):
            resp = self._post(payload)
            self.assertEqual(resp.status_code, 400, payload)
            self.assertEqual(resp.json()["error"]["kind"], "invalid-argument")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, "created")
