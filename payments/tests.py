from unittest.mock import Mock, patch

import requests
from django.core.exceptions import ImproperlyConfigured
from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase

from . import signatures
from .config import PaymentsConfig
from .errors import InvalidArgument, NotFound, Unauthenticated, UpstreamFailure
from .integrations.razorpay import RazorpayClient, RazorpayError
from .models import Order
from .services import OrderIssuer, PaymentVerifier

SECRET = "s3cr3t"
# HMAC-SHA256("s3cr3t", "order_abc123|pay_xyz789")
KNOWN_SIGNATURE = "9aa2c475608ebffa23248834babb8ed68aff4ba27339e66143fb9f41a9158557"


def make_config(**overrides):
    conf = {"key_id": "rzp_test_key", "key_secret": SECRET, "webhook_secret": "whsec"}
    conf.update(overrides)
    return PaymentsConfig(**conf)


class FakeGateway:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def create_order(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return self.response


class SignatureTests(SimpleTestCase):
    def test_known_vector(self):
        self.assertEqual(
            signatures.compute_signature(SECRET, "order_abc123", "pay_xyz789"), KNOWN_SIGNATURE
        )

    def test_signature_is_deterministic(self):
        first = signatures.compute_signature(SECRET, "order_1", "pay_1")
        second = signatures.compute_signature(SECRET, "order_1", "pay_1")
        self.assertEqual(first, second)
        self.assertEqual(first, first.lower())

    def test_field_order_matters(self):
        self.assertNotEqual(
            signatures.compute_signature(SECRET, "a", "b"),
            signatures.compute_signature(SECRET, "b", "a"),
        )

    def test_any_single_character_mutation_is_rejected(self):
        for i, ch in enumerate(KNOWN_SIGNATURE):
            replacement = "0" if ch != "0" else "1"
            mutated = KNOWN_SIGNATURE[:i] + replacement + KNOWN_SIGNATURE[i + 1:]
            self.assertFalse(
                signatures.verify_payment_signature(SECRET, "order_abc123", "pay_xyz789", mutated),
                f"mutation at position {i} accepted",
            )

    def test_valid_signature_with_whitespace_accepted(self):
        self.assertTrue(
            signatures.verify_payment_signature(
                SECRET, "order_abc123", "pay_xyz789", f"  {KNOWN_SIGNATURE}\n"
            )
        )

    def test_non_ascii_signature_rejected_without_error(self):
        self.assertFalse(signatures.signatures_match(KNOWN_SIGNATURE, "ünïcode"))

    def test_webhook_signature_over_raw_body(self):
        body = b'{"event": "payment.captured"}'
        sig = "c3c2a0d74c145183ef7189b88772fa4a37dc5965777c9907492e796e8be2ce73"
        self.assertTrue(signatures.verify_webhook_signature("whsec", body, sig))
        self.assertTrue(signatures.verify_webhook_signature("whsec", body.decode(), sig))
        self.assertFalse(signatures.verify_webhook_signature("other", body, sig))


class PaymentsConfigTests(SimpleTestCase):
    def test_missing_secret_raises(self):
        with self.assertLogs("payments.config", level="ERROR"):
            with self.assertRaises(ImproperlyConfigured):
                PaymentsConfig.from_settings({"KEY_ID": "rzp_test_key"})

    def test_from_settings_normalizes(self):
        config = PaymentsConfig.from_settings({
            "KEY_ID": "id",
            "KEY_SECRET": "secret",
            "WEBHOOK_SECRET": "",
            "BASE_URL": "https://api.example.com/",
            "TIMEOUT": "12",
        })
        self.assertEqual(config.base_url, "https://api.example.com")
        self.assertEqual(config.timeout, 12.0)
        self.assertIsNone(config.webhook_secret)

    def test_repr_hides_secrets(self):
        text = repr(make_config(key_secret="topsecret", webhook_secret="hooksecret"))
        self.assertNotIn("topsecret", text)
        self.assertNotIn("hooksecret", text)


class RazorpayClientTests(SimpleTestCase):
    def _client(self, response=None, error=None):
        session = Mock()
        if error:
            session.post.side_effect = error
        else:
            session.post.return_value = response
        return RazorpayClient(make_config(base_url="https://api.razorpay.test", timeout=7), session=session), session

    def _response(self, status_code, data):
        resp = Mock(status_code=status_code, text=str(data))
        resp.json.return_value = data
        return resp

    def test_create_order_posts_with_basic_auth(self):
        data = {"id": "order_abc123", "amount": 50000, "currency": "INR", "status": "created"}
        client, session = self._client(self._response(200, data))

        result = client.create_order(amount=50000, currency="INR", receipt="receipt_order_1")

        self.assertEqual(result, data)
        args, kwargs = session.post.call_args
        self.assertEqual(args[0], "https://api.razorpay.test/v1/orders")
        self.assertEqual(kwargs["json"], {"amount": 50000, "currency": "INR", "receipt": "receipt_order_1"})
        self.assertEqual(kwargs["auth"].username, "rzp_test_key")
        self.assertEqual(kwargs["auth"].password, SECRET)
        self.assertEqual(kwargs["timeout"], 7)

    def test_unauthorized_raises(self):
        client, _ = self._client(self._response(401, {"error": {"code": "BAD_REQUEST_ERROR"}}))
        with self.assertRaises(RazorpayError) as cm:
            client.create_order(amount=100, currency="INR", receipt="r")
        self.assertEqual(cm.exception.status_code, 401)
        self.assertIn("Authorization", str(cm.exception))

    def test_timeout_raises(self):
        client, _ = self._client(error=requests.Timeout("timed out"))
        with self.assertRaises(RazorpayError):
            client.create_order(amount=100, currency="INR", receipt="r")

    def test_missing_order_id_raises(self):
        client, _ = self._client(self._response(200, {"status": "created"}))
        with self.assertRaises(RazorpayError):
            client.create_order(amount=100, currency="INR", receipt="r")


class OrderIssuerTests(TestCase):
    def setUp(self):
        self.gateway = FakeGateway(response={
            "id": "order_abc123",
            "entity": "order",
            "amount": 50000,
            "currency": "INR",
            "receipt": "receipt_order_1",
            "status": "created",
        })
        self.issuer = OrderIssuer(make_config(), gateway=self.gateway)

    def test_creates_gateway_order_and_local_record(self):
        with patch("payments.services.generate_receipt", return_value="receipt_order_1"):
            result = self.issuer.create_order(amount=50000, currency="INR")

        self.assertEqual(
            self.gateway.calls,
            [{"amount": 50000, "currency": "INR", "receipt": "receipt_order_1"}],
        )
        order = Order.objects.get()
        self.assertEqual(order.gateway_order_id, "order_abc123")
        self.assertEqual(order.status, Order.CREATED)
        self.assertEqual(order.amount, 50000)
        self.assertEqual(order.currency, "INR")
        self.assertEqual(order.receipt, "receipt_order_1")
        self.assertEqual(result, {
            "order_id": "order_abc123",
            "record_id": str(order.pk),
            "amount": 50000,
            "currency": "INR",
            "status": "created",
        })

    def test_amount_is_not_rescaled(self):
        self.issuer.create_order(amount="50000", currency="inr")
        self.assertEqual(self.gateway.calls[0]["amount"], 50000)
        self.assertEqual(self.gateway.calls[0]["currency"], "INR")

    def test_missing_fields_rejected_without_side_effects(self):
        for kwargs in ({"currency": "INR"}, {"amount": 50000}, {"amount": 0, "currency": "INR"},
                       {"amount": 50000, "currency": ""}):
            with self.assertRaises(InvalidArgument):
                self.issuer.create_order(**kwargs)
        self.assertEqual(self.gateway.calls, [])
        self.assertFalse(Order.objects.exists())

    def test_invalid_amounts_rejected(self):
        for amount in (-5, 12.5, True, "12.50", "abc", [1]):
            with self.assertRaises(InvalidArgument, msg=repr(amount)):
                self.issuer.create_order(amount=amount, currency="INR")
        self.assertFalse(Order.objects.exists())

    def test_amount_beyond_column_range_rejected(self):
        with self.assertRaises(InvalidArgument):
            self.issuer.create_order(amount=10 ** 20, currency="INR")
        self.assertEqual(self.gateway.calls, [])
        self.assertFalse(Order.objects.exists())

    def test_stores_amount_echoed_by_gateway(self):
        self.gateway.response = {**self.gateway.response, "amount": 49999}
        with self.assertLogs("payments.services", level="WARNING"):
            result = self.issuer.create_order(amount=50000, currency="INR")
        self.assertEqual(Order.objects.get().amount, 49999)
        self.assertEqual(result["amount"], 49999)

    def test_unusable_gateway_echo_is_upstream_failure(self):
        self.gateway.response = {"id": "order_abc123", "currency": "INR", "status": "created"}
        with self.assertLogs("payments.services", level="ERROR"):
            with self.assertRaises(UpstreamFailure):
                self.issuer.create_order(amount=50000, currency="INR")
        self.assertFalse(Order.objects.exists())

    def test_invalid_currency_rejected(self):
        with self.assertRaises(InvalidArgument):
            self.issuer.create_order(amount=100, currency="rupees")

    def test_gateway_failure_leaves_no_record(self):
        self.gateway.error = RazorpayError("Gateway request failed: timeout")
        with self.assertLogs("payments.services", level="ERROR"):
            with self.assertRaises(UpstreamFailure):
                self.issuer.create_order(amount=50000, currency="INR")
        self.assertFalse(Order.objects.exists())

    def test_storage_failure_is_upstream_failure(self):
        with patch.object(Order.objects, "create", side_effect=DatabaseError("disk full")):
            with self.assertLogs("payments.services", level="ERROR"):
                with self.assertRaises(UpstreamFailure):
                    self.issuer.create_order(amount=50000, currency="INR")


class PaymentVerifierTests(TestCase):
    def setUp(self):
        self.order = Order.objects.create(
            gateway_order_id="order_abc123", amount=50000, currency="INR"
        )
        self.verifier = PaymentVerifier(make_config())

    def test_valid_signature_marks_paid(self):
        result = self.verifier.verify_payment(
            order_id="order_abc123", payment_id="pay_xyz789", signature=KNOWN_SIGNATURE
        )
        self.assertEqual(result, {"status": "paid"})
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.PAID)
        self.assertEqual(self.order.payment_id, "pay_xyz789")
        self.assertEqual(self.order.signature, KNOWN_SIGNATURE)
        self.assertIsNotNone(self.order.paid_at)

    def test_wrong_signature_is_unauthenticated(self):
        with self.assertLogs("payments.services", level="WARNING"):
            with self.assertRaises(Unauthenticated):
                self.verifier.verify_payment(
                    order_id="order_abc123", payment_id="pay_xyz789", signature="deadbeef"
                )
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.CREATED)
        self.assertEqual(self.order.payment_id, "")

    def test_orphan_payment_is_not_found(self):
        sig = signatures.compute_signature(SECRET, "order_missing", "pay_xyz789")
        with self.assertLogs("payments.services", level="ERROR") as cm:
            with self.assertRaises(NotFound):
                self.verifier.verify_payment(
                    order_id="order_missing", payment_id="pay_xyz789", signature=sig
                )
        self.assertIn("order_missing", cm.output[0])

    def test_missing_fields_rejected(self):
        for kwargs in (
            {"payment_id": "pay_xyz789", "signature": KNOWN_SIGNATURE},
            {"order_id": "order_abc123", "signature": KNOWN_SIGNATURE},
            {"order_id": "order_abc123", "payment_id": "pay_xyz789"},
        ):
            with self.assertRaises(InvalidArgument):
                self.verifier.verify_payment(**kwargs)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.CREATED)

    def test_verification_is_idempotent(self):
        for _ in range(2):
            result = self.verifier.verify_payment(
                order_id="order_abc123", payment_id="pay_xyz789", signature=KNOWN_SIGNATURE
            )
            self.assertEqual(result, {"status": "paid"})
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.PAID)
        self.assertEqual(self.order.payment_id, "pay_xyz789")
        self.assertEqual(self.order.signature, KNOWN_SIGNATURE)

    def test_replay_does_not_rewrite_paid_at(self):
        self.verifier.verify_payment(
            order_id="order_abc123", payment_id="pay_xyz789", signature=KNOWN_SIGNATURE
        )
        self.order.refresh_from_db()
        paid_at = self.order.paid_at

        self.verifier.verify_payment(
            order_id="order_abc123", payment_id="pay_xyz789", signature=KNOWN_SIGNATURE
        )
        self.order.refresh_from_db()
        self.assertEqual(self.order.paid_at, paid_at)

    def test_second_payment_id_keeps_first(self):
        self.verifier.verify_payment(
            order_id="order_abc123", payment_id="pay_xyz789", signature=KNOWN_SIGNATURE
        )
        other_sig = signatures.compute_signature(SECRET, "order_abc123", "pay_other")
        with self.assertLogs("payments.services", level="WARNING"):
            result = self.verifier.verify_payment(
                order_id="order_abc123", payment_id="pay_other", signature=other_sig
            )
        self.assertEqual(result, {"status": "paid"})
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_id, "pay_xyz789")
        self.assertEqual(self.order.signature, KNOWN_SIGNATURE)

    def test_storage_failure_is_upstream_failure(self):
        with patch("payments.services.Order.objects.select_for_update", side_effect=DatabaseError("locked")):
            with self.assertLogs("payments.services", level="ERROR"):
                with self.assertRaises(UpstreamFailure):
                    self.verifier.verify_payment(
                        order_id="order_abc123", payment_id="pay_xyz789", signature=KNOWN_SIGNATURE
                    )
