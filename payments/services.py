"""Order issuing and payment verification.

Both services take an explicit :class:`~payments.config.PaymentsConfig`; the
issuer additionally takes a gateway client so tests can substitute a fake.
"""

import json
import logging
import re

from django.db import DatabaseError, transaction
from django.utils import timezone

from .config import PaymentsConfig
from .errors import InvalidArgument, NotFound, Unauthenticated, UpstreamFailure
from .integrations.razorpay import RazorpayClient, RazorpayError
from .models import Order
from .signatures import verify_payment_signature, verify_webhook_signature
from .utils import generate_receipt

logger = logging.getLogger(__name__)

CURRENCY_RE = re.compile(r"^[A-Za-z]{3}$")

# Upper bound of Order.amount (PositiveBigIntegerField)
MAX_AMOUNT = 9223372036854775807

# Webhook events that carry a captured payment for an order
WEBHOOK_PAID_EVENTS = {"order.paid", "payment.captured"}


def _missing(**fields):
    missing = [k for k, v in fields.items() if not v]
    if missing:
        raise InvalidArgument(f"Missing fields: {', '.join(missing)}")


def _parse_amount(value) -> int:
    """Amounts are integer counts of the smallest currency unit; never scaled here."""
    if isinstance(value, bool):
        raise InvalidArgument("amount must be a positive integer")
    if isinstance(value, int):
        amount = value
    elif isinstance(value, float) and value.is_integer():
        amount = int(value)
    elif isinstance(value, str) and value.strip().isdigit():
        amount = int(value.strip())
    else:
        raise InvalidArgument("amount must be a positive integer")
    if amount <= 0:
        raise InvalidArgument("amount must be a positive integer")
    if amount > MAX_AMOUNT:
        raise InvalidArgument("amount is too large")
    return amount


def _parse_currency(value) -> str:
    if not isinstance(value, str) or not CURRENCY_RE.match(value.strip()):
        raise InvalidArgument("currency must be a three-letter ISO code")
    return value.strip().upper()


class OrderIssuer:
    def __init__(self, config: PaymentsConfig, gateway=None):
        self.config = config
        self.gateway = gateway or RazorpayClient(config)

    def create_order(self, *, amount=None, currency=None) -> dict:
        _missing(amount=amount, currency=currency)
        amount = _parse_amount(amount)
        currency = _parse_currency(currency)
        receipt = generate_receipt()

        try:
            data = self.gateway.create_order(amount=amount, currency=currency, receipt=receipt)
        except RazorpayError as e:
            logger.error("Razorpay order creation failed for receipt=%s: %s", receipt, e)
            raise UpstreamFailure("Could not create payment order") from e

        gateway_order_id = str(data["id"])
        if data.get("amount") != amount or str(data.get("currency", "")).upper() != currency:
            logger.warning(
                "Razorpay echoed amount=%s currency=%s for order_id=%s, expected %s %s",
                data.get("amount"), data.get("currency"), gateway_order_id, amount, currency,
            )
        # Record what checkout will charge
        try:
            amount = _parse_amount(data.get("amount"))
            currency = _parse_currency(data.get("currency"))
        except InvalidArgument as e:
            logger.error("Razorpay returned an unusable order_id=%s: %s", gateway_order_id, e)
            raise UpstreamFailure("Gateway returned an invalid order") from e

        try:
            with transaction.atomic():
                order = Order.objects.create(
                    gateway_order_id=gateway_order_id,
                    receipt=data.get("receipt") or receipt,
                    amount=amount,
                    currency=currency,
                    status=Order.CREATED,
                    raw_resp=data,
                )
        except DatabaseError as e:
            logger.exception("Could not persist order_id=%s", gateway_order_id)
            raise UpstreamFailure("Could not record payment order") from e

        logger.info(
            "Created order_id=%s record_id=%s amount=%s %s",
            order.gateway_order_id, order.pk, order.amount, order.currency,
        )
        return order.as_dict()


class PaymentVerifier:
    def __init__(self, config: PaymentsConfig):
        self.config = config

    def verify_payment(self, *, order_id=None, payment_id=None, signature=None) -> dict:
        """Authenticate a checkout result and mark its order paid.

        Raises ``InvalidArgument`` for missing fields, ``Unauthenticated`` on
        a signature mismatch (nothing is written), ``NotFound`` when the
        signature is valid but no order matches, and ``UpstreamFailure`` on
        storage errors. Replaying a verified payment is a successful no-op.
        """
        _missing(order_id=order_id, payment_id=payment_id, signature=signature)
        order_id, payment_id, signature = str(order_id), str(payment_id), str(signature).strip()

        if not verify_payment_signature(self.config.key_secret, order_id, payment_id, signature):
            logger.warning("Signature mismatch for order_id=%s payment_id=%s", order_id, payment_id)
            raise Unauthenticated("Payment verification failed. Signature mismatch.")

        self.finalize(order_id, payment_id, signature)
        return {"status": Order.PAID}

    def process_webhook(self, body: bytes, signature: str) -> dict:
        if not self.config.webhook_secret:
            logger.error("Razorpay webhook received but WEBHOOK_SECRET is not configured")
            raise Unauthenticated("Webhook verification is not configured")
        if not signature or not verify_webhook_signature(self.config.webhook_secret, body, signature):
            logger.warning("Razorpay webhook signature mismatch")
            raise Unauthenticated("Invalid webhook signature")

        try:
            payload = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            raise InvalidArgument("Invalid JSON")
        if not isinstance(payload, dict):
            raise InvalidArgument("Invalid JSON")

        event = str(payload.get("event") or "")
        if event not in WEBHOOK_PAID_EVENTS:
            logger.info("Ignoring Razorpay webhook event=%s", event or "<none>")
            return {"status": "ignored"}

        entity = payload
        for key in ("payload", "payment", "entity"):
            entity = entity.get(key)
            if not isinstance(entity, dict):
                raise InvalidArgument("Webhook payment entity missing order_id/id")
        order_id, payment_id = entity.get("order_id"), entity.get("id")
        if not order_id or not payment_id:
            raise InvalidArgument("Webhook payment entity missing order_id/id")

        self.finalize(str(order_id), str(payment_id), signature.strip())
        return {"status": Order.PAID}

    def finalize(self, order_id: str, payment_id: str, signature: str) -> Order:
        """Move the order to ``paid``. Callers must have verified ``signature``.

        The row is locked for the duration of the check so a webhook and a
        client callback racing on the same order serialize here.
        """
        try:
            with transaction.atomic():
                try:
                    order = Order.objects.select_for_update().get(gateway_order_id=order_id)
                except Order.DoesNotExist:
                    logger.error(
                        "Verified payment_id=%s for unknown order_id=%s", payment_id, order_id
                    )
                    raise NotFound(f"No order found with order_id: {order_id}")

                if order.status == Order.PAID:
                    if order.payment_id != payment_id:
                        logger.warning(
                            "order_id=%s already paid by payment_id=%s; ignoring payment_id=%s",
                            order_id, order.payment_id, payment_id,
                        )
                    else:
                        logger.info("order_id=%s already paid; nothing to do", order_id)
                    return order

                order.status = Order.PAID
                order.payment_id = payment_id
                order.signature = signature
                order.paid_at = timezone.now()
                order.save(update_fields=["status", "payment_id", "signature", "paid_at", "updated_at"])
        except DatabaseError as e:
            logger.exception("Could not update order_id=%s", order_id)
            raise UpstreamFailure("Could not record payment") from e

        logger.info("order_id=%s paid by payment_id=%s", order_id, payment_id)
        return order
