import json

from django.core.exceptions import ImproperlyConfigured
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from .config import PaymentsConfig
from .errors import InvalidArgument, PaymentError
from .services import OrderIssuer, PaymentVerifier

SIGNATURE_HEADER = "X-Razorpay-Signature"


def _json_body(request) -> dict:
    try:
        body = json.loads(request.body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise InvalidArgument("Invalid JSON body")
    if not isinstance(body, dict):
        raise InvalidArgument("Invalid JSON body")
    return body


def _config() -> PaymentsConfig:
    try:
        return PaymentsConfig.from_settings()
    except ImproperlyConfigured as e:
        raise PaymentError("Payment service is not configured") from e


def _error(e: PaymentError) -> JsonResponse:
    return JsonResponse({"ok": False, "error": e.as_dict()}, status=e.status_code)


@csrf_exempt
@require_POST
def create_order_view(request):
    try:
        body = _json_body(request)
        issuer = OrderIssuer(_config())
        result = issuer.create_order(amount=body.get("amount"), currency=body.get("currency"))
    except PaymentError as e:
        return _error(e)
    return JsonResponse(result, status=200)


@csrf_exempt
@require_POST
def verify_payment_view(request):
    """
    Called by the client after Razorpay checkout completes. Accepts either
    our field names or the ``razorpay_*`` names the checkout handler returns.
    """
    try:
        body = _json_body(request)
        verifier = PaymentVerifier(_config())
        result = verifier.verify_payment(
            order_id=body.get("order_id") or body.get("razorpay_order_id"),
            payment_id=body.get("payment_id") or body.get("razorpay_payment_id"),
            signature=body.get("signature") or body.get("razorpay_signature"),
        )
    except PaymentError as e:
        return _error(e)
    return JsonResponse(result, status=200)


@csrf_exempt
@require_POST
def razorpay_webhook(request):
    try:
        verifier = PaymentVerifier(_config())
        result = verifier.process_webhook(request.body, request.headers.get(SIGNATURE_HEADER, ""))
    except PaymentError as e:
        return _error(e)
    # Unhandled events are acked so the gateway stops retrying
    return JsonResponse(result, status=200 if result["status"] == "paid" else 202)
