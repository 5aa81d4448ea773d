import time


def generate_receipt(prefix="receipt_order_"):
    # Razorpay caps receipts at 40 chars; epoch millis keep this well under
    return f"{prefix}{int(time.time() * 1000)}"
