"""HMAC-SHA256 proofs issued by the gateway. Pure functions."""
import hashlib
import hmac


def _hex_hmac(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def compute_payment_signature(order_id: str, payment_id: str, secret: str) -> str:
    return _hex_hmac(secret, f"{order_id}|{payment_id}".encode("utf-8"))


def verify_payment_signature(order_id: str, payment_id: str, signature: str | None, secret: str) -> bool:
    """
    Checkout callback proof: HMAC(secret, "order_id|payment_id").
    A match is necessary, not sufficient: callers still confirm capture with the gateway.
    """
    if not signature or not order_id or not payment_id or not secret:
        return False
    expected = compute_payment_signature(order_id, payment_id, secret)
    return hmac.compare_digest(expected, signature)


def verify_webhook_signature(raw_body: bytes, signature: str | None, secret: str) -> bool:
    """X-Razorpay-Signature: HMAC(webhook_secret, raw request body)."""
    if not signature or not secret:
        return False
    return hmac.compare_digest(_hex_hmac(secret, raw_body), signature)
