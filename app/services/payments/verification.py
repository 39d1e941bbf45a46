"""
Client-side payment confirmation: the checkout widget hands back
(order id, payment id, signature) and we settle the pending payment.
"""
import logging
from typing import Callable

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import AuthenticationError, ConfigurationError, NotFoundError, ValidationError
from app.models.payment import Payment, PaymentStatus
from app.services.auth.identity import Identity
from app.services.gateway.client import RazorpayClient, get_gateway_client
from app.services.payments.completion import issue_download_token_async
from app.services.payments.repository import PaymentRepository
from app.services.payments.signature import verify_payment_signature
from app.utils.metrics import payment_transitions_total

logger = logging.getLogger(__name__)


class PaymentVerificationService:
    def __init__(
        self,
        db: Session,
        gateway: RazorpayClient | None = None,
        secret: str | None = None,
        on_completed: Callable[[Payment], None] | None = None,
    ):
        self.payments = PaymentRepository(db)
        self.gateway = gateway or get_gateway_client()
        self.secret = secret if secret is not None else settings.razorpay_key_secret
        self.on_completed = on_completed or issue_download_token_async

    def verify(self, order_id: str, payment_id: str, signature: str, identity: Identity) -> Payment:
        if not self.secret:
            raise ConfigurationError()

        payment = self.payments.get_by_order_for_identity(order_id, identity)
        if payment is None:
            raise NotFoundError("Payment record not found")
        if payment.status == PaymentStatus.COMPLETED:
            return payment
        if payment.status == PaymentStatus.FAILED:
            raise ValidationError("payment_failed", "Payment has already failed")

        log_extra = {"payment_id": payment.id, "order_id": order_id, "gateway_payment_id": payment_id}

        if not verify_payment_signature(order_id, payment_id, signature, self.secret):
            logger.warning("payment_signature_invalid", extra=log_extra)
            if self.payments.mark_failed(payment.id, "invalid_signature", payment_id, signature):
                payment_transitions_total.labels(source="verify", status="failed").inc()
            raise AuthenticationError()

        remote = self.gateway.fetch_payment(payment_id)
        if (remote.order_id and remote.order_id != order_id) or not remote.is_captured:
            logger.warning(
                "payment_not_captured",
                extra={**log_extra, "gateway_status": remote.status, "reason": "order_mismatch" if remote.order_id != order_id else "status"},
            )
            if self.payments.mark_failed(payment.id, f"gateway_status:{remote.status}", payment_id, signature):
                payment_transitions_total.labels(source="verify", status="failed").inc()
            raise ValidationError("payment_not_captured", f"Payment not captured. Status: {remote.status}")

        if self.payments.mark_completed(payment.id, payment_id, signature, remote.method):
            payment_transitions_total.labels(source="verify", status="completed").inc()
            fresh = self.payments.get_by_id(payment.id)
            self.on_completed(fresh)
            return fresh

        # another actor (webhook) settled it first
        fresh = self.payments.get_by_id(payment.id)
        if fresh.status == PaymentStatus.FAILED:
            raise ValidationError("payment_failed", "Payment has already failed")
        return fresh
