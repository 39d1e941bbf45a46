"""
Gateway webhook reconciliation.

The webhook is a hint, not a source of truth: the payment is correlated by order id or
payment-link id, then its status is re-read from the gateway before any write. Every
write is the repository's conditional pending -> terminal transition, so replays and
races with client-side confirmation are harmless.
"""
import json
import logging
from typing import Any, Callable

from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import (
    AuthenticationError,
    ConfigurationError,
    GatewayError,
    MalformedWebhookError,
    NotFoundError,
    RepositoryError,
)
from app.models.payment import Payment, PaymentStatus
from app.services.gateway.client import CAPTURED_STATUSES, GatewayPayment, RazorpayClient, get_gateway_client
from app.services.idempotency import IdempotencyStore
from app.services.payments.completion import issue_download_token_async
from app.services.payments.repository import PaymentRepository
from app.services.payments.signature import verify_webhook_signature
from app.utils.metrics import payment_transitions_total, webhook_events_total

logger = logging.getLogger(__name__)

HANDLED_EVENTS = frozenset({"payment_link.paid", "payment.captured"})
ORDER_PAID_STATUS = "paid"


class WebhookOutcome(BaseModel):
    """What happened to one delivery. Always acknowledged to the gateway."""

    status: str  # processed / noop / ignored / duplicate / not_found / mismatch / error
    event: str | None = None
    payment_id: str | None = None
    payment_status: str | None = None


class WebhookRefs(BaseModel):
    order_id: str | None = None
    payment_link_id: str | None = None
    gateway_payment_id: str | None = None


class RemoteStatus(BaseModel):
    captured: bool
    status: str
    method: str | None = None


def _entity(payload: dict, name: str) -> dict:
    section = payload.get(name)
    if isinstance(section, dict) and isinstance(section.get("entity"), dict):
        return section["entity"]
    return {}


def _as_id(value: Any) -> str | None:
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        return None
    return str(value) or None


def extract_refs(event: dict[str, Any]) -> WebhookRefs:
    """Pull order / payment-link / payment ids out of either event shape."""
    payload = event.get("payload") if isinstance(event.get("payload"), dict) else {}
    payment = _entity(payload, "payment")
    link = _entity(payload, "payment_link")
    order = _entity(payload, "order")

    notes = payment.get("notes") if isinstance(payment.get("notes"), dict) else {}
    link_notes = link.get("notes") if isinstance(link.get("notes"), dict) else {}

    link_id = (
        link.get("id")
        or notes.get("payment_link_id")
        or notes.get("paymentLinkId")
        or link_notes.get("payment_link_id")
        or link_notes.get("paymentLinkId")
    )
    gateway_payment_id = payment.get("id")
    if not gateway_payment_id:
        link_payments = link.get("payments")
        if isinstance(link_payments, list) and link_payments and isinstance(link_payments[0], dict):
            gateway_payment_id = link_payments[0].get("payment_id") or link_payments[0].get("id")

    return WebhookRefs(
        order_id=_as_id(payment.get("order_id")) or _as_id(order.get("id")) or _as_id(link.get("order_id")),
        payment_link_id=_as_id(link_id),
        gateway_payment_id=_as_id(gateway_payment_id),
    )


class WebhookReconciler:
    def __init__(
        self,
        db: Session,
        gateway: RazorpayClient | None = None,
        webhook_secret: str | None = None,
        allow_unsigned: bool | None = None,
        dedup: IdempotencyStore | None = None,
        on_completed: Callable[[Payment], None] | None = None,
    ):
        self.payments = PaymentRepository(db)
        self.gateway = gateway or get_gateway_client()
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.razorpay_webhook_secret
        self.allow_unsigned = settings.is_development if allow_unsigned is None else allow_unsigned
        self.dedup = dedup if dedup is not None else IdempotencyStore()
        self.on_completed = on_completed or issue_download_token_async

    def authenticate(self, raw_body: bytes, signature: str | None) -> None:
        if self.webhook_secret:
            if not verify_webhook_signature(raw_body, signature, self.webhook_secret):
                logger.warning("webhook_signature_invalid", extra={"reason": "missing" if not signature else "mismatch"})
                raise AuthenticationError("Invalid webhook signature")
            return
        if not self.allow_unsigned:
            logger.error("webhook_secret_missing", extra={"kind": "config"})
            raise ConfigurationError("Webhook secret is not configured")
        logger.warning("webhook_unsigned_accepted", extra={"reason": "development"})

    @staticmethod
    def parse(raw_body: bytes) -> dict[str, Any]:
        try:
            event = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError) as e:
            raise MalformedWebhookError() from e
        if not isinstance(event, dict) or not isinstance(event.get("event"), str):
            raise MalformedWebhookError("Webhook payload has no event type")
        return event

    def handle(self, raw_body: bytes, signature: str | None, event_id: str | None = None) -> WebhookOutcome:
        if not self.gateway.configured:
            raise ConfigurationError()
        self.authenticate(raw_body, signature)
        event = self.parse(raw_body)
        event_type = event["event"]

        if event_type not in HANDLED_EVENTS:
            webhook_events_total.labels(event=event_type, outcome="ignored").inc()
            logger.info("webhook_event_ignored", extra={"event": event_type, "event_id": event_id})
            return WebhookOutcome(status="ignored", event=event_type)

        dedup_key = f"webhook:{event_id}" if event_id else None
        if dedup_key and not self.dedup.check_and_set(dedup_key):
            webhook_events_total.labels(event=event_type, outcome="duplicate").inc()
            logger.info("webhook_duplicate", extra={"event": event_type, "event_id": event_id})
            return WebhookOutcome(status="duplicate", event=event_type)

        try:
            outcome = self._reconcile(event_type, extract_refs(event))
        except (GatewayError, RepositoryError, NotFoundError) as e:
            logger.exception(
                "webhook_processing_failed",
                extra={"event": event_type, "event_id": event_id, "error": e.code},
            )
            if dedup_key:
                self.dedup.release(dedup_key)
            outcome = WebhookOutcome(status="error", event=event_type)
        except Exception:
            if dedup_key:
                self.dedup.release(dedup_key)
            raise

        webhook_events_total.labels(event=event_type, outcome=outcome.status).inc()
        return outcome

    def _find_payment(self, refs: WebhookRefs) -> Payment | None:
        payment = None
        if refs.order_id:
            payment = self.payments.get_by_order_id(refs.order_id)
        if payment is None and refs.payment_link_id:
            payment = self.payments.get_by_link_id(refs.payment_link_id)
        return payment

    @staticmethod
    def _same_amount(payment: Payment, amount: int | None) -> bool:
        return amount is None or amount == payment.amount

    @staticmethod
    def _notes_match(payment: Payment, remote: GatewayPayment) -> bool:
        """Link payments carry the link's notes; tie them back to this row."""
        notes = remote.notes if isinstance(remote.notes, dict) else {}
        if notes.get("paymentId") == payment.id:
            return True
        link_id = notes.get("payment_link_id") or notes.get("paymentLinkId")
        if payment.payment_link_id and link_id == payment.payment_link_id:
            return True
        owner = notes.get("userId") or notes.get("guestId")
        return notes.get("materialId") == payment.material_id and owner == (payment.user_id or payment.guest_id)

    def _remote_status(self, payment: Payment, refs: WebhookRefs) -> RemoteStatus | None:
        """Status read back from the gateway, or None when it cannot be tied to this payment."""
        if refs.gateway_payment_id:
            remote = self.gateway.fetch_payment(refs.gateway_payment_id)
            bound = remote.order_id == payment.gateway_order_id or (
                payment.payment_link_id is not None and self._notes_match(payment, remote)
            )
            if not bound or not self._same_amount(payment, remote.amount):
                return None
            return RemoteStatus(captured=remote.is_captured, status=remote.status, method=remote.method)
        if refs.order_id != payment.gateway_order_id:
            return None
        order = self.gateway.fetch_order(payment.gateway_order_id)
        if not self._same_amount(payment, order.amount):
            return None
        status = order.status or "unknown"
        return RemoteStatus(captured=status == ORDER_PAID_STATUS or status in CAPTURED_STATUSES, status=status)

    def _reconcile(self, event_type: str, refs: WebhookRefs) -> WebhookOutcome:
        payment = self._find_payment(refs)
        if payment is None:
            logger.warning(
                "webhook_payment_not_found",
                extra={"event": event_type, "order_id": refs.order_id, "payment_link_id": refs.payment_link_id},
            )
            return WebhookOutcome(status="not_found", event=event_type)

        if payment.status != PaymentStatus.PENDING:
            return WebhookOutcome(
                status="noop", event=event_type, payment_id=payment.id, payment_status=payment.status.value
            )

        remote = self._remote_status(payment, refs)
        if remote is None:
            logger.warning(
                "webhook_payment_mismatch",
                extra={
                    "event": event_type,
                    "payment_id": payment.id,
                    "order_id": refs.order_id,
                    "gateway_payment_id": refs.gateway_payment_id,
                },
            )
            return WebhookOutcome(
                status="mismatch", event=event_type, payment_id=payment.id, payment_status=payment.status.value
            )

        log_extra = {
            "event": event_type,
            "payment_id": payment.id,
            "gateway_payment_id": refs.gateway_payment_id,
            "gateway_status": remote.status,
        }

        if remote.captured:
            won = self.payments.mark_completed(payment.id, refs.gateway_payment_id, payment_method=remote.method)
            if won:
                payment_transitions_total.labels(source="webhook", status="completed").inc()
                logger.info("webhook_payment_completed", extra=log_extra)
                self.on_completed(self.payments.get_by_id(payment.id))
        else:
            won = self.payments.mark_failed(payment.id, f"gateway_status:{remote.status}", refs.gateway_payment_id)
            if won:
                payment_transitions_total.labels(source="webhook", status="failed").inc()
                logger.info("webhook_payment_failed", extra=log_extra)

        fresh = self.payments.get_by_id(payment.id)
        return WebhookOutcome(
            status="processed" if won else "noop",
            event=event_type,
            payment_id=payment.id,
            payment_status=fresh.status.value if fresh else None,
        )
