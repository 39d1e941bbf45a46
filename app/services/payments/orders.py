"""
OrderService: purchase-intent creation.

Responsibilities:
- price / access tier validation
- duplicate-purchase prevention (AlreadyPurchased)
- idempotent reuse of a still-pending payment (no second gateway order)
- gateway order / hosted payment link creation + pending Payment persistence
"""
import logging
import time
from typing import Any

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import AlreadyPurchased, PaymentConflict, RateLimitedError, ValidationError
from app.models.material import AccessType, Material
from app.models.payment import Payment, PaymentStatus
from app.schemas.payments import OrderResult, PaymentLinkResult
from app.services.auth.identity import Identity
from app.services.gateway.client import RazorpayClient, get_gateway_client
from app.services.materials.service import MaterialService
from app.services.payments.rate_limit import PurchaseRateLimiter
from app.services.payments.repository import PaymentRepository
from app.utils.currency import to_minor_units
from app.utils.metrics import orders_created_total

logger = logging.getLogger(__name__)

RECEIPT_MAX_LEN = 40  # gateway limit


def build_receipt(material_id: str, identity: Identity) -> str:
    owner = identity.user_id or identity.guest_id or ""
    stamp = str(int(time.time() * 1000))[-8:]
    return f"mat_{material_id[:8]}_{owner[:8]}_{stamp}"[:RECEIPT_MAX_LEN]


class OrderService:
    def __init__(
        self,
        db: Session,
        gateway: RazorpayClient | None = None,
        rate_limiter: PurchaseRateLimiter | None = None,
    ):
        self.db = db
        self.payments = PaymentRepository(db)
        self.materials = MaterialService(db)
        self.gateway = gateway or get_gateway_client()
        self.rate_limiter = rate_limiter
        self.currency = settings.gateway_currency

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _payable_amount(self, material: Material) -> int:
        if material.access_type != AccessType.PAID:
            raise ValidationError("not_paid_material", "This material is not a paid material")
        amount = to_minor_units(material.price)
        if amount <= 0:
            raise ValidationError("invalid_price", "Invalid material price")
        if amount < settings.gateway_min_amount:
            raise ValidationError(
                "below_minimum_amount",
                f"Amount {amount} is below the gateway minimum of {settings.gateway_min_amount}",
            )
        return amount

    def _ensure_not_purchased(self, identity: Identity, material_id: str) -> None:
        if self.payments.find_for_identity(identity, material_id, PaymentStatus.COMPLETED):
            logger.info("order_already_purchased", extra={"material_id": material_id, **identity.log_extra()})
            raise AlreadyPurchased()

    def _check_rate_limit(self, identity: Identity) -> None:
        if self.rate_limiter is not None and not self.rate_limiter.allow(identity.key):
            raise RateLimitedError()

    def _notes(self, material: Material, identity: Identity) -> dict[str, Any]:
        notes = {"materialId": material.id, "materialTitle": material.title}
        if identity.user_id:
            notes["userId"] = identity.user_id
        else:
            notes["guestId"] = identity.guest_id
        return notes

    def _pending_or_conflict(self, identity: Identity, material_id: str) -> Payment:
        """After an insert conflict: the concurrent winner is either pending or already completed."""
        pending = self.payments.find_for_identity(identity, material_id, PaymentStatus.PENDING)
        if pending is not None:
            return pending
        self._ensure_not_purchased(identity, material_id)
        raise PaymentConflict()

    # ------------------------------------------------------------------
    # Checkout order
    # ------------------------------------------------------------------

    def create_order(self, material_id: str, identity: Identity) -> OrderResult:
        material = self.materials.get_or_404(material_id)
        amount = self._payable_amount(material)
        self._ensure_not_purchased(identity, material_id)

        pending = self.payments.find_for_identity(identity, material_id, PaymentStatus.PENDING)
        if pending is not None:
            orders_created_total.labels(kind="order", outcome="reused").inc()
            logger.info(
                "order_reused",
                extra={"payment_id": pending.id, "order_id": pending.gateway_order_id, "material_id": material_id},
            )
            return self._order_result(pending, reused=True)

        self._check_rate_limit(identity)
        order = self.gateway.create_order(
            amount=amount,
            currency=self.currency,
            receipt=build_receipt(material_id, identity),
            notes=self._notes(material, identity),
        )
        logger.info("gateway_order_created", extra={"order_id": order.id, "material_id": material_id})

        try:
            payment = self.payments.create_pending(
                identity=identity,
                material_id=material_id,
                gateway_order_id=order.id,
                amount=order.amount or amount,
                currency=order.currency or self.currency,
                material_title=material.title,
                material_subject_code=material.subject_code,
            )
        except PaymentConflict:
            # lost a race with a concurrent create_order; the gateway order stays unused
            logger.warning("gateway_order_orphaned", extra={"order_id": order.id, "material_id": material_id})
            winner = self._pending_or_conflict(identity, material_id)
            orders_created_total.labels(kind="order", outcome="reused").inc()
            return self._order_result(winner, reused=True)

        orders_created_total.labels(kind="order", outcome="created").inc()
        logger.info(
            "payment_pending_created",
            extra={"payment_id": payment.id, "order_id": order.id, "material_id": material_id, **identity.log_extra()},
        )
        return self._order_result(payment, reused=False)

    def _order_result(self, payment: Payment, reused: bool) -> OrderResult:
        return OrderResult(
            order_id=payment.gateway_order_id,
            amount=payment.amount,
            currency=payment.currency,
            payment_id=payment.id,
            key_id=self.gateway.key_id,
            reused=reused,
        )

    # ------------------------------------------------------------------
    # Hosted payment link (UPI QR)
    # ------------------------------------------------------------------

    def create_payment_link(
        self,
        material_id: str,
        identity: Identity,
        customer: dict[str, Any] | None = None,
    ) -> PaymentLinkResult:
        """
        Same rules as create_order. A pending payment that already has a link is returned
        as-is; a pending checkout order gets the link attached instead of a second row.
        """
        material = self.materials.get_or_404(material_id)
        amount = self._payable_amount(material)
        self._ensure_not_purchased(identity, material_id)

        pending = self.payments.find_for_identity(identity, material_id, PaymentStatus.PENDING)
        if pending is not None and pending.payment_link_id:
            orders_created_total.labels(kind="payment_link", outcome="reused").inc()
            return self._link_result(pending, reused=True)

        self._check_rate_limit(identity)
        notes = self._notes(material, identity)
        if pending is not None:
            notes["paymentId"] = pending.id
        link = self.gateway.create_payment_link(
            amount=amount,
            currency=self.currency,
            description=f"Purchase: {material.title}",
            notes=notes,
            callback_url=f"{settings.frontend_url.rstrip('/')}/payment-success?materialId={material_id}",
            customer=customer,
        )
        logger.info("gateway_payment_link_created", extra={"payment_link_id": link.id, "material_id": material_id})

        if pending is not None:
            if self.payments.attach_payment_link(pending.id, link.id, link.short_url, link.qr_code):
                orders_created_total.labels(kind="payment_link", outcome="created").inc()
                return self._link_result(self.payments.get_by_id(pending.id), reused=False)
            # pending row settled meanwhile: re-evaluate from scratch
            self._ensure_not_purchased(identity, material_id)
            raise PaymentConflict()

        try:
            payment = self.payments.create_pending(
                identity=identity,
                material_id=material_id,
                gateway_order_id=f"order_{link.id}",
                amount=link.amount or amount,
                currency=link.currency or self.currency,
                material_title=material.title,
                material_subject_code=material.subject_code,
                payment_link_id=link.id,
                payment_link_url=link.short_url,
                payment_link_qr=link.qr_code,
                metadata={"paymentMethod": "upi_qr"},
            )
        except PaymentConflict:
            logger.warning("gateway_payment_link_orphaned", extra={"payment_link_id": link.id})
            winner = self._pending_or_conflict(identity, material_id)
            if winner.payment_link_id:
                return self._link_result(winner, reused=True)
            raise

        orders_created_total.labels(kind="payment_link", outcome="created").inc()
        return self._link_result(payment, reused=False)

    @staticmethod
    def _link_result(payment: Payment, reused: bool) -> PaymentLinkResult:
        return PaymentLinkResult(
            payment_link_id=payment.payment_link_id,
            short_url=payment.payment_link_url,
            qr_code=payment.payment_link_qr,
            amount=payment.amount,
            currency=payment.currency,
            order_id=payment.gateway_order_id,
            payment_id=payment.id,
            reused=reused,
        )
