"""
Purchase routes: checkout order, hosted payment link, client-side verification.
Identity is optional: bearer token (user) or guestId (anonymous checkout).
"""
import logging

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_configured_gateway, get_gateway, get_rate_limiter
from app.core.config import settings
from app.db.session import get_db
from app.schemas.payments import (
    CreateOrderIn,
    CreatePaymentLinkIn,
    OrderResult,
    PaymentLinkResult,
    VerifyPaymentIn,
)
from app.services.auth.identity import build_identity, get_optional_user_id, require_user_id
from app.services.gateway.client import RazorpayClient
from app.services.payments.orders import OrderService
from app.services.payments.rate_limit import PurchaseRateLimiter
from app.services.payments.verification import PaymentVerificationService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])


@router.post("/orders", response_model=OrderResult)
def create_order(
    body: CreateOrderIn = Body(...),
    user_id: str | None = Depends(get_optional_user_id),
    db: Session = Depends(get_db),
    gateway: RazorpayClient = Depends(get_configured_gateway),
    rate_limiter: PurchaseRateLimiter = Depends(get_rate_limiter),
) -> OrderResult:
    identity = build_identity(user_id, body.guest_id)
    return OrderService(db, gateway=gateway, rate_limiter=rate_limiter).create_order(body.material_id, identity)


@router.post("/payment-links", response_model=PaymentLinkResult)
def create_payment_link(
    body: CreatePaymentLinkIn = Body(...),
    user_id: str | None = Depends(get_optional_user_id),
    db: Session = Depends(get_db),
    gateway: RazorpayClient = Depends(get_configured_gateway),
    rate_limiter: PurchaseRateLimiter = Depends(get_rate_limiter),
) -> PaymentLinkResult:
    identity = build_identity(user_id, body.guest_id)
    customer = body.customer.model_dump(exclude_none=True) if body.customer else None
    return OrderService(db, gateway=gateway, rate_limiter=rate_limiter).create_payment_link(
        body.material_id, identity, customer=customer
    )


@router.post("/verify-payment")
def verify_payment(
    body: VerifyPaymentIn = Body(...),
    user_id: str | None = Depends(get_optional_user_id),
    db: Session = Depends(get_db),
    gateway: RazorpayClient = Depends(get_configured_gateway),
) -> dict:
    identity = build_identity(user_id, body.guest_id)
    payment = PaymentVerificationService(db, gateway=gateway).verify(
        body.order_id, body.payment_id, body.signature, identity
    )
    return {"success": True, "message": "Payment verified successfully", "payment": payment.to_dict()}


@router.get("/payments/config-status")
def config_status(
    _user_id: str = Depends(require_user_id),
    gateway: RazorpayClient = Depends(get_gateway),
) -> dict:
    """Which gateway credentials are present. Never echoes secret material."""
    return {
        "configured": gateway.configured,
        "hasKeyId": bool(settings.razorpay_key_id),
        "hasKeySecret": bool(settings.razorpay_key_secret),
        "hasWebhookSecret": bool(settings.razorpay_webhook_secret),
        "environment": settings.app_env,
    }
