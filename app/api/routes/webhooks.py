from fastapi import APIRouter, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app.api.deps import get_gateway, get_idempotency_store
from app.db.session import get_db
from app.services.gateway.client import RazorpayClient
from app.services.idempotency import IdempotencyStore
from app.services.payments.webhooks import WebhookReconciler

router = APIRouter(tags=["webhooks"])


@router.post("/webhook")
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: str | None = Header(default=None),
    x_razorpay_event_id: str | None = Header(default=None),
    db: Session = Depends(get_db),
    gateway: RazorpayClient = Depends(get_gateway),
    dedup: IdempotencyStore = Depends(get_idempotency_store),
) -> dict:
    """Gateway-signed event. The signature covers the raw body, so it is read before any parsing."""
    raw_body = await request.body()
    reconciler = WebhookReconciler(db, gateway=gateway, dedup=dedup)
    outcome = await run_in_threadpool(reconciler.handle, raw_body, x_razorpay_signature, x_razorpay_event_id)
    return {"received": True, "status": outcome.status}
