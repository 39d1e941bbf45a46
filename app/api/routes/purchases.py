from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.paywall import EntitlementService
from app.services.auth.identity import Identity, get_optional_identity, require_user_id
from app.services.payments.repository import PaymentRepository

router = APIRouter(prefix="/purchases", tags=["purchases"])


@router.get("/{material_id}/check")
def check_purchase(
    material_id: str,
    identity: Identity | None = Depends(get_optional_identity),
    db: Session = Depends(get_db),
) -> dict:
    """Entitlement probe; anonymous callers without a guest id simply have not purchased."""
    return EntitlementService(db).purchase_status(material_id, identity)


@router.get("")
def list_purchases(
    user_id: str = Depends(require_user_id),
    db: Session = Depends(get_db),
) -> dict:
    payments = PaymentRepository(db).list_completed_for_user(user_id)
    return {"purchases": [p.to_dict() for p in payments]}
