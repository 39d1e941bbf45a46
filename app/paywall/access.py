"""
Decision: decide_access(ctx) -> AccessDecision. Pure function, no I/O.
EntitlementService gathers the context (material + completed payment) from the DB.

Invariant: a paid material's storage location is never part of a decision; paid access
always goes through DownloadTokenService.
"""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import MisconfiguredResource, PaymentRequired
from app.models.material import AccessType, Material
from app.models.payment import PaymentStatus
from app.paywall.models import AccessContext, AccessDecision
from app.services.auth.identity import Identity
from app.services.materials.service import MaterialService
from app.services.payments.repository import PaymentRepository

logger = logging.getLogger(__name__)


def decide_access(ctx: AccessContext) -> AccessDecision:
    """
    free            -> grant, file url may be served directly
    drive_protected -> grant with the external link; no link is an operator data error
    paid            -> completed payment required; grant carries no url, only the token requirement
    """
    if ctx.access_type == AccessType.FREE:
        return AccessDecision(
            material_id=ctx.material_id,
            access_type=ctx.access_type,
            granted=True,
            link_url=ctx.file_url,
        )

    if ctx.access_type == AccessType.DRIVE_PROTECTED:
        if not ctx.external_link_url:
            raise MisconfiguredResource()
        return AccessDecision(
            material_id=ctx.material_id,
            access_type=ctx.access_type,
            granted=True,
            link_url=ctx.external_link_url,
        )

    if not ctx.completed_payment_id:
        raise PaymentRequired(ctx.material_id, price=ctx.price, currency=ctx.currency)
    return AccessDecision(
        material_id=ctx.material_id,
        access_type=ctx.access_type,
        granted=True,
        requires_download_token=True,
        payment_id=ctx.completed_payment_id,
    )


class EntitlementService:
    def __init__(self, db: Session):
        self.materials = MaterialService(db)
        self.payments = PaymentRepository(db)

    def build_context(self, material: Material, identity: Identity | None) -> AccessContext:
        completed_payment_id = None
        if material.access_type == AccessType.PAID and identity is not None:
            payment = self.payments.find_for_identity(identity, material.id, PaymentStatus.COMPLETED)
            completed_payment_id = payment.id if payment else None
        return AccessContext(
            material_id=material.id,
            access_type=material.access_type,
            price=material.price,
            currency=settings.gateway_currency,
            external_link_url=material.external_link_url,
            file_url=material.file_url,
            completed_payment_id=completed_payment_id,
        )

    def check_access(self, material_id: str, identity: Identity | None) -> AccessDecision:
        """Raises PaymentRequired / MisconfiguredResource / NotFoundError."""
        material = self.materials.get_or_404(material_id)
        return decide_access(self.build_context(material, identity))

    def purchase_status(self, material_id: str, identity: Identity | None) -> dict:
        """Non-raising probe for the client: has this identity bought the material?"""
        material = self.materials.get_or_404(material_id)
        if material.access_type != AccessType.PAID:
            return {"hasPurchased": False, "requiresPayment": False, "accessType": material.access_type.value}
        ctx = self.build_context(material, identity)
        return {
            "hasPurchased": ctx.completed_payment_id is not None,
            "requiresPayment": ctx.completed_payment_id is None,
            "accessType": material.access_type.value,
            "paymentId": ctx.completed_payment_id,
            "price": str(material.price) if material.price is not None else None,
            "currency": ctx.currency,
        }
