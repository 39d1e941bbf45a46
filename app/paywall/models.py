"""
Paywall DTOs: AccessContext (input of decide_access) and AccessDecision.
"""
from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field

from app.models.material import AccessType


# ----- Input of decide_access (one contract instead of growing signatures) -----


class AccessContext(BaseModel):
    """Everything decide_access needs: the material tier plus the completed payment, if any."""

    material_id: str
    access_type: AccessType
    price: Decimal | None = None
    currency: str = "INR"
    external_link_url: str | None = None
    file_url: str | None = None
    # Only looked up for paid materials
    completed_payment_id: str | None = None

    model_config = {"frozen": True}


# ----- Access decision (pure logic, no I/O) -----


class AccessDecision(BaseModel):
    material_id: str
    access_type: AccessType
    granted: bool
    link_url: str | None = Field(
        None,
        description="Direct URL for free / drive_protected materials. Never set for paid materials.",
    )
    requires_download_token: bool = Field(
        False,
        description="True = the caller must go through a single-use download token",
    )
    payment_id: str | None = None

    model_config = {"frozen": True}
