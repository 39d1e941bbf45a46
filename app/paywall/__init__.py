"""
Paywall: access decision for free / drive_protected / paid materials.
Decision (decide_access) is pure; EntitlementService gathers the context.
"""
from app.paywall.access import EntitlementService, decide_access
from app.paywall.models import AccessContext, AccessDecision

__all__ = [
    "AccessContext",
    "AccessDecision",
    "EntitlementService",
    "decide_access",
]
