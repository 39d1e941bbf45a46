"""
Shared FastAPI dependencies. Tests swap these through app.dependency_overrides.
"""
from fastapi import Depends

from app.core.errors import ConfigurationError
from app.services.gateway.client import RazorpayClient, get_gateway_client
from app.services.idempotency import IdempotencyStore
from app.services.payments.rate_limit import PurchaseRateLimiter


def get_gateway() -> RazorpayClient:
    return get_gateway_client()


def get_configured_gateway(gateway: RazorpayClient = Depends(get_gateway)) -> RazorpayClient:
    if not gateway.configured:
        raise ConfigurationError()
    return gateway


def get_rate_limiter() -> PurchaseRateLimiter:
    return PurchaseRateLimiter()


def get_idempotency_store() -> IdempotencyStore:
    return IdempotencyStore()
