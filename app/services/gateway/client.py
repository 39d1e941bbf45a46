"""
Razorpay REST client (httpx sync).
Thin transport only: no business rules. Every call is bounded by a timeout and guarded
by a circuit breaker; failures surface as GatewayError / ConfigurationError / NotFoundError.
"""
import logging
import time
from typing import Any

import httpx
import pybreaker
from pydantic import BaseModel, Field

from app.core.config import settings
from app.core.errors import ConfigurationError, GatewayError, NotFoundError
from app.services.circuit_breaker import get_circuit_breaker
from app.utils.metrics import gateway_request_duration_seconds, gateway_requests_total

logger = logging.getLogger(__name__)

CAPTURED_STATUSES = frozenset({"captured", "authorized"})


class GatewayOrder(BaseModel):
    id: str
    status: str | None = None
    amount: int | None = None
    currency: str | None = None
    receipt: str | None = None

    model_config = {"extra": "ignore"}


class GatewayPaymentLink(BaseModel):
    id: str
    short_url: str | None = None
    qr_code: str | None = None
    amount: int | None = None
    currency: str | None = None

    model_config = {"extra": "ignore"}


class GatewayPayment(BaseModel):
    id: str
    status: str
    method: str | None = None
    order_id: str | None = None
    amount: int | None = None
    notes: dict[str, Any] | list = Field(default_factory=dict)

    model_config = {"extra": "ignore"}

    @property
    def is_captured(self) -> bool:
        return self.status in CAPTURED_STATUSES


class RazorpayClient:
    def __init__(
        self,
        key_id: str | None = None,
        key_secret: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
        breaker: pybreaker.CircuitBreaker | None = None,
    ) -> None:
        self.key_id = key_id if key_id is not None else settings.razorpay_key_id
        self._key_secret = key_secret if key_secret is not None else settings.razorpay_key_secret
        self._base_url = (base_url or settings.razorpay_api_base).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.gateway_timeout_seconds
        self._transport = transport
        self._breaker = breaker
        self._client: httpx.Client | None = None

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self._key_secret)

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(
                base_url=self._base_url,
                auth=(self.key_id or "", self._key_secret or ""),
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    @property
    def breaker(self) -> pybreaker.CircuitBreaker:
        if self._breaker is None:
            self._breaker = get_circuit_breaker("razorpay")
        return self._breaker

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _request(self, operation: str, method: str, path: str, payload: dict | None = None) -> dict:
        if not self.configured:
            raise ConfigurationError()
        start = time.monotonic()
        status = "error"
        try:
            try:
                resp = self.breaker.call(self.client.request, method, path, json=payload)
            except pybreaker.CircuitBreakerError as e:
                raise GatewayError("Payment gateway temporarily unavailable", kind="circuit_open") from e
            except httpx.TimeoutException as e:
                raise GatewayError("Payment gateway timed out", kind="timeout") from e
            except httpx.HTTPError as e:
                raise GatewayError(f"Payment gateway unreachable: {type(e).__name__}", kind="network") from e

            status = str(resp.status_code)
            if resp.status_code in (401, 403):
                logger.error(
                    "gateway_auth_failed",
                    extra={"kind": "auth", "status_code": resp.status_code, "path": path},
                )
                raise GatewayError("Payment gateway rejected credentials", kind="auth")
            if resp.status_code == 404:
                raise NotFoundError(f"Gateway resource not found: {path}")
            if resp.status_code >= 400:
                description = _error_description(resp)
                logger.warning(
                    "gateway_request_rejected",
                    extra={"kind": "upstream", "status_code": resp.status_code, "path": path, "error": description},
                )
                raise GatewayError(description or "Payment gateway request failed", kind="upstream")
            try:
                return resp.json()
            except ValueError as e:
                raise GatewayError("Invalid response from payment gateway", kind="upstream") from e
        finally:
            gateway_requests_total.labels(operation=operation, status=status).inc()
            gateway_request_duration_seconds.labels(operation=operation).observe(time.monotonic() - start)

    def create_order(self, amount: int, currency: str, receipt: str, notes: dict[str, Any]) -> GatewayOrder:
        data = self._request(
            "create_order",
            "POST",
            "/orders",
            {"amount": amount, "currency": currency, "receipt": receipt, "notes": notes},
        )
        if not data.get("id"):
            raise GatewayError("Order creation succeeded but response has no id", kind="upstream")
        return GatewayOrder.model_validate(data)

    def create_payment_link(
        self,
        amount: int,
        currency: str,
        description: str,
        notes: dict[str, Any],
        callback_url: str,
        customer: dict[str, Any] | None = None,
    ) -> GatewayPaymentLink:
        payload: dict[str, Any] = {
            "amount": amount,
            "currency": currency,
            "description": description,
            "notes": notes,
            "callback_url": callback_url,
            "callback_method": "get",
            "notify": {"sms": False, "email": False},
            "reminder_enable": False,
        }
        if customer:
            payload["customer"] = {k: v for k, v in customer.items() if v}
        data = self._request("create_payment_link", "POST", "/payment_links", payload)
        if not data.get("id"):
            raise GatewayError("Payment link creation succeeded but response has no id", kind="upstream")
        return GatewayPaymentLink.model_validate(data)

    def fetch_payment(self, payment_id: str) -> GatewayPayment:
        return GatewayPayment.model_validate(
            self._request("fetch_payment", "GET", f"/payments/{payment_id}")
        )

    def fetch_order(self, order_id: str) -> GatewayOrder:
        return GatewayOrder.model_validate(
            self._request("fetch_order", "GET", f"/orders/{order_id}")
        )


def _error_description(resp: httpx.Response) -> str | None:
    try:
        body = resp.json()
    except ValueError:
        return None
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get("description") or error.get("code")
    return None


_client: RazorpayClient | None = None


def get_gateway_client() -> RazorpayClient:
    """Process-wide client (keeps the httpx connection pool warm)."""
    global _client
    if _client is None:
        _client = RazorpayClient()
    return _client
