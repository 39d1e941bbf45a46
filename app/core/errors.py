"""
Domain error taxonomy.

Every error carries the HTTP status and a stable machine-readable code; the API layer
renders them through one exception handler (see app/api/errors.py).
"""
from __future__ import annotations

from typing import Any


class AppError(Exception):
    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    default_detail: str = "Internal error"

    def __init__(self, detail: str | None = None, *, code: str | None = None, **extra: Any) -> None:
        self.detail = detail or self.default_detail
        if code is not None:
            self.code = code
        self.extra = extra
        super().__init__(self.detail)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "detail": self.detail, **self.extra}


class ConfigurationError(AppError):
    """Gateway credentials (or webhook secret) absent: operator problem, not a user error."""

    status_code = 503
    code = "PAYMENT_NOT_CONFIGURED"
    default_detail = "Payment service is not configured. Please contact administrator."


class ValidationError(AppError):
    """User-correctable input problem. `code` names the broken rule."""

    status_code = 400
    code = "validation_error"
    default_detail = "Invalid request"

    def __init__(self, reason: str, detail: str | None = None, **extra: Any) -> None:
        super().__init__(detail or reason, code=reason, **extra)


class AlreadyPurchased(AppError):
    status_code = 409
    code = "ALREADY_PURCHASED"
    default_detail = "You have already purchased this material"

    def __init__(self, detail: str | None = None, **extra: Any) -> None:
        super().__init__(detail, alreadyPurchased=True, **extra)


class AuthenticationError(AppError):
    status_code = 400
    code = "INVALID_SIGNATURE"
    default_detail = "Signature verification failed"


class UnauthenticatedError(AuthenticationError):
    status_code = 401
    code = "UNAUTHENTICATED"
    default_detail = "Authentication required"


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"
    default_detail = "Not found"


class GatewayError(AppError):
    """Provider unreachable or rejected our credentials. `kind`: auth / network / timeout / upstream / circuit_open."""

    status_code = 502
    code = "GATEWAY_ERROR"
    default_detail = "Payment gateway request failed"

    def __init__(self, detail: str | None = None, *, kind: str = "upstream", **extra: Any) -> None:
        self.kind = kind
        super().__init__(detail, kind=kind, retryable=True, **extra)


class RepositoryError(AppError):
    status_code = 503
    code = "REPOSITORY_ERROR"
    default_detail = "Storage temporarily unavailable"


class PaymentConflict(AppError):
    """Insert collided with a concurrently written payment row."""

    status_code = 409
    code = "PAYMENT_CONFLICT"
    default_detail = "Concurrent payment for this material"


class InvalidOrExpiredToken(AppError):
    """Uniform on purpose: never reveals whether a token existed, expired or was used."""

    status_code = 403
    code = "INVALID_TOKEN"
    default_detail = "Invalid or expired download link"

    def __init__(self) -> None:
        super().__init__()


class PaymentRequired(AppError):
    status_code = 402
    code = "PAYMENT_REQUIRED"
    default_detail = "Payment required to access this material"

    def __init__(self, material_id: str, price: Any = None, currency: str | None = None) -> None:
        extra: dict[str, Any] = {"requiresPayment": True, "materialId": material_id}
        if price is not None:
            extra["price"] = str(price)
        if currency:
            extra["currency"] = currency
        super().__init__(**extra)


class EntitlementRevoked(AppError):
    status_code = 403
    code = "PAYMENT_INVALID"
    default_detail = "Payment verification failed"


class MisconfiguredResource(AppError):
    status_code = 409
    code = "MISCONFIGURED_RESOURCE"
    default_detail = "Material is marked as drive protected but has no link"


class RateLimitedError(AppError):
    status_code = 429
    code = "RATE_LIMITED"
    default_detail = "Too many purchase attempts. Try again later."


class MalformedWebhookError(AppError):
    status_code = 400
    code = "MALFORMED_WEBHOOK"
    default_detail = "Webhook payload could not be parsed"


class SecureDownloadRequired(AppError):
    """Paid material requested through the direct path; only a download token may serve it."""

    status_code = 403
    code = "SECURE_DOWNLOAD_REQUIRED"
    default_detail = "Please use the secure download link to access this paid material"

    def __init__(self, material_id: str) -> None:
        super().__init__(requiresSecureDownload=True, materialId=material_id)
