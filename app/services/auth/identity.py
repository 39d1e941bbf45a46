"""
Optional identity resolution.

Purchases are scoped either to an authenticated user (bearer JWT issued by the identity
service) or to an anonymous guest id supplied by the client. Exactly one applies.
"""
import logging

import jwt
from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, model_validator

from app.core.config import settings
from app.core.errors import UnauthenticatedError, ValidationError

logger = logging.getLogger("auth")

bearer_scheme = HTTPBearer(auto_error=False)


class Identity(BaseModel):
    """Either user_id or guest_id, never both."""

    user_id: str | None = None
    guest_id: str | None = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _exactly_one(self) -> "Identity":
        if bool(self.user_id) == bool(self.guest_id):
            raise ValueError("exactly one of user_id / guest_id must be set")
        return self

    @property
    def is_guest(self) -> bool:
        return self.user_id is None

    @property
    def key(self) -> str:
        return f"user:{self.user_id}" if self.user_id else f"guest:{self.guest_id}"

    def log_extra(self) -> dict:
        return {"user_id": self.user_id, "guest_id": self.guest_id}


def decode_user_id(token: str) -> str | None:
    """Return the subject of a valid token, None for anything invalid or expired."""
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.PyJWTError as e:
        logger.info("bearer_token_rejected", extra={"error": type(e).__name__})
        return None
    sub = payload.get("sub") or payload.get("user_id")
    return str(sub) if sub else None


def get_optional_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str | None:
    """Authenticated user id, or None for anonymous callers (an invalid token counts as anonymous)."""
    if credentials is None or not credentials.credentials:
        return None
    return decode_user_id(credentials.credentials)


def require_user_id(user_id: str | None = Depends(get_optional_user_id)) -> str:
    if not user_id:
        raise UnauthenticatedError()
    return user_id


def build_identity(user_id: str | None, guest_id: str | None) -> Identity:
    """Authenticated user wins over a supplied guest id."""
    if user_id:
        return Identity(user_id=user_id)
    guest_id = (guest_id or "").strip()
    if guest_id:
        return Identity(guest_id=guest_id)
    raise ValidationError("identity_required", "Sign in or provide a guest id")


def get_optional_identity(
    guest_id: str | None = None,
    x_guest_id: str | None = Header(default=None),
    user_id: str | None = Depends(get_optional_user_id),
) -> Identity | None:
    """Identity from bearer token, `guest_id` query param or X-Guest-Id header; None if none given."""
    try:
        return build_identity(user_id, guest_id or x_guest_id)
    except ValidationError:
        return None
