"""Tests for optional identity resolution."""
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from pydantic import ValidationError as PydanticValidationError

from app.core.config import settings
from app.core.errors import UnauthenticatedError, ValidationError
from app.services.auth.identity import (
    Identity,
    build_identity,
    decode_user_id,
    require_user_id,
)


def test_identity_requires_exactly_one_id():
    with pytest.raises(PydanticValidationError):
        Identity()
    with pytest.raises(PydanticValidationError):
        Identity(user_id="u1", guest_id="g1")

    assert Identity(user_id="u1").key == "user:u1"
    assert Identity(guest_id="g1").is_guest is True


def test_user_wins_over_guest_id():
    identity = build_identity("u1", "g1")
    assert identity.user_id == "u1"
    assert identity.guest_id is None


def test_guest_id_trimmed():
    assert build_identity(None, "  g1 ").guest_id == "g1"


def test_no_identity_is_validation_error():
    with pytest.raises(ValidationError) as exc:
        build_identity(None, "   ")
    assert exc.value.code == "identity_required"


def test_token_round_trip(access_token):
    assert decode_user_id(access_token("u42")) == "u42"


def test_expired_or_foreign_token_is_anonymous():
    past = datetime.now(timezone.utc) - timedelta(hours=2)
    expired = jwt.encode(
        {"sub": "u1", "iat": past, "exp": past + timedelta(minutes=5)},
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )
    foreign = jwt.encode({"sub": "u1"}, "another-secret-key-0123456789abcdef", algorithm="HS256")

    assert decode_user_id(expired) is None
    assert decode_user_id(foreign) is None
    assert decode_user_id("garbage") is None


def test_require_user_id():
    assert require_user_id("u1") == "u1"
    with pytest.raises(UnauthenticatedError):
        require_user_id(None)
