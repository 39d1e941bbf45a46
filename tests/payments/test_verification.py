"""Tests for client-side payment confirmation."""
from unittest.mock import MagicMock

import pytest

from app.core.errors import AuthenticationError, ConfigurationError, NotFoundError, ValidationError
from app.models.payment import PaymentStatus
from app.services.auth.identity import Identity
from app.services.gateway.client import GatewayPayment
from app.services.payments.repository import PaymentRepository
from app.services.payments.signature import compute_payment_signature
from app.services.payments.verification import PaymentVerificationService

SECRET = "test_key_secret"
USER = Identity(user_id="user-1")


def _service(db, gateway, on_completed=None):
    return PaymentVerificationService(db, gateway=gateway, secret=SECRET, on_completed=on_completed or MagicMock())


@pytest.fixture
def pending(make_material, make_payment):
    material = make_material()
    return make_payment(material.id, user_id="user-1", gateway_order_id="order_TEST0001")


def test_valid_signature_and_capture_completes(db, gateway, pending):
    hook = MagicMock()
    sig = compute_payment_signature("order_TEST0001", "pay_TEST0001", SECRET)

    payment = _service(db, gateway, hook).verify("order_TEST0001", "pay_TEST0001", sig, USER)

    assert payment.status == PaymentStatus.COMPLETED
    assert payment.gateway_payment_id == "pay_TEST0001"
    assert payment.payment_method == "upi"
    gateway.fetch_payment.assert_called_once_with("pay_TEST0001")
    hook.assert_called_once()
    assert hook.call_args.args[0].id == pending.id


def test_bad_signature_marks_failed(db, gateway, pending):
    with pytest.raises(AuthenticationError):
        _service(db, gateway).verify("order_TEST0001", "pay_TEST0001", "0" * 64, USER)

    fresh = PaymentRepository(db).get_by_id(pending.id)
    assert fresh.status == PaymentStatus.FAILED
    assert fresh.failure_reason == "invalid_signature"
    gateway.fetch_payment.assert_not_called()


def test_valid_signature_but_not_captured_fails(db, gateway, pending):
    gateway.fetch_payment.return_value = GatewayPayment(id="pay_TEST0001", status="failed", order_id="order_TEST0001")
    sig = compute_payment_signature("order_TEST0001", "pay_TEST0001", SECRET)

    with pytest.raises(ValidationError) as exc:
        _service(db, gateway).verify("order_TEST0001", "pay_TEST0001", sig, USER)

    assert exc.value.code == "payment_not_captured"
    assert PaymentRepository(db).get_by_id(pending.id).status == PaymentStatus.FAILED


def test_payment_for_another_order_is_rejected(db, gateway, pending):
    gateway.fetch_payment.return_value = GatewayPayment(id="pay_TEST0001", status="captured", order_id="order_OTHER")
    sig = compute_payment_signature("order_TEST0001", "pay_TEST0001", SECRET)

    with pytest.raises(ValidationError):
        _service(db, gateway).verify("order_TEST0001", "pay_TEST0001", sig, USER)
    assert PaymentRepository(db).get_by_id(pending.id).status == PaymentStatus.FAILED


def test_repeat_verification_is_idempotent(db, gateway, pending):
    hook = MagicMock()
    sig = compute_payment_signature("order_TEST0001", "pay_TEST0001", SECRET)
    service = _service(db, gateway, hook)

    service.verify("order_TEST0001", "pay_TEST0001", sig, USER)
    again = service.verify("order_TEST0001", "pay_TEST0001", sig, USER)

    assert again.status == PaymentStatus.COMPLETED
    assert hook.call_count == 1
    assert gateway.fetch_payment.call_count == 1


def test_other_identity_cannot_verify(db, gateway, pending):
    sig = compute_payment_signature("order_TEST0001", "pay_TEST0001", SECRET)

    with pytest.raises(NotFoundError):
        _service(db, gateway).verify("order_TEST0001", "pay_TEST0001", sig, Identity(guest_id="intruder"))


def test_failed_payment_stays_failed(db, gateway, make_material, make_payment):
    material = make_material()
    make_payment(material.id, user_id="user-1", gateway_order_id="order_F", status=PaymentStatus.FAILED)
    sig = compute_payment_signature("order_F", "pay_1", SECRET)

    with pytest.raises(ValidationError) as exc:
        _service(db, gateway).verify("order_F", "pay_1", sig, USER)
    assert exc.value.code == "payment_failed"


def test_missing_secret_is_configuration_error(db, gateway, pending):
    service = PaymentVerificationService(db, gateway=gateway, secret="")
    with pytest.raises(ConfigurationError):
        service.verify("order_TEST0001", "pay_TEST0001", "sig", USER)
