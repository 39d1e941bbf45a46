"""Tests for OrderService: validation, duplicate prevention, idempotent reuse, payment links."""
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from app.core.errors import AlreadyPurchased, NotFoundError, RateLimitedError, ValidationError
from app.models.material import AccessType
from app.models.payment import PaymentStatus
from app.services.auth.identity import Identity
from app.services.payments.orders import OrderService, build_receipt
from app.services.payments.repository import PaymentRepository
from app.utils.currency import to_minor_units

USER = Identity(user_id="user-1")
GUEST = Identity(guest_id="guest-1")


def test_create_order_amount_in_minor_units(db, make_material, gateway):
    material = make_material(price=Decimal("499"))

    result = OrderService(db, gateway=gateway).create_order(material.id, USER)

    assert result.amount == 49900
    assert result.order_id == "order_TEST0001"
    assert result.reused is False
    assert result.key_id == "rzp_test_key"
    kwargs = gateway.create_order.call_args.kwargs
    assert kwargs["amount"] == 49900
    assert kwargs["currency"] == "INR"
    assert kwargs["notes"]["materialId"] == material.id
    assert len(kwargs["receipt"]) <= 40

    payment = PaymentRepository(db).get_by_id(result.payment_id)
    assert payment.status == PaymentStatus.PENDING
    assert payment.user_id == "user-1"
    assert payment.material_title == material.title


@pytest.mark.parametrize(
    "price, expected",
    [(Decimal("499"), 49900), ("12.345", 1235), (Decimal("0.005"), 1), ("abc", 0), ("NaN", 0)],
)
def test_to_minor_units_rounds_half_up(price, expected):
    assert to_minor_units(price) == expected


def test_zero_price_fails_validation(db, make_material, gateway):
    material = make_material(price=Decimal("0"))

    with pytest.raises(ValidationError) as exc:
        OrderService(db, gateway=gateway).create_order(material.id, USER)

    assert exc.value.code == "invalid_price"
    gateway.create_order.assert_not_called()


def test_not_paid_material_rejected(db, make_material, gateway):
    material = make_material(access_type=AccessType.FREE, price=Decimal("0"))

    with pytest.raises(ValidationError) as exc:
        OrderService(db, gateway=gateway).create_order(material.id, USER)
    assert exc.value.code == "not_paid_material"


def test_below_gateway_minimum_rejected(db, make_material, gateway):
    material = make_material(price=Decimal("0.50"))

    with pytest.raises(ValidationError) as exc:
        OrderService(db, gateway=gateway).create_order(material.id, USER)
    assert exc.value.code == "below_minimum_amount"


def test_unknown_material_not_found(db, gateway):
    with pytest.raises(NotFoundError):
        OrderService(db, gateway=gateway).create_order("missing", USER)


def test_repeat_call_reuses_pending_order(db, make_material, gateway):
    material = make_material()
    service = OrderService(db, gateway=gateway)

    first = service.create_order(material.id, GUEST)
    second = service.create_order(material.id, GUEST)

    assert second.order_id == first.order_id
    assert second.payment_id == first.payment_id
    assert second.reused is True
    assert gateway.create_order.call_count == 1


def test_already_purchased_every_time(db, make_material, make_payment, gateway):
    material = make_material()
    make_payment(material.id, user_id="user-1", status=PaymentStatus.COMPLETED)
    service = OrderService(db, gateway=gateway)

    for _ in range(3):
        with pytest.raises(AlreadyPurchased) as exc:
            service.create_order(material.id, USER)
        assert exc.value.to_dict()["alreadyPurchased"] is True
    gateway.create_order.assert_not_called()


def test_purchase_scoped_to_identity(db, make_material, make_payment, gateway):
    material = make_material()
    make_payment(material.id, user_id="user-1", status=PaymentStatus.COMPLETED)

    result = OrderService(db, gateway=gateway).create_order(material.id, Identity(user_id="user-2"))
    assert result.reused is False


def test_rate_limited_before_gateway_call(db, make_material, gateway):
    material = make_material()
    limiter = MagicMock()
    limiter.allow.return_value = False

    with pytest.raises(RateLimitedError):
        OrderService(db, gateway=gateway, rate_limiter=limiter).create_order(material.id, USER)
    limiter.allow.assert_called_once_with("user:user-1")
    gateway.create_order.assert_not_called()


def test_insert_race_falls_back_to_winner(db, make_material, make_payment, gateway):
    """A concurrent request inserted the pending row between our lookup and insert."""
    material = make_material()
    service = OrderService(db, gateway=gateway)
    real_find = service.payments.find_for_identity
    calls = {"pending": 0}

    def find(identity, material_id, status):
        if status == PaymentStatus.PENDING:
            calls["pending"] += 1
            if calls["pending"] == 1:
                make_payment(material_id, user_id=identity.user_id, gateway_order_id="order_WINNER")
                return None
        return real_find(identity, material_id, status)

    with patch.object(service.payments, "find_for_identity", side_effect=find):
        result = service.create_order(material.id, USER)

    assert result.order_id == "order_WINNER"
    assert result.reused is True


def test_receipt_format():
    receipt = build_receipt("0123456789abcdef", Identity(guest_id="guest-abcdefghij"))
    assert receipt.startswith("mat_01234567_guest-ab_")
    assert len(receipt) <= 40


def test_payment_link_creates_pending_row(db, make_material, gateway):
    material = make_material()

    result = OrderService(db, gateway=gateway).create_payment_link(material.id, GUEST, customer={"name": "Asha"})

    assert result.payment_link_id == "plink_TEST0001"
    assert result.short_url == "https://rzp.io/i/test0001"
    assert result.order_id == "order_plink_TEST0001"
    kwargs = gateway.create_payment_link.call_args.kwargs
    assert kwargs["callback_url"].endswith(f"/payment-success?materialId={material.id}")
    assert kwargs["customer"] == {"name": "Asha"}
    payment = PaymentRepository(db).get_by_link_id("plink_TEST0001")
    assert payment.guest_id == "guest-1"


def test_payment_link_attaches_to_pending_order(db, make_material, gateway):
    material = make_material()
    service = OrderService(db, gateway=gateway)
    order = service.create_order(material.id, GUEST)

    link = service.create_payment_link(material.id, GUEST)

    assert link.payment_id == order.payment_id
    assert link.order_id == order.order_id
    again = service.create_payment_link(material.id, GUEST)
    assert again.reused is True
    assert gateway.create_payment_link.call_count == 1


def test_payment_link_refused_when_purchased(db, make_material, make_payment, gateway):
    material = make_material()
    make_payment(material.id, guest_id="guest-1", status=PaymentStatus.COMPLETED)

    with pytest.raises(AlreadyPurchased):
        OrderService(db, gateway=gateway).create_payment_link(material.id, GUEST)
    gateway.create_payment_link.assert_not_called()
