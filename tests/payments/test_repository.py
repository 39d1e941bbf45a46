"""Tests for PaymentRepository: conditional transitions and uniqueness under races."""
import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.errors import PaymentConflict
from app.db.base import Base
from app.models.payment import PaymentStatus
from app.services.auth.identity import Identity
from app.services.payments.repository import PaymentRepository


def test_create_pending_and_lookup(db, make_material):
    material = make_material()
    repo = PaymentRepository(db)
    payment = repo.create_pending(Identity(user_id="u1"), material.id, "order_A", 49900, "INR")

    assert payment.status == PaymentStatus.PENDING
    assert repo.get_by_order_id("order_A").id == payment.id
    assert repo.find_for_identity(Identity(user_id="u1"), material.id, PaymentStatus.PENDING).id == payment.id
    assert repo.find_for_identity(Identity(guest_id="u1"), material.id, PaymentStatus.PENDING) is None


def test_second_pending_for_same_pair_conflicts(db, make_material):
    material = make_material()
    repo = PaymentRepository(db)
    repo.create_pending(Identity(guest_id="g1"), material.id, "order_A", 49900, "INR")

    with pytest.raises(PaymentConflict):
        repo.create_pending(Identity(guest_id="g1"), material.id, "order_B", 49900, "INR")

    # session still usable after the rollback
    assert repo.get_by_order_id("order_A") is not None


def test_mark_completed_wins_once(db, make_material, make_payment):
    material = make_material()
    payment = make_payment(material.id)
    repo = PaymentRepository(db)

    assert repo.mark_completed(payment.id, "pay_1", "sig", "upi") is True
    assert repo.mark_completed(payment.id, "pay_1", "sig", "upi") is False
    assert repo.mark_failed(payment.id, "late") is False

    fresh = repo.get_by_id(payment.id)
    assert fresh.status == PaymentStatus.COMPLETED
    assert fresh.gateway_payment_id == "pay_1"
    assert fresh.payment_method == "upi"
    assert fresh.completed_at is not None


def test_failed_is_terminal(db, make_material, make_payment):
    material = make_material()
    payment = make_payment(material.id)
    repo = PaymentRepository(db)

    assert repo.mark_failed(payment.id, "invalid_signature", "pay_1", "bad") is True
    assert repo.mark_completed(payment.id, "pay_1") is False
    fresh = repo.get_by_id(payment.id)
    assert fresh.status == PaymentStatus.FAILED
    assert fresh.failure_reason == "invalid_signature"


def test_second_completed_for_pair_is_refused(db, make_material, make_payment):
    """A failed-then-retried purchase cannot end up with two completed rows."""
    material = make_material()
    first = make_payment(material.id, user_id="u1")
    repo = PaymentRepository(db)
    assert repo.mark_completed(first.id, "pay_1") is True

    second = make_payment(material.id, user_id="u1")
    assert repo.mark_completed(second.id, "pay_2") is False
    assert repo.get_by_id(second.id).status == PaymentStatus.PENDING


def test_attach_payment_link_only_while_pending(db, make_material, make_payment):
    material = make_material()
    payment = make_payment(material.id)
    repo = PaymentRepository(db)

    assert repo.attach_payment_link(payment.id, "plink_1", "https://rzp.io/i/x", None) is True
    assert repo.get_by_link_id("plink_1").id == payment.id

    repo.mark_completed(payment.id, "pay_1")
    assert repo.attach_payment_link(payment.id, "plink_2", "https://rzp.io/i/y", None) is False


def test_list_completed_for_user(db, make_material, make_payment):
    m1, m2 = make_material(), make_material()
    done = make_payment(m1.id, user_id="u1", status=PaymentStatus.COMPLETED)
    make_payment(m2.id, user_id="u1")
    make_payment(m2.id, user_id="u2", status=PaymentStatus.COMPLETED)

    rows = PaymentRepository(db).list_completed_for_user("u1")
    assert [p.id for p in rows] == [done.id]


def test_concurrent_completion_has_single_winner(tmp_path):
    """N threads race pending -> completed on separate connections; exactly one wins."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    setup = factory()
    payment = PaymentRepository(setup).create_pending(Identity(user_id="u1"), "mat-1", "order_race", 49900, "INR")
    payment_id = payment.id
    setup.close()

    results = []
    barrier = threading.Barrier(8)

    def worker(n: int) -> None:
        session = factory()
        try:
            barrier.wait()
            results.append(PaymentRepository(session).mark_completed(payment_id, f"pay_{n}"))
        finally:
            session.close()

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 1
    check = factory()
    assert PaymentRepository(check).get_by_id(payment_id).status == PaymentStatus.COMPLETED
    check.close()
    engine.dispose()
