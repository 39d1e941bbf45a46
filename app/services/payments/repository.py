"""
PaymentRepository: durable Payment store.

Status changes are single conditional UPDATEs (`... WHERE status = 'pending'`); the
affected row count tells the caller whether it won. Two actors racing on the same order
(webhook vs. client confirmation, or replays) can never both observe `pending`.
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import PaymentConflict, RepositoryError
from app.models.payment import Payment, PaymentStatus
from app.services.auth.identity import Identity

logger = logging.getLogger(__name__)


class PaymentRepository:
    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except (IntegrityError, RepositoryError):
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("payment_repository_error", extra={"error": operation})
            raise RepositoryError() from e

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_by_id(self, payment_id: str) -> Payment | None:
        with self._guard("get_by_id"):
            return self.db.query(Payment).filter(Payment.id == payment_id).one_or_none()

    def get_by_order_id(self, order_id: str) -> Payment | None:
        with self._guard("get_by_order_id"):
            return self.db.query(Payment).filter(Payment.gateway_order_id == order_id).one_or_none()

    def get_by_link_id(self, link_id: str) -> Payment | None:
        with self._guard("get_by_link_id"):
            return self.db.query(Payment).filter(Payment.payment_link_id == link_id).one_or_none()

    def get_by_order_for_identity(self, order_id: str, identity: Identity) -> Payment | None:
        with self._guard("get_by_order_for_identity"):
            return (
                self.db.query(Payment)
                .filter(Payment.gateway_order_id == order_id, *self._identity_filter(identity))
                .one_or_none()
            )

    def find_for_identity(
        self, identity: Identity, material_id: str, status: PaymentStatus
    ) -> Payment | None:
        with self._guard("find_for_identity"):
            return (
                self.db.query(Payment)
                .filter(
                    *self._identity_filter(identity),
                    Payment.material_id == material_id,
                    Payment.status == status,
                )
                .order_by(Payment.created_at.desc())
                .first()
            )

    def list_completed_for_user(self, user_id: str, limit: int = 100) -> list[Payment]:
        with self._guard("list_completed_for_user"):
            return (
                self.db.query(Payment)
                .filter(Payment.user_id == user_id, Payment.status == PaymentStatus.COMPLETED)
                .order_by(Payment.created_at.desc())
                .limit(limit)
                .all()
            )

    @staticmethod
    def _identity_filter(identity: Identity) -> tuple:
        if identity.user_id:
            return (Payment.user_id == identity.user_id,)
        return (Payment.guest_id == identity.guest_id,)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_pending(
        self,
        identity: Identity,
        material_id: str,
        gateway_order_id: str,
        amount: int,
        currency: str,
        material_title: str | None = None,
        material_subject_code: str | None = None,
        payment_link_id: str | None = None,
        payment_link_url: str | None = None,
        payment_link_qr: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Payment:
        """Insert a pending payment. PaymentConflict if one already exists for the pair/order."""
        payment = Payment(
            user_id=identity.user_id,
            guest_id=identity.guest_id,
            material_id=material_id,
            material_title=material_title,
            material_subject_code=material_subject_code,
            gateway_order_id=gateway_order_id,
            payment_link_id=payment_link_id,
            payment_link_url=payment_link_url,
            payment_link_qr=payment_link_qr,
            amount=amount,
            currency=currency,
            status=PaymentStatus.PENDING,
            payment_metadata=metadata or {},
        )
        with self._guard("create_pending"):
            try:
                self.db.add(payment)
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                logger.warning(
                    "payment_insert_conflict",
                    extra={"order_id": gateway_order_id, "material_id": material_id, **identity.log_extra()},
                )
                raise PaymentConflict() from e
            self.db.refresh(payment)
        return payment

    def _transition(self, payment_id: str, values: dict[str, Any]) -> bool:
        now = datetime.now(timezone.utc)
        stmt = (
            update(Payment)
            .where(Payment.id == payment_id, Payment.status == PaymentStatus.PENDING)
            .values(updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        with self._guard("transition"):
            try:
                rowcount = self.db.execute(stmt).rowcount
                self.db.commit()
            except IntegrityError:
                # a second completed row for the same pair: the other payment already won
                self.db.rollback()
                logger.warning("payment_transition_conflict", extra={"payment_id": payment_id})
                return False
        return rowcount == 1

    def mark_completed(
        self,
        payment_id: str,
        gateway_payment_id: str | None,
        signature: str | None = None,
        payment_method: str | None = None,
    ) -> bool:
        """pending -> completed. True only for the single caller whose write applied."""
        won = self._transition(
            payment_id,
            {
                "status": PaymentStatus.COMPLETED,
                "gateway_payment_id": gateway_payment_id,
                "signature": signature,
                "payment_method": payment_method,
                "completed_at": datetime.now(timezone.utc),
            },
        )
        if won:
            logger.info("payment_completed", extra={"payment_id": payment_id, "gateway_payment_id": gateway_payment_id})
        return won

    def mark_failed(
        self,
        payment_id: str,
        reason: str,
        gateway_payment_id: str | None = None,
        signature: str | None = None,
    ) -> bool:
        """pending -> failed. Terminal rows are left untouched."""
        values: dict[str, Any] = {"status": PaymentStatus.FAILED, "failure_reason": reason}
        if gateway_payment_id:
            values["gateway_payment_id"] = gateway_payment_id
        if signature:
            values["signature"] = signature
        won = self._transition(payment_id, values)
        if won:
            logger.info("payment_failed", extra={"payment_id": payment_id, "reason": reason})
        return won

    def attach_payment_link(self, payment_id: str, link_id: str, url: str | None, qr: str | None) -> bool:
        """Record a hosted link on a still-pending payment."""
        return self._transition(
            payment_id,
            {"payment_link_id": link_id, "payment_link_url": url, "payment_link_qr": qr},
        )
