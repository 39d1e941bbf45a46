"""
Payment: one purchase intent of a material, keyed by the gateway order id.
Rows are never deleted (audit trail). Status moves pending -> completed | failed once.
"""
import enum
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, Enum, Index, Integer, String, text

from app.db.base import Base, JSONType


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


def _partial_unique(name: str, identity_column: str, status: str) -> Index:
    where = text(f"status = '{status}'")
    return Index(
        name,
        identity_column,
        "material_id",
        unique=True,
        postgresql_where=where,
        sqlite_where=where,
    )


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("(user_id IS NULL) <> (guest_id IS NULL)", name="ck_payments_single_identity"),
        # at most one completed and one pending payment per (identity, material)
        _partial_unique("uq_payments_user_material_completed", "user_id", "completed"),
        _partial_unique("uq_payments_guest_material_completed", "guest_id", "completed"),
        _partial_unique("uq_payments_user_material_pending", "user_id", "pending"),
        _partial_unique("uq_payments_guest_material_pending", "guest_id", "pending"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=True, index=True)
    guest_id = Column(String, nullable=True, index=True)
    material_id = Column(String, nullable=False, index=True)
    material_title = Column(String, nullable=True)          # snapshot for audit
    material_subject_code = Column(String, nullable=True)

    gateway_order_id = Column(String, nullable=False, unique=True, index=True)
    gateway_payment_id = Column(String, nullable=True, index=True)
    signature = Column(String, nullable=True)
    payment_link_id = Column(String, nullable=True, unique=True, index=True)
    payment_link_url = Column(String, nullable=True)
    payment_link_qr = Column(String, nullable=True)

    amount = Column(Integer, nullable=False)                 # minor units (paise)
    currency = Column(String, nullable=False, default="INR")
    status = Column(
        Enum(PaymentStatus, native_enum=False, length=16, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True,
    )
    payment_method = Column(String, nullable=True)
    failure_reason = Column(String, nullable=True)
    payment_metadata = Column("metadata", JSONType, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    completed_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def is_guest(self) -> bool:
        return self.user_id is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "guestId": self.guest_id,
            "materialId": self.material_id,
            "materialTitle": self.material_title,
            "orderId": self.gateway_order_id,
            "gatewayPaymentId": self.gateway_payment_id,
            "paymentLinkId": self.payment_link_id,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status.value if self.status else None,
            "paymentMethod": self.payment_method,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }
