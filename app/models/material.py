"""
Material: read-side view of the content catalog.
The catalog owns these rows; payments only read the access tier and bump `downloads`.
"""
import enum
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum, Integer, Numeric, String

from app.db.base import Base


class AccessType(str, enum.Enum):
    FREE = "free"
    DRIVE_PROTECTED = "drive_protected"
    PAID = "paid"


class Material(Base):
    __tablename__ = "materials"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    title = Column(String, nullable=False)
    subject_code = Column(String, nullable=True, index=True)
    access_type = Column(
        Enum(AccessType, native_enum=False, length=32, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=AccessType.FREE,
        index=True,
    )
    price = Column(Numeric(10, 2), nullable=False, default=0)   # major units (rupees)
    external_link_url = Column(String, nullable=True)            # drive_protected only
    file_url = Column(String, nullable=True)                     # storage location; never exposed for paid
    downloads = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
