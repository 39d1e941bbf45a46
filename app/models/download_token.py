"""
DownloadToken: single-use bearer credential for one paid material download.
Valid iff used_at is null and now < expires_at.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Index, String, text

from app.db.base import Base


def as_utc(value: datetime) -> datetime:
    """sqlite hands back naive datetimes; everything is stored in UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


_LIVE = text("used_at IS NULL AND superseded_at IS NULL")


class DownloadToken(Base):
    __tablename__ = "download_tokens"
    __table_args__ = (
        # one unused, unretired token per (user, material): concurrent issuers collide here
        Index(
            "uq_download_tokens_live_pair",
            "user_id",
            "material_id",
            unique=True,
            postgresql_where=_LIVE,
            sqlite_where=_LIVE,
        ),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    token = Column(String, nullable=False, unique=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    material_id = Column(String, nullable=False, index=True)
    payment_id = Column(String, nullable=True, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    used_at = Column(DateTime(timezone=True), nullable=True)
    used_ip = Column(String, nullable=True)
    used_user_agent = Column(String, nullable=True)
    superseded_at = Column(DateTime(timezone=True), nullable=True)  # expired token retired by a reissue
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    def is_valid(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.used_at is None and as_utc(now) < as_utc(self.expires_at)
