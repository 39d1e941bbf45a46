"""
DownloadTokenService: single-use, time-limited credentials for paid downloads.

Issuance is idempotent per (user, material): a live token is returned unchanged.
The partial unique index on live tokens makes the check-then-insert safe across
instances; the losing concurrent issuer reads back the winner's token.
Consumption is one conditional UPDATE, so a token is spent at most once.
"""
import logging
import secrets
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import (
    EntitlementRevoked,
    InvalidOrExpiredToken,
    NotFoundError,
    PaymentRequired,
    RepositoryError,
    ValidationError,
)
from app.models.download_token import DownloadToken
from app.models.payment import PaymentStatus
from app.services.auth.identity import Identity
from app.services.materials.service import MaterialService
from app.services.payments.repository import PaymentRepository
from app.utils.metrics import download_tokens_consumed_total, download_tokens_issued_total

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32


def build_download_url(token: str) -> str:
    return f"{settings.public_base_url.rstrip('/')}/api/downloads/{token}"


class DownloadTokenService:
    def __init__(self, db: Session):
        self.db = db
        self.payments = PaymentRepository(db)
        self.materials = MaterialService(db)

    def _find_live(self, user_id: str, material_id: str) -> DownloadToken | None:
        return (
            self.db.query(DownloadToken)
            .filter(
                DownloadToken.user_id == user_id,
                DownloadToken.material_id == material_id,
                DownloadToken.used_at.is_(None),
                DownloadToken.superseded_at.is_(None),
            )
            .one_or_none()
        )

    def issue(
        self,
        user_id: str,
        material_id: str,
        payment_id: str | None = None,
        ttl: timedelta | None = None,
        now: datetime | None = None,
    ) -> DownloadToken:
        now = now or datetime.now(timezone.utc)
        ttl = ttl or timedelta(hours=settings.download_token_ttl_hours)

        payment = self.payments.find_for_identity(Identity(user_id=user_id), material_id, PaymentStatus.COMPLETED)
        if payment is None:
            raise PaymentRequired(material_id)
        if payment_id and payment_id != payment.id:
            raise ValidationError("payment_mismatch", "Payment does not match this material")

        try:
            live = self._find_live(user_id, material_id)
            if live is not None:
                if live.is_valid(now):
                    download_tokens_issued_total.labels(outcome="reused").inc()
                    return live
                # expired and never used: retire it so the live slot frees up
                self.db.execute(
                    update(DownloadToken)
                    .where(DownloadToken.id == live.id, DownloadToken.superseded_at.is_(None))
                    .values(superseded_at=now)
                    .execution_options(synchronize_session=False)
                )

            token = DownloadToken(
                token=secrets.token_hex(TOKEN_BYTES),
                user_id=user_id,
                material_id=material_id,
                payment_id=payment.id,
                expires_at=now + ttl,
                created_at=now,
            )
            self.db.add(token)
            try:
                self.db.commit()
            except IntegrityError:
                # concurrent issuer won the live slot
                self.db.rollback()
                winner = self._find_live(user_id, material_id)
                if winner is None:
                    raise
                logger.info(
                    "download_token_issue_race",
                    extra={"user_id": user_id, "material_id": material_id, "token_id": winner.id},
                )
                download_tokens_issued_total.labels(outcome="reused").inc()
                return winner
            self.db.refresh(token)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("download_token_issue_failed", extra={"user_id": user_id, "material_id": material_id})
            raise RepositoryError() from e

        download_tokens_issued_total.labels(outcome="created").inc()
        logger.info(
            "download_token_issued",
            extra={"user_id": user_id, "material_id": material_id, "payment_id": payment.id, "token_id": token.id},
        )
        return token

    def consume(
        self,
        token: str,
        ip: str | None = None,
        user_agent: str | None = None,
        now: datetime | None = None,
    ) -> DownloadToken:
        """Spend the token. Unknown, used and expired tokens are indistinguishable."""
        now = now or datetime.now(timezone.utc)
        if not token:
            raise InvalidOrExpiredToken()
        try:
            rowcount = self.db.execute(
                update(DownloadToken)
                .where(
                    DownloadToken.token == token,
                    DownloadToken.used_at.is_(None),
                    DownloadToken.expires_at > now,
                )
                .values(used_at=now, used_ip=ip, used_user_agent=(user_agent or "")[:512] or None)
                .execution_options(synchronize_session=False)
            ).rowcount
            self.db.commit()
            record = None
            if rowcount == 1:
                record = self.db.query(DownloadToken).filter(DownloadToken.token == token).one_or_none()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise RepositoryError() from e

        if record is None:
            download_tokens_consumed_total.labels(outcome="rejected").inc()
            logger.info("download_token_rejected", extra={"reason": "invalid_or_expired"})
            raise InvalidOrExpiredToken()
        download_tokens_consumed_total.labels(outcome="ok").inc()
        return record

    def redeem(self, token: str, ip: str | None = None, user_agent: str | None = None) -> str:
        """Consume the token, re-check the purchase, and return the asset URL to redirect to."""
        record = self.consume(token, ip=ip, user_agent=user_agent)
        payment = self.payments.find_for_identity(
            Identity(user_id=record.user_id), record.material_id, PaymentStatus.COMPLETED
        )
        if payment is None:
            logger.warning(
                "download_payment_no_longer_valid",
                extra={"token_id": record.id, "user_id": record.user_id, "material_id": record.material_id},
            )
            raise EntitlementRevoked()

        material = self.materials.get_or_404(record.material_id)
        if not material.file_url:
            raise NotFoundError("File not available")
        self.materials.increment_downloads(material.id)
        logger.info(
            "download_token_redeemed",
            extra={"token_id": record.id, "user_id": record.user_id, "material_id": material.id},
        )
        return material.file_url

    def purge_expired(self, retention: timedelta | None = None, now: datetime | None = None) -> int:
        """Delete tokens that expired more than `retention` ago."""
        now = now or datetime.now(timezone.utc)
        retention = retention if retention is not None else timedelta(days=settings.download_token_retention_days)
        try:
            result = self.db.execute(
                delete(DownloadToken)
                .where(DownloadToken.expires_at < now - retention)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise RepositoryError() from e
        purged = result.rowcount or 0
        logger.info("download_tokens_purged", extra={"purged": purged})
        return purged
