"""
Celery tasks: download token issuance after payment completion, and the
periodic purge of long-expired tokens.
"""
import logging

from app.core.celery_app import celery_app
from app.core.config import settings
from app.core.errors import AppError, RepositoryError
from app.db.session import SessionLocal
from app.models.payment import PaymentStatus
from app.services.downloads.service import DownloadTokenService
from app.services.payments.repository import PaymentRepository

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    name="app.workers.tasks.downloads.issue_download_token",
    max_retries=settings.celery_task_max_retries,
    default_retry_delay=settings.celery_task_retry_delay,
)
def issue_download_token(self, payment_id: str) -> dict:
    """Mint (or reuse) the token for a freshly completed user payment."""
    db = SessionLocal()
    try:
        payment = PaymentRepository(db).get_by_id(payment_id)
        if payment is None or payment.status != PaymentStatus.COMPLETED or payment.user_id is None:
            logger.info("download_token_issue_skipped", extra={"payment_id": payment_id})
            return {"ok": False, "reason": "not_eligible"}
        token = DownloadTokenService(db).issue(payment.user_id, payment.material_id, payment_id=payment.id)
        return {"ok": True, "token_id": token.id}
    except RepositoryError as e:
        logger.warning("download_token_issue_retry", extra={"payment_id": payment_id, "error": str(e)})
        raise self.retry(exc=e)
    except AppError as e:
        logger.warning("download_token_issue_failed", extra={"payment_id": payment_id, "error": e.code})
        return {"ok": False, "reason": e.code}
    finally:
        db.close()


@celery_app.task(name="app.workers.tasks.downloads.purge_expired_download_tokens")
def purge_expired_download_tokens() -> dict:
    db = SessionLocal()
    try:
        purged = DownloadTokenService(db).purge_expired()
        return {"purged": purged}
    finally:
        db.close()
