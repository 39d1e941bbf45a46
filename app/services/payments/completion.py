import logging

from app.models.payment import Payment

logger = logging.getLogger(__name__)


def issue_download_token_async(payment: Payment) -> None:
    """
    Fire-and-forget token issuance after the first completion of a user's payment.
    Guests get no token (they have no account to bind it to). Enqueue failures are
    logged only; the token can still be requested explicitly.
    """
    if payment.user_id is None:
        return
    try:
        from app.workers.tasks.downloads import issue_download_token

        issue_download_token.delay(payment.id)
    except Exception as e:
        logger.warning(
            "download_token_enqueue_failed",
            extra={"payment_id": payment.id, "user_id": payment.user_id, "error": str(e)},
        )
