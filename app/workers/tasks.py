import logging

from app.core.database import SessionLocal
from app.services.email import send_purchase_confirmed_email
from app.services.notifier import PurchaseConfirmation
from app.services.transactions import TransactionStore
from app.workers.celery_app import celery_app


logger = logging.getLogger(__name__)


@celery_app.task(name="send_purchase_email_task")
def send_purchase_email_task(confirmation: dict) -> bool:
    """Send the purchase confirmation email. Failures are logged only."""
    data = PurchaseConfirmation.model_validate(confirmation)
    sent = send_purchase_confirmed_email(data)
    if not sent:
        logger.warning("purchase email for order %s was not delivered", data.order_id)
    return sent


@celery_app.task(name="expire_stale_transactions")
def expire_stale_transactions() -> int:
    """Flip unpaid orders past their expiry to ``expired``."""
    db = SessionLocal()
    try:
        expired = TransactionStore(db).expire_stale()
        if expired:
            logger.info("expired %s stale transactions", expired)
        return expired
    finally:
        db.close()
