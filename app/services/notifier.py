import logging
from datetime import datetime
from typing import Callable, Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.models.game import Game
from app.models.transaction import Transaction
from app.models.user import User


logger = logging.getLogger(__name__)


class PurchaseConfirmation(BaseModel):
    order_id: str
    amount: int
    payment_method: Optional[str] = None
    paid_at: Optional[datetime] = None
    buyer_email: str
    buyer_name: str
    game_title: str
    game_slug: str


Notifier = Callable[[PurchaseConfirmation], None]


def build_confirmation(db: Session, transaction: Transaction) -> Optional[PurchaseConfirmation]:
    user = db.get(User, transaction.user_id)
    game = db.get(Game, transaction.game_id)
    if not user or not game:
        logger.warning(
            "cannot build confirmation for %s: user or game missing", transaction.order_id
        )
        return None
    return PurchaseConfirmation(
        order_id=transaction.order_id,
        amount=transaction.amount,
        payment_method=transaction.payment_method,
        paid_at=transaction.paid_at,
        buyer_email=user.email,
        buyer_name=user.name,
        game_title=game.title,
        game_slug=game.slug,
    )


def queue_purchase_email(confirmation: PurchaseConfirmation) -> None:
    """Default notifier: hand the email to a Celery worker and return."""
    from app.workers.tasks import send_purchase_email_task

    send_purchase_email_task.delay(confirmation.model_dump(mode="json"))
    logger.info("purchase email queued for order %s", confirmation.order_id)
