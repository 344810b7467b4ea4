import logging
from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import DuplicateOrderError, TerminalStateConflict
from app.models.transaction import (
    ALLOWED_TRANSITIONS,
    STATUS_EXPIRED,
    STATUS_SUCCESS,
    STATUS_WAITING,
    TERMINAL_STATUSES,
    Transaction,
)


logger = logging.getLogger(__name__)

DEFAULT_EXPIRY = timedelta(hours=24)


class NewTransaction(BaseModel):
    order_id: str
    invoice_number: str
    user_id: int
    game_id: int
    amount: int
    payment_method: Optional[str] = None
    payment_channel: Optional[str] = None
    payment_url: Optional[str] = None
    payment_code: Optional[str] = None
    qr_code_url: Optional[str] = None


def _sources_for(new_status: str) -> List[str]:
    """States from which ``new_status`` may be reached."""
    return [source for source, targets in ALLOWED_TRANSITIONS.items() if new_status in targets]


class TransactionStore:
    """Persistence and state transitions for purchase transactions."""

    def __init__(self, db: Session, expiry: timedelta = DEFAULT_EXPIRY):
        self.db = db
        self.expiry = expiry

    def create(self, spec: NewTransaction, now: Optional[datetime] = None) -> Transaction:
        # The gateway has already accepted the order when we get here
        now = now or datetime.utcnow()
        transaction = Transaction(
            **spec.model_dump(),
            status=STATUS_WAITING,
            expired_at=now + self.expiry,
            created_at=now,
            updated_at=now,
        )
        self.db.add(transaction)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            logger.error("duplicate order id %s: %s", spec.order_id, exc)
            raise DuplicateOrderError(f"order {spec.order_id} already exists") from exc
        self.db.refresh(transaction)
        logger.info(
            "transaction created order_id=%s user_id=%s game_id=%s amount=%s",
            transaction.order_id,
            transaction.user_id,
            transaction.game_id,
            transaction.amount,
        )
        return transaction

    def find_by_order_id(self, order_id: str) -> Optional[Transaction]:
        return self.db.execute(
            select(Transaction).where(Transaction.order_id == order_id)
        ).scalar_one_or_none()

    def find_by_invoice_number(self, invoice_number: str) -> Optional[Transaction]:
        return self.db.execute(
            select(Transaction)
            .where(Transaction.invoice_number == invoice_number)
            .order_by(Transaction.id.desc())
        ).scalars().first()

    def update_status(
        self,
        order_id: str,
        new_status: str,
        paid_at: Optional[datetime] = None,
    ) -> bool:
        """
        Move ``order_id`` to ``new_status`` if its current state allows it.

        The write is a single conditional UPDATE, so concurrent writers
        (gateway callback, expiry sweep) cannot both win. Returns ``False`` when
        nothing was written because the record is missing or already in
        ``new_status``. Raises ``TerminalStateConflict`` when a different
        terminal state is already stored.
        """
        if new_status not in ALLOWED_TRANSITIONS:
            raise ValueError(f"unknown transaction status: {new_status}")

        now = datetime.utcnow()
        values = {"status": new_status, "updated_at": now}
        if new_status == STATUS_SUCCESS:
            values["paid_at"] = paid_at or now

        result = self.db.execute(
            update(Transaction)
            .where(
                Transaction.order_id == order_id,
                Transaction.status.in_(_sources_for(new_status)),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

        if result.rowcount == 1:
            logger.info("transaction %s -> %s", order_id, new_status)
            return True

        current = self.find_by_order_id(order_id)
        if current is None:
            logger.warning("status update for unknown order %s", order_id)
            return False
        if current.status == new_status:
            logger.info("transaction %s already %s, nothing to do", order_id, new_status)
            return False
        if current.status in TERMINAL_STATUSES:
            logger.warning(
                "refusing %s -> %s for order %s", current.status, new_status, order_id
            )
            raise TerminalStateConflict(order_id, current.status, new_status)
        logger.warning(
            "transition %s -> %s not allowed for order %s", current.status, new_status, order_id
        )
        return False

    def has_purchased(self, user_id: int, game_id: int) -> bool:
        found = self.db.execute(
            select(Transaction.id)
            .where(
                Transaction.user_id == user_id,
                Transaction.game_id == game_id,
                Transaction.status == STATUS_SUCCESS,
            )
            .limit(1)
        ).first()
        return found is not None

    def list_for_user(self, user_id: int) -> List[Transaction]:
        return list(
            self.db.execute(
                select(Transaction)
                .where(Transaction.user_id == user_id)
                .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            ).scalars()
        )

    def find_outstanding(
        self, user_id: int, game_id: int, now: Optional[datetime] = None
    ) -> Optional[Transaction]:
        """Newest non-terminal, unexpired order for the pair, if any."""
        now = now or datetime.utcnow()
        return self.db.execute(
            select(Transaction)
            .where(
                Transaction.user_id == user_id,
                Transaction.game_id == game_id,
                Transaction.status.not_in(TERMINAL_STATUSES),
                Transaction.expired_at > now,
            )
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        ).scalars().first()

    def expire_stale(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        stale = self.db.execute(
            select(Transaction.order_id).where(
                Transaction.status.not_in(TERMINAL_STATUSES),
                Transaction.expired_at <= now,
            )
        ).scalars().all()
        expired = 0
        for order_id in stale:
            # A callback may land between the select and the write
            try:
                if self.update_status(order_id, STATUS_EXPIRED):
                    expired += 1
            except TerminalStateConflict as exc:
                logger.info("sweep skipped %s: %s", order_id, exc)
        return expired
