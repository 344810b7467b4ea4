from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from app.core.database import Base


STATUS_PENDING = "pending"
STATUS_WAITING = "waiting"
STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"
STATUS_EXPIRED = "expired"

TERMINAL_STATUSES = (STATUS_SUCCESS, STATUS_FAILED, STATUS_EXPIRED)

ALLOWED_TRANSITIONS = {
    STATUS_PENDING: [STATUS_WAITING, STATUS_SUCCESS, STATUS_FAILED, STATUS_EXPIRED],
    STATUS_WAITING: [STATUS_SUCCESS, STATUS_FAILED, STATUS_EXPIRED],
    STATUS_SUCCESS: [],
    STATUS_FAILED: [],
    STATUS_EXPIRED: [],
}


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint("order_id", name="uq_transactions_order_id"),
        UniqueConstraint("user_id", "game_id", "order_id", name="uq_transactions_user_game_order"),
    )

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(64), nullable=False, index=True)
    invoice_number = Column(String(64), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    game_id = Column(Integer, ForeignKey("games.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    payment_method = Column(String(64), nullable=True)
    payment_channel = Column(String(64), nullable=True)
    status = Column(String(20), nullable=False, default=STATUS_PENDING)
    payment_url = Column(String(1024), nullable=True)
    payment_code = Column(String(255), nullable=True)
    qr_code_url = Column(String(2048), nullable=True)
    expired_at = Column(DateTime, nullable=False)
    paid_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
