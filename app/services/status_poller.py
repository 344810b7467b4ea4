import logging
from typing import Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.errors import GatewayError, TransactionNotFound
from app.models.transaction import TERMINAL_STATUSES
from app.services.gateway import GatewayClient
from app.services.transactions import TransactionStore


logger = logging.getLogger(__name__)

SOURCE_LOCAL = "local"
SOURCE_GATEWAY = "gateway"


class StatusCheck(BaseModel):
    order_id: str
    status: str
    source: str


def check_status(db: Session, gateway: Optional[GatewayClient], order_id: str) -> StatusCheck:
    """
    Status for a buyer waiting on the checkout screen.

    Terminal local state wins without a gateway call. Otherwise the live
    gateway status is shown, but never written: only the callback (and
    the expiry sweep) change stored state. A failing or unconfigured
    gateway falls back to the stored status.
    """
    transaction = TransactionStore(db).find_by_order_id(order_id)
    if not transaction:
        raise TransactionNotFound("Transaction not found")

    if transaction.status in TERMINAL_STATUSES:
        return StatusCheck(order_id=order_id, status=transaction.status, source=SOURCE_LOCAL)

    if gateway is None:
        logger.warning("no gateway configured, reporting local status for %s", order_id)
        return StatusCheck(order_id=order_id, status=transaction.status, source=SOURCE_LOCAL)

    try:
        live = gateway.query_status(transaction.invoice_number)
    except GatewayError as exc:
        logger.warning("status query for %s failed, using local status: %s", order_id, exc)
        return StatusCheck(order_id=order_id, status=transaction.status, source=SOURCE_LOCAL)

    return StatusCheck(order_id=order_id, status=live.normalized, source=SOURCE_GATEWAY)
