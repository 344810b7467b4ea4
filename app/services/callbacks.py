import logging
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.errors import CallbackError, PersistenceConflict
from app.models.transaction import STATUS_EXPIRED, STATUS_FAILED, STATUS_SUCCESS
from app.services.notifier import Notifier, build_confirmation
from app.services.transactions import TransactionStore


logger = logging.getLogger(__name__)

FAILURE_STATUSES = frozenset(
    {"failed", "failure", "fail", "declined", "rejected", "cancelled", "canceled", "denied", "error"}
)


def map_gateway_status(status: str) -> Optional[str]:
    """Gateway vocabulary -> internal terminal state, ``None`` for no-op."""
    status = status.strip().lower()
    if status == "success":
        return STATUS_SUCCESS
    if status in FAILURE_STATUSES:
        return STATUS_FAILED
    if status == "expired":
        return STATUS_EXPIRED
    return None


class CallbackOutcome(BaseModel):
    order_id: str
    invoice_number: str
    gateway_status: str
    mapped_status: Optional[str] = None
    applied: bool = False
    notified: bool = False


def parse_callback(payload: Any) -> Tuple[str, str]:
    """Pull ``(invoice_number, lower-cased status)`` out of a notification body."""
    if not isinstance(payload, dict):
        raise CallbackError("Invalid callback data")
    order = payload.get("order")
    transaction = payload.get("transaction")
    if not isinstance(order, dict) or not isinstance(transaction, dict):
        raise CallbackError("Invalid callback data")

    invoice_number = order.get("invoice_number")
    status = transaction.get("status")
    if not isinstance(invoice_number, str) or not invoice_number.strip():
        raise CallbackError("Missing invoice number")
    if not isinstance(status, str) or not status.strip():
        raise CallbackError("Missing transaction status")
    return invoice_number.strip(), status.strip().lower()


def process_callback(db: Session, payload: Dict[str, Any], notifier: Notifier) -> CallbackOutcome:
    """
    Apply a gateway payment notification.

    The transaction must already exist (looked up by invoice number). Only
    a transition performed by this call notifies the buyer, so repeated
    notifications for the same order never send a second email.
    """
    invoice_number, gateway_status = parse_callback(payload)
    logger.info("callback invoice=%s status=%s", invoice_number, gateway_status)

    store = TransactionStore(db)
    transaction = store.find_by_invoice_number(invoice_number)
    if not transaction:
        logger.error("callback for unknown invoice %s", invoice_number)
        raise CallbackError("Transaction not found", status_code=404)

    outcome = CallbackOutcome(
        order_id=transaction.order_id,
        invoice_number=invoice_number,
        gateway_status=gateway_status,
        mapped_status=map_gateway_status(gateway_status),
    )
    if outcome.mapped_status is None:
        logger.info("callback status %s for %s ignored", gateway_status, transaction.order_id)
        return outcome

    try:
        outcome.applied = store.update_status(transaction.order_id, outcome.mapped_status)
    except PersistenceConflict as exc:
        if outcome.mapped_status == STATUS_SUCCESS:
            # Money was taken for an order we already closed
            logger.error(
                "paid callback rejected, reconcile invoice=%s order=%s: %s",
                invoice_number,
                transaction.order_id,
                exc,
            )
        else:
            logger.warning("callback for %s rejected: %s", transaction.order_id, exc)
        return outcome

    if outcome.applied and outcome.mapped_status == STATUS_SUCCESS:
        outcome.notified = _notify(db, transaction, notifier)
    return outcome


def _notify(db: Session, transaction, notifier: Notifier) -> bool:
    # The purchase stands even if the email cannot be sent
    try:
        db.refresh(transaction)
        confirmation = build_confirmation(db, transaction)
        if confirmation is None:
            return False
        notifier(confirmation)
        return True
    except Exception:
        logger.exception("purchase notification failed for %s", transaction.order_id)
        return False
