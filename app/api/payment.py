import json
import logging
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.api.deps import (
    get_current_user,
    get_gateway_client,
    get_notifier,
    get_optional_gateway_client,
    get_raw_body,
)
from app.core.config import get_settings
from app.core.database import get_db
from app.core.errors import (
    AlreadyOwned,
    CallbackError,
    GatewayError,
    OrderInProgress,
    PersistenceConflict,
    ValidationError,
)
from app.models.transaction import Transaction
from app.models.user import User
from app.schemas.payment import (
    CallbackResponse,
    CheckoutResponse,
    ProcessPaymentRequest,
    ProcessPaymentResponse,
    StatusCheckResponse,
    TransactionResponse,
)
from app.services import signer
from app.services.callbacks import process_callback
from app.services.gateway import PAYMENT_METHOD_TYPES, GatewayClient
from app.services.notifier import Notifier
from app.services.purchases import get_purchasable_game, initiate_purchase
from app.services.status_poller import check_status
from app.services.transactions import TransactionStore


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payment", tags=["payment"])

settings = get_settings()


def _http_error(exc: ValidationError) -> HTTPException:
    if isinstance(exc, OrderInProgress):
        return HTTPException(
            status_code=exc.status_code,
            detail={"message": str(exc), "order_id": exc.order_id},
        )
    return HTTPException(status_code=exc.status_code, detail=str(exc))


def _owned_transaction(db: Session, order_id: str, user: User) -> Transaction:
    transaction = TransactionStore(db).find_by_order_id(order_id)
    if not transaction:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Transaction not found",
        )
    if transaction.user_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized access",
        )
    return transaction


@router.get("/buy/{slug}", response_model=CheckoutResponse)
def checkout(
    slug: str,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
) -> CheckoutResponse:
    already_owned = False
    try:
        game = get_purchasable_game(db, current_user, slug)
    except AlreadyOwned:
        already_owned = True
        game = get_purchasable_game(db, None, slug)
    except ValidationError as exc:
        raise _http_error(exc)

    return CheckoutResponse(
        game_id=game.id,
        slug=game.slug,
        title=game.title,
        price=game.price,
        currency=settings.DOKU_CURRENCY,
        already_owned=already_owned,
        payment_methods=list(PAYMENT_METHOD_TYPES.keys()),
    )


@router.post("/process", response_model=ProcessPaymentResponse)
def process_payment(
    payload: ProcessPaymentRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    gateway: Annotated[GatewayClient, Depends(get_gateway_client)],
) -> ProcessPaymentResponse:
    try:
        transaction = initiate_purchase(
            db,
            gateway,
            current_user,
            payload.game_slug,
            payload.payment_method,
            settings,
        )
    except ValidationError as exc:
        raise _http_error(exc)
    except GatewayError as exc:
        logger.error("order creation failed for user %s: %s", current_user.id, exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "Failed to process payment", "message": str(exc)},
        )
    except PersistenceConflict as exc:
        logger.error("order could not be stored for user %s: %s", current_user.id, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to process payment"},
        )

    return ProcessPaymentResponse(
        order_id=transaction.order_id,
        redirect_url=f"/payment/{transaction.order_id}/invoice",
    )


@router.get("/history", response_model=List[TransactionResponse])
def history(
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
) -> List[Transaction]:
    return TransactionStore(db).list_for_user(current_user.id)


def _authenticate_callback(request: Request, raw_body: bytes) -> None:
    allowed_ips = settings.callback_allowed_ips
    if allowed_ips:
        host = request.client.host if request.client else None
        if host not in allowed_ips:
            logger.warning("callback from disallowed address %s", host)
            raise CallbackError("Forbidden", status_code=status.HTTP_403_FORBIDDEN)

    if not settings.DOKU_VERIFY_CALLBACK_SIGNATURE:
        return

    headers = request.headers
    client_id = headers.get("Client-Id")
    if not client_id or client_id != settings.DOKU_CLIENT_ID:
        raise CallbackError("Invalid client id", status_code=status.HTTP_403_FORBIDDEN)
    valid = signer.verify(
        headers.get("Signature", ""),
        client_id,
        headers.get("Request-Id", ""),
        headers.get("Request-Timestamp", ""),
        request.url.path,
        signer.digest(raw_body),
        settings.DOKU_SECRET_KEY or "",
    )
    if not valid:
        logger.warning("callback with invalid signature, request_id=%s", headers.get("Request-Id"))
        raise CallbackError("Invalid signature", status_code=status.HTTP_403_FORBIDDEN)


@router.post("/callback", response_model=CallbackResponse)
def callback(
    request: Request,
    raw_body: Annotated[bytes, Depends(get_raw_body)],
    db: Annotated[Session, Depends(get_db)],
    notifier: Annotated[Notifier, Depends(get_notifier)],
) -> CallbackResponse:
    try:
        _authenticate_callback(request, raw_body)
        try:
            payload = json.loads(raw_body)
        except ValueError:
            raise CallbackError("Invalid callback data")
        outcome = process_callback(db, payload, notifier)
    except CallbackError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc))

    logger.info(
        "callback handled order=%s status=%s applied=%s notified=%s",
        outcome.order_id,
        outcome.gateway_status,
        outcome.applied,
        outcome.notified,
    )
    return CallbackResponse(success=True)


@router.get("/{order_id}/invoice", response_model=TransactionResponse)
def invoice(
    order_id: str,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
) -> Transaction:
    return _owned_transaction(db, order_id, current_user)


@router.get("/{order_id}/check", response_model=StatusCheckResponse)
def check(
    order_id: str,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    gateway: Annotated[Optional[GatewayClient], Depends(get_optional_gateway_client)],
) -> StatusCheckResponse:
    _owned_transaction(db, order_id, current_user)
    result = check_status(db, gateway, order_id)
    return StatusCheckResponse(status=result.status, source=result.source)
