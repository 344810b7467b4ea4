import logging
import secrets
import time
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.core.config import Settings
from app.core.errors import AlreadyOwned, GameNotFound, OrderInProgress, ValidationError
from app.models.game import Game
from app.models.transaction import Transaction
from app.models.user import User
from app.services.catalog import find_by_slug
from app.services.entitlements import can_access
from app.services.gateway import Customer, GatewayClient, OrderSpec, payment_method_types
from app.services.transactions import NewTransaction, TransactionStore


logger = logging.getLogger(__name__)


def generate_order_id(user_id: int) -> str:
    return f"ORDER-{int(time.time() * 1000)}-{user_id}-{secrets.token_hex(2).upper()}"


def get_purchasable_game(db: Session, user: Optional[User], game_ref: str) -> Game:
    """Resolve ``game_ref`` and make sure ``user`` still needs to buy it."""
    game = find_by_slug(db, game_ref)
    if not game:
        raise GameNotFound("Game not found")
    if game.is_free or not game.price or game.price <= 0:
        raise ValidationError("This game is free to play")
    if user is not None and can_access(db, user, game):
        raise AlreadyOwned("You already own this game")
    return game


def build_order_spec(
    order_id: str,
    game: Game,
    user: User,
    payment_method: Optional[str],
    settings: Settings,
) -> OrderSpec:
    return OrderSpec(
        invoice_number=order_id,
        amount=int(game.price),
        currency=settings.DOKU_CURRENCY,
        payment_due_minutes=settings.DOKU_PAYMENT_DUE_MINUTES,
        method_group=payment_method,
        payment_method_types=list(payment_method_types(payment_method)),
        customer=Customer(
            id=str(user.id),
            name=user.name,
            email=user.email,
            phone=user.phone or settings.DOKU_DEFAULT_PHONE,
            country=settings.DOKU_CUSTOMER_COUNTRY,
        ),
    )


def initiate_purchase(
    db: Session,
    gateway: GatewayClient,
    user: User,
    game_ref: str,
    payment_method: Optional[str],
    settings: Settings,
) -> Transaction:
    """
    Create the order at the gateway, then persist it as ``waiting``.

    Nothing is stored when the gateway call fails; ``GatewayError``
    propagates to the caller.
    """
    game = get_purchasable_game(db, user, game_ref)
    store = TransactionStore(db, expiry=timedelta(hours=settings.ORDER_EXPIRY_HOURS))

    if not settings.ALLOW_CONCURRENT_ORDERS:
        outstanding = store.find_outstanding(user.id, game.id)
        if outstanding:
            raise OrderInProgress("A payment for this game is already in progress", outstanding.order_id)

    method = payment_method.upper() if payment_method else None
    order_id = generate_order_id(user.id)
    spec = build_order_spec(order_id, game, user, method, settings)

    logger.info(
        "creating order %s user_id=%s game_id=%s amount=%s method=%s",
        order_id,
        user.id,
        game.id,
        spec.amount,
        method,
    )
    result = gateway.create_order(spec)

    return store.create(
        NewTransaction(
            order_id=order_id,
            invoice_number=result.invoice_number,
            user_id=user.id,
            game_id=game.id,
            amount=spec.amount,
            payment_method=method,
            payment_channel=method,
            payment_url=result.payment_url,
            payment_code=result.payment_code,
            qr_code_url=result.qr_payload,
        )
    )
