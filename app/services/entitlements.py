from typing import Optional

from sqlalchemy.orm import Session

from app.models.game import Game
from app.models.user import User
from app.services.transactions import TransactionStore


def can_access(db: Session, user: Optional[User], game: Game) -> bool:
    """
    Whether ``user`` (``None`` for anonymous) may play ``game``.

    Free or unpriced games are open to everyone, the uploader always has
    access, anyone else needs at least one successful transaction. Call it
    at the moment of access: a purchase may have completed since the last
    check.
    """
    if game.is_free:
        return True
    if user is None:
        return False
    if user.id == game.user_id:
        return True
    return TransactionStore(db).has_purchased(user.id, game.id)
