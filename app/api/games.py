from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.api.deps import get_optional_user
from app.core.database import get_db
from app.models.game import Game
from app.models.user import User
from app.schemas.game import AccessResponse, PlayResponse
from app.services.catalog import find_by_slug
from app.services.entitlements import can_access


router = APIRouter(prefix="/games", tags=["games"])


def _get_game(db: Session, slug: str) -> Game:
    game = find_by_slug(db, slug)
    if not game:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Game not found",
        )
    return game


@router.get("/{slug}/access", response_model=AccessResponse)
def get_access(
    slug: str,
    current_user: Annotated[Optional[User], Depends(get_optional_user)],
    db: Annotated[Session, Depends(get_db)],
) -> AccessResponse:
    game = _get_game(db, slug)
    return AccessResponse(
        slug=game.slug,
        price_type=game.price_type,
        price=game.price or 0,
        is_purchased=can_access(db, current_user, game),
    )


@router.post("/{slug}/play", response_model=PlayResponse)
def play(
    slug: str,
    current_user: Annotated[Optional[User], Depends(get_optional_user)],
    db: Annotated[Session, Depends(get_db)],
) -> PlayResponse:
    """
    Gate the play action.

    Access is evaluated here and now, not taken from an earlier check.
    """
    game = _get_game(db, slug)
    if not can_access(db, current_user, game):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You must purchase this game to play it.",
        )
    return PlayResponse(slug=game.slug, title=game.title)
