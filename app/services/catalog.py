from typing import Optional

from sqlalchemy.orm import Session

from app.models.game import Game


def find_by_slug(db: Session, slug: str) -> Optional[Game]:
    return db.query(Game).filter(Game.slug == slug).first()
