from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from app.core.database import Base


PRICE_FREE = "free"
PRICE_PAID = "paid"


class Game(Base):
    __tablename__ = "games"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(255), unique=True, index=True, nullable=False)
    title = Column(String(255), nullable=False)
    price_type = Column(String(10), nullable=True, default=PRICE_FREE)
    price = Column(Integer, nullable=False, default=0)  # minor units
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    owner = relationship("User", back_populates="games")

    @property
    def is_free(self) -> bool:
        return not self.price_type or self.price_type == PRICE_FREE
