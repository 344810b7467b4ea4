from typing import Optional

from pydantic import BaseModel


class AccessResponse(BaseModel):
    slug: str
    price_type: Optional[str]
    price: int
    is_purchased: bool


class PlayResponse(BaseModel):
    slug: str
    title: str
    allowed: bool = True
