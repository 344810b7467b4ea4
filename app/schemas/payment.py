from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class CheckoutResponse(BaseModel):
    game_id: int
    slug: str
    title: str
    price: int
    currency: str
    already_owned: bool = False
    payment_methods: list[str]


class ProcessPaymentRequest(BaseModel):
    game_slug: str = Field(..., description="Slug or id of the game to buy")
    payment_method: Optional[str] = Field(None, description="QRIS, VIRTUAL_ACCOUNT, EWALLET, RETAIL or empty for any")


class ProcessPaymentResponse(BaseModel):
    success: bool = True
    order_id: str
    redirect_url: str


class TransactionResponse(BaseModel):
    order_id: str
    invoice_number: str
    game_id: int
    amount: int
    payment_method: Optional[str]
    payment_channel: Optional[str]
    status: str
    payment_url: Optional[str]
    payment_code: Optional[str]
    qr_code_url: Optional[str]
    expired_at: datetime
    paid_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class StatusCheckResponse(BaseModel):
    status: str
    source: str


class CallbackResponse(BaseModel):
    success: bool = True
