"""Wallet, purchase and ledger schemas."""
from datetime import datetime
from typing import Any
from pydantic import BaseModel, Field
from chillconnect.models.wallet import TransactionType, TransactionStatus


class TokenPackage(BaseModel):
    tokens: int
    price_inr: int
    popular: bool = False
    description: str


class PackagesResponse(BaseModel):
    packages: list[TokenPackage]
    token_value_inr: int
    min_purchase: int


class WalletResponse(BaseModel):
    balance: int
    escrow_balance: int
    total_earned: int
    total_spent: int
    token_value_inr: int
    balance_inr: int

    class Config:
        from_attributes = True


class PurchaseRequest(BaseModel):
    token_amount: int = Field(gt=0)


class PurchaseResponse(BaseModel):
    order_id: str
    approval_url: str
    token_amount: int
    amount_inr: int


class CaptureRequest(BaseModel):
    order_id: str = Field(min_length=1, max_length=64)


class CaptureResponse(BaseModel):
    order_id: str
    token_amount: int
    new_balance: int
    already_credited: bool = False


class TransactionResponse(BaseModel):
    id: int
    type: TransactionType
    status: TransactionStatus
    amount: int
    previous_balance: int
    new_balance: int
    description: str | None = None
    booking_id: int | None = None
    withdrawal_id: int | None = None
    payment_reference: str | None = None
    meta: dict[str, Any] | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class TransactionList(BaseModel):
    transactions: list[TransactionResponse]
    total: int
    page: int
    limit: int
