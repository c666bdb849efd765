"""Payment method and withdrawal schemas."""
from datetime import datetime
from typing import Any
from pydantic import BaseModel, Field, model_validator
from chillconnect.models.withdrawal import PaymentMethodType, WithdrawalStatus

# Keys each payout destination must carry in `details`
REQUIRED_DETAILS = {
    PaymentMethodType.UPI: ("upi_id",),
    PaymentMethodType.BANK_TRANSFER: ("account_holder", "account_number", "ifsc"),
    PaymentMethodType.PAYPAL: ("email",),
}


class PaymentMethodCreate(BaseModel):
    type: PaymentMethodType
    label: str | None = Field(default=None, max_length=100)
    details: dict[str, str]
    is_default: bool = False

    @model_validator(mode="after")
    def details_complete(self):
        missing = [k for k in REQUIRED_DETAILS[self.type] if not (self.details.get(k) or "").strip()]
        if missing:
            raise ValueError(f"Missing payment details: {', '.join(missing)}")
        return self


class PaymentMethodUpdate(BaseModel):
    label: str | None = Field(default=None, max_length=100)
    is_default: bool | None = None


class PaymentMethodResponse(BaseModel):
    id: int
    type: PaymentMethodType
    label: str | None = None
    details: dict[str, Any]
    is_default: bool
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class WithdrawalCreate(BaseModel):
    amount_tokens: int = Field(gt=0)
    payment_method_id: int
    notes: str | None = Field(default=None, max_length=500)


class WithdrawalDecision(BaseModel):
    notes: str | None = Field(default=None, max_length=2000)


class WithdrawalReject(BaseModel):
    reason: str = Field(min_length=3, max_length=2000)


class WithdrawalComplete(BaseModel):
    transaction_reference: str = Field(min_length=1, max_length=100)
    notes: str | None = Field(default=None, max_length=2000)


class WithdrawalResponse(BaseModel):
    id: int
    user_id: int
    payment_method_id: int
    amount_tokens: int
    amount_inr: int
    processing_fee: int
    net_amount: int
    status: WithdrawalStatus
    provider_notes: str | None = None
    admin_notes: str | None = None
    rejection_reason: str | None = None
    transaction_reference: str | None = None
    processed_by: int | None = None
    processed_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None
    payment_method: PaymentMethodResponse | None = None

    class Config:
        from_attributes = True


class WithdrawalList(BaseModel):
    withdrawals: list[WithdrawalResponse]
    total: int
    page: int
    limit: int


class WithdrawalStatistics(BaseModel):
    by_status: dict[str, int]
    pending_tokens: int
    completed_tokens: int
    completed_net_inr: int
    total_fees_inr: int
