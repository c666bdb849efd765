"""Dispute schemas."""
from datetime import datetime
from pydantic import BaseModel, Field
from chillconnect.models.dispute import DisputeStatus, DisputeType


class DisputeCreate(BaseModel):
    booking_id: int
    dispute_type: DisputeType
    description: str = Field(min_length=20, max_length=2000)
    evidence: list[str] = Field(default_factory=list, max_length=10)


class DisputeAssign(BaseModel):
    employee_id: int


class DisputeResolve(BaseModel):
    resolution: str = Field(min_length=10, max_length=2000)
    refund_amount: int = Field(default=0, ge=0)
    action_taken: str | None = Field(default=None, max_length=500)


class DisputeAppeal(BaseModel):
    reason: str = Field(min_length=20, max_length=2000)


class DisputeResponse(BaseModel):
    id: int
    booking_id: int
    reported_by: int
    reported_against: int
    dispute_type: DisputeType
    description: str
    evidence: list[str] | None = None
    status: DisputeStatus
    assigned_to: int | None = None
    resolution: str | None = None
    refund_issued: bool = False
    refund_amount: int | None = None
    action_taken: str | None = None
    resolved_at: datetime | None = None
    appeal_reason: str | None = None
    appealed_at: datetime | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class DisputeList(BaseModel):
    disputes: list[DisputeResponse]
    total: int
    page: int
    limit: int
