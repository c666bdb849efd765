"""Booking schemas."""
from datetime import datetime
from pydantic import BaseModel, Field, model_validator
from chillconnect.models.booking import BookingStatus, BookingType, EscrowStatus


class BookingCreate(BaseModel):
    provider_id: int
    type: BookingType
    start_time: datetime
    duration: int = Field(gt=0, le=24 * 60)  # minutes
    location: str | None = Field(default=None, max_length=255)
    notes: str | None = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def outcall_needs_location(self):
        if self.type == BookingType.OUTCALL and not (self.location or "").strip():
            raise ValueError("Location is required for outcall bookings")
        return self


class BookingStatusUpdate(BaseModel):
    status: BookingStatus
    reason: str | None = Field(default=None, max_length=500)


class Party(BaseModel):
    id: int
    name: str
    email: str | None = None


class BookingResponse(BaseModel):
    id: int
    seeker_id: int
    provider_id: int
    type: BookingType
    start_time: datetime
    end_time: datetime
    duration: int
    token_amount: int
    location: str | None = None
    notes: str | None = None
    status: BookingStatus
    escrow_status: EscrowStatus
    assigned_employee_id: int | None = None
    cancellation_reason: str | None = None
    cancelled_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None
    seeker: Party | None = None
    provider: Party | None = None

    class Config:
        from_attributes = True


class BookingList(BaseModel):
    bookings: list[BookingResponse]
    total: int
    page: int
    limit: int
