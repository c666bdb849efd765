"""Chat schemas."""
from datetime import datetime
from pydantic import BaseModel, Field
from chillconnect.models.booking import BookingStatus


class MessageCreate(BaseModel):
    content: str = Field(default="", max_length=2000)
    media_url: str | None = Field(default=None, max_length=500)


class SystemMessageCreate(BaseModel):
    content: str = Field(min_length=1, max_length=2000)


class MessageReport(BaseModel):
    reason: str = Field(min_length=3, max_length=255)


class MessageResponse(BaseModel):
    id: int
    booking_id: int
    sender_id: int | None = None
    content: str
    media_url: str | None = None
    is_system: bool
    is_flagged: bool
    flag_reason: str | None = None
    risk_score: int = 0
    is_read: bool = False
    created_at: datetime

    class Config:
        from_attributes = True


class Conversation(BaseModel):
    booking_id: int
    status: BookingStatus
    start_time: datetime
    other_party_id: int
    other_party_name: str
    last_message: MessageResponse | None = None
    unread_count: int = 0
