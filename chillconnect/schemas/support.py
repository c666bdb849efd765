"""Support ticket schemas."""
from datetime import datetime
from pydantic import BaseModel, Field
from chillconnect.models.support import TicketCategory, TicketPriority, TicketStatus


class TicketCreate(BaseModel):
    subject: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=5000)
    category: TicketCategory
    priority: TicketPriority = TicketPriority.MEDIUM
    booking_id: int | None = None
    attachments: list[str] = Field(default_factory=list, max_length=10)


class TicketReply(BaseModel):
    message: str = Field(min_length=1, max_length=5000)
    attachments: list[str] = Field(default_factory=list, max_length=10)
    internal: bool = False


class TicketAssign(BaseModel):
    employee_id: int


class TicketResolve(BaseModel):
    resolution: str = Field(min_length=1, max_length=2000)


class TicketMessageResponse(BaseModel):
    id: int
    ticket_id: int
    sender_id: int
    message: str
    attachments: list[str] | None = None
    is_staff: bool
    is_internal: bool
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class TicketResponse(BaseModel):
    id: int
    ticket_number: str
    user_id: int
    booking_id: int | None = None
    subject: str
    description: str
    category: TicketCategory
    priority: TicketPriority
    status: TicketStatus
    attachments: list[str] | None = None
    assigned_to: int | None = None
    assigned_at: datetime | None = None
    resolution: str | None = None
    resolved_at: datetime | None = None
    closed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class TicketDetail(TicketResponse):
    messages: list[TicketMessageResponse] = []


class TicketList(BaseModel):
    tickets: list[TicketResponse]
    total: int
    page: int
    limit: int


class TicketStatistics(BaseModel):
    total: int
    by_status: dict[str, int]
    by_category: dict[str, int]
    by_priority: dict[str, int]
    avg_first_response_hours: float | None = None
