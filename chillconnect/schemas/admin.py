"""Staff and admin schemas."""
from datetime import datetime
from typing import Any
from pydantic import BaseModel, Field
from chillconnect.models.user import UserRole
from chillconnect.models.verification import AssignmentType, VerificationStatus


class DashboardStats(BaseModel):
    users_by_role: dict[str, int]
    pending_verifications: int
    bookings_by_status: dict[str, int]
    open_disputes: int
    pending_withdrawals: int
    flagged_messages: int
    tokens_in_circulation: int
    tokens_in_escrow: int


class VerificationItem(BaseModel):
    id: int
    user_id: int
    user_email: str
    user_name: str
    role: UserRole
    status: VerificationStatus
    document_url: str | None = None
    notes: str | None = None
    employee_id: int | None = None
    assigned_at: datetime | None = None
    reviewed_at: datetime | None = None
    created_at: datetime | None = None


class VerificationDecision(BaseModel):
    approve: bool
    notes: str | None = Field(default=None, max_length=2000)


class AssignmentResponse(BaseModel):
    id: int
    employee_id: int
    item_id: int
    item_type: AssignmentType
    is_active: bool
    completed_at: datetime | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class ReassignRequest(BaseModel):
    employee_id: int


class RoleChange(BaseModel):
    role: UserRole


class SuspendRequest(BaseModel):
    reason: str = Field(min_length=3, max_length=500)


class TokenAdjustment(BaseModel):
    amount: int  # positive credits, negative debits
    reason: str = Field(min_length=3, max_length=500)


class AdminUser(BaseModel):
    id: int
    email: str
    phone: str | None = None
    role: UserRole
    name: str
    is_verified: bool
    email_verified: bool
    is_suspended: bool
    suspension_reason: str | None = None
    balance: int = 0
    escrow_balance: int = 0
    last_login_at: datetime | None = None
    created_at: datetime | None = None


class AdminUserList(BaseModel):
    users: list[AdminUser]
    total: int
    page: int
    limit: int


class AuditLogResponse(BaseModel):
    id: int
    category: str
    title: str
    message: str
    booking_id: int | None = None
    target_user_id: int | None = None
    meta: dict[str, Any] | None = None
    actor_user_id: int | None = None
    actor_email: str | None = None
    ip_address: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True
