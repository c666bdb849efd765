"""Disputes raised by a booking participant and worked by staff."""
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from chillconnect.database import Base, JSONType
import enum


class DisputeType(str, enum.Enum):
    NO_SHOW = "NO_SHOW"
    SERVICE_QUALITY = "SERVICE_QUALITY"
    PAYMENT_ISSUE = "PAYMENT_ISSUE"
    BEHAVIOR_ISSUE = "BEHAVIOR_ISSUE"
    TERMS_VIOLATION = "TERMS_VIOLATION"
    OTHER = "OTHER"


class DisputeStatus(str, enum.Enum):
    OPEN = "OPEN"
    INVESTIGATING = "INVESTIGATING"
    RESOLVED = "RESOLVED"
    APPEALED = "APPEALED"
    CLOSED = "CLOSED"


OPEN_DISPUTE_STATUSES = (DisputeStatus.OPEN, DisputeStatus.INVESTIGATING)


class Dispute(Base):
    __tablename__ = "disputes"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    reported_by = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    reported_against = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    dispute_type = Column(SQLEnum(DisputeType), nullable=False)
    description = Column(Text, nullable=False)
    evidence = Column(JSONType, nullable=True)  # list of URLs
    status = Column(SQLEnum(DisputeStatus), nullable=False, default=DisputeStatus.OPEN, index=True)

    assigned_to = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    resolution = Column(Text, nullable=True)
    refund_issued = Column(Boolean, nullable=False, default=False)
    refund_amount = Column(Integer, nullable=True)
    action_taken = Column(String(500), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    appeal_reason = Column(Text, nullable=True)
    appealed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    booking = relationship("Booking")
