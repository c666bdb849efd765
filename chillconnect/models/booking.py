"""Bookings between a seeker and a provider, paid from escrow."""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Enum as SQLEnum, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from chillconnect.database import Base
import enum


class BookingType(str, enum.Enum):
    INCALL = "INCALL"
    OUTCALL = "OUTCALL"


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    DISPUTED = "DISPUTED"


class EscrowStatus(str, enum.Enum):
    HELD = "HELD"
    RELEASED = "RELEASED"
    REFUNDED = "REFUNDED"
    SPLIT = "SPLIT"


# Statuses that occupy the provider's calendar
ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS)
# Statuses in which participants may still chat
CHAT_OPEN_STATUSES = ACTIVE_STATUSES + (BookingStatus.DISPUTED,)


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("token_amount > 0", name="ck_booking_token_amount_positive"),
        CheckConstraint("end_time > start_time", name="ck_booking_window_valid"),
    )

    id = Column(Integer, primary_key=True, index=True)
    seeker_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    provider_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    type = Column(SQLEnum(BookingType), nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    duration = Column(Integer, nullable=False)  # minutes
    token_amount = Column(Integer, nullable=False)
    location = Column(String(255), nullable=True)  # OUTCALL only
    notes = Column(Text, nullable=True)

    status = Column(SQLEnum(BookingStatus), nullable=False, default=BookingStatus.PENDING, index=True)
    escrow_status = Column(SQLEnum(EscrowStatus), nullable=False, default=EscrowStatus.HELD)

    # Staff member monitoring this booking (round-robin)
    assigned_employee_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    cancellation_reason = Column(String(500), nullable=True)
    cancelled_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    seeker = relationship("User", foreign_keys=[seeker_id])
    provider = relationship("User", foreign_keys=[provider_id])
    assigned_employee = relationship("User", foreign_keys=[assigned_employee_id])
