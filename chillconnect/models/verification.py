"""Identity verification requests and the staff work queue (round-robin assignments)."""
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from chillconnect.database import Base
import enum


class VerificationStatus(str, enum.Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class AssignmentType(str, enum.Enum):
    VERIFICATION = "VERIFICATION"
    BOOKING_MONITORING = "BOOKING_MONITORING"
    DISPUTE = "DISPUTE"
    SUPPORT_TICKET = "SUPPORT_TICKET"


class Verification(Base):
    __tablename__ = "verifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(SQLEnum(VerificationStatus), nullable=False, default=VerificationStatus.PENDING, index=True)
    document_url = Column(String(500), nullable=True)
    notes = Column(Text, nullable=True)

    employee_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", foreign_keys=[user_id])
    employee = relationship("User", foreign_keys=[employee_id])


class Assignment(Base):
    __tablename__ = "assignments"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    item_id = Column(Integer, nullable=False)
    item_type = Column(SQLEnum(AssignmentType), nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class RoundRobinCounter(Base):
    """Last employee picked per queue; the next pick is the following staff member in creation order."""
    __tablename__ = "round_robin_counters"

    id = Column(Integer, primary_key=True, index=True)
    type = Column(SQLEnum(AssignmentType), unique=True, nullable=False)
    last_assigned_id = Column(Integer, nullable=True)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
