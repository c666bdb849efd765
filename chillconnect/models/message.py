"""Chat messages scoped to a booking."""
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from chillconnect.database import Base


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=True)  # null for system messages
    content = Column(Text, nullable=False)
    media_url = Column(String(500), nullable=True)
    is_system = Column(Boolean, nullable=False, default=False)

    # Moderation
    is_flagged = Column(Boolean, nullable=False, default=False, index=True)
    flag_reason = Column(String(255), nullable=True)
    risk_score = Column(Integer, nullable=False, default=0)
    reported_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    sender = relationship("User", foreign_keys=[sender_id])
