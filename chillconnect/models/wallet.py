"""Token wallet (1:1 per user) and the append-only transaction ledger."""
from sqlalchemy import Column, Integer, String, Enum as SQLEnum, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from chillconnect.database import Base, JSONType
import enum


class TransactionType(str, enum.Enum):
    PURCHASE = "PURCHASE"
    ESCROW_HOLD = "ESCROW_HOLD"
    ESCROW_RELEASE = "ESCROW_RELEASE"
    BOOKING_REFUND = "BOOKING_REFUND"
    WITHDRAWAL = "WITHDRAWAL"
    WITHDRAWAL_REFUND = "WITHDRAWAL_REFUND"
    ADJUSTMENT = "ADJUSTMENT"


class TransactionStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class TokenWallet(Base):
    __tablename__ = "token_wallets"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
        CheckConstraint("escrow_balance >= 0", name="ck_wallet_escrow_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)

    balance = Column(Integer, nullable=False, default=0)
    # Tokens held for the seeker's open bookings; equals the sum of their HELD booking amounts
    escrow_balance = Column(Integer, nullable=False, default=0)
    total_earned = Column(Integer, nullable=False, default=0)
    total_spent = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="wallet")


class TokenTransaction(Base):
    """One ledger row per balance change. Never updated except PENDING purchase -> COMPLETED/FAILED."""
    __tablename__ = "token_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    wallet_id = Column(Integer, ForeignKey("token_wallets.id"), nullable=False)

    type = Column(SQLEnum(TransactionType), nullable=False, index=True)
    status = Column(SQLEnum(TransactionStatus), nullable=False, default=TransactionStatus.COMPLETED)
    amount = Column(Integer, nullable=False)
    previous_balance = Column(Integer, nullable=False)
    new_balance = Column(Integer, nullable=False)
    description = Column(String(500), nullable=True)

    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True, index=True)
    withdrawal_id = Column(Integer, ForeignKey("withdrawal_requests.id"), nullable=True)
    # PayPal order id for purchases; unique so a capture can only credit once
    payment_reference = Column(String(64), unique=True, nullable=True, index=True)
    meta = Column(JSONType, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
