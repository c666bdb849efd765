"""
All SQLAlchemy models. Schema is the source of truth for new DBs.
Base.metadata.create_all() creates every table; no migration scripts needed for fresh installs.
"""
from chillconnect.models.user import User, UserProfile, UserRole
from chillconnect.models.wallet import TokenWallet, TokenTransaction
from chillconnect.models.booking import Booking
from chillconnect.models.otp import OTP
from chillconnect.models.message import Message
from chillconnect.models.verification import Verification, Assignment, RoundRobinCounter
from chillconnect.models.dispute import Dispute
from chillconnect.models.rating import Rating
from chillconnect.models.withdrawal import PaymentMethod, WithdrawalRequest
from chillconnect.models.audit_log import AuditLog
from chillconnect.models.support import SupportTicket, TicketMessage

__all__ = [
    "User",
    "UserProfile",
    "UserRole",
    "TokenWallet",
    "TokenTransaction",
    "Booking",
    "OTP",
    "Message",
    "Verification",
    "Assignment",
    "RoundRobinCounter",
    "Dispute",
    "Rating",
    "PaymentMethod",
    "WithdrawalRequest",
    "AuditLog",
    "SupportTicket",
    "TicketMessage",
]
