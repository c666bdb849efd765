"""
Delete users with the given email(s) and their related data (test accounts, GDPR requests).
Refuses users with tokens in escrow or bookings in progress; settle those first.
Usage: python scripts/delete_users_by_email.py <email> [<email> ...]
"""
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from chillconnect.database import SessionLocal
from chillconnect.models.audit_log import AuditLog
from chillconnect.models.booking import Booking, ACTIVE_STATUSES, BookingStatus
from chillconnect.models.dispute import Dispute
from chillconnect.models.message import Message
from chillconnect.models.otp import OTP
from chillconnect.models.rating import Rating
from chillconnect.models.support import SupportTicket, TicketMessage
from chillconnect.models.user import User, UserProfile
from chillconnect.models.verification import Assignment, AssignmentType, Verification
from chillconnect.models.wallet import TokenTransaction, TokenWallet
from chillconnect.models.withdrawal import PaymentMethod, WithdrawalRequest
from chillconnect.services.ledger import held_escrow_total


def _delete_user(db, user: User) -> None:
    uid = user.id
    booking_ids = [
        b for (b,) in db.query(Booking.id).filter((Booking.seeker_id == uid) | (Booking.provider_id == uid)).all()
    ]
    if booking_ids:
        db.query(Message).filter(Message.booking_id.in_(booking_ids)).delete(synchronize_session=False)
        db.query(Rating).filter(Rating.booking_id.in_(booking_ids)).delete(synchronize_session=False)
        db.query(Dispute).filter(Dispute.booking_id.in_(booking_ids)).delete(synchronize_session=False)
        db.query(TokenTransaction).filter(TokenTransaction.booking_id.in_(booking_ids)).update(
            {TokenTransaction.booking_id: None}, synchronize_session=False
        )
        db.query(AuditLog).filter(AuditLog.booking_id.in_(booking_ids)).update(
            {AuditLog.booking_id: None}, synchronize_session=False
        )
        db.query(SupportTicket).filter(SupportTicket.booking_id.in_(booking_ids)).update(
            {SupportTicket.booking_id: None}, synchronize_session=False
        )
        db.query(Booking).filter(Booking.id.in_(booking_ids)).delete(synchronize_session=False)

    db.query(Message).filter((Message.sender_id == uid) | (Message.reported_by_id == uid)).delete(synchronize_session=False)
    ticket_ids = [t for (t,) in db.query(SupportTicket.id).filter(SupportTicket.user_id == uid).all()]
    if ticket_ids:
        db.query(TicketMessage).filter(TicketMessage.ticket_id.in_(ticket_ids)).delete(synchronize_session=False)
        db.query(Assignment).filter(
            Assignment.item_type == AssignmentType.SUPPORT_TICKET, Assignment.item_id.in_(ticket_ids)
        ).delete(synchronize_session=False)
    db.query(TicketMessage).filter(TicketMessage.sender_id == uid).delete(synchronize_session=False)
    db.query(SupportTicket).filter(SupportTicket.user_id == uid).delete(synchronize_session=False)
    db.query(TokenTransaction).filter(TokenTransaction.user_id == uid).delete(synchronize_session=False)
    db.query(WithdrawalRequest).filter(WithdrawalRequest.user_id == uid).delete(synchronize_session=False)
    db.query(PaymentMethod).filter(PaymentMethod.user_id == uid).delete(synchronize_session=False)
    db.query(TokenWallet).filter(TokenWallet.user_id == uid).delete(synchronize_session=False)
    db.query(OTP).filter(OTP.user_id == uid).delete(synchronize_session=False)
    db.query(Verification).filter(Verification.user_id == uid).delete(synchronize_session=False)
    db.query(Assignment).filter(Assignment.employee_id == uid).delete(synchronize_session=False)
    # Staff references on other users' records
    db.query(Verification).filter(Verification.employee_id == uid).update({Verification.employee_id: None}, synchronize_session=False)
    db.query(Booking).filter(Booking.assigned_employee_id == uid).update({Booking.assigned_employee_id: None}, synchronize_session=False)
    db.query(Booking).filter(Booking.cancelled_by_id == uid).update({Booking.cancelled_by_id: None}, synchronize_session=False)
    db.query(Dispute).filter(Dispute.assigned_to == uid).update({Dispute.assigned_to: None}, synchronize_session=False)
    db.query(SupportTicket).filter(SupportTicket.assigned_to == uid).update({SupportTicket.assigned_to: None}, synchronize_session=False)
    db.query(WithdrawalRequest).filter(WithdrawalRequest.processed_by == uid).update(
        {WithdrawalRequest.processed_by: None}, synchronize_session=False
    )
    db.query(UserProfile).filter(UserProfile.user_id == uid).delete(synchronize_session=False)
    # Keep audit entries; drop the reference
    db.query(AuditLog).filter(AuditLog.target_user_id == uid).update({AuditLog.target_user_id: None}, synchronize_session=False)
    db.query(AuditLog).filter(AuditLog.actor_user_id == uid).update({AuditLog.actor_user_id: None}, synchronize_session=False)
    db.delete(user)


def main():
    emails = [a.strip().lower() for a in sys.argv[1:] if a.strip()]
    if not emails:
        print("Usage: python scripts/delete_users_by_email.py <email> [<email> ...]")
        sys.exit(1)

    db = SessionLocal()
    deleted = 0
    try:
        for email in emails:
            user = db.query(User).filter(User.email == email).first()
            if not user:
                print(f"No user found with email: {email}")
                continue
            busy = db.query(Booking.id).filter(
                (Booking.seeker_id == user.id) | (Booking.provider_id == user.id),
                Booking.status.in_(ACTIVE_STATUSES + (BookingStatus.DISPUTED,)),
            ).first()
            if busy or held_escrow_total(db, user.id):
                print(f"Skipped {email}: bookings in progress or tokens in escrow. Cancel or complete them first.")
                continue
            uid, role = user.id, user.role.value
            _delete_user(db, user)
            deleted += 1
            print(f"Deleted user: {email} (role={role}, id={uid})")
        db.commit()
        print(f"Done. Deleted {deleted} user(s).")
    except Exception as e:
        db.rollback()
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
