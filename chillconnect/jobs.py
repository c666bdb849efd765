"""Scheduled maintenance: expire unconfirmed bookings, prune old one-time codes."""
import logging
from datetime import datetime, timezone

from chillconnect.database import SessionLocal
from chillconnect.services.bookings import expire_stale_bookings
from chillconnect.services.ledger import LedgerError
from chillconnect.services.otp import prune_otps

logger = logging.getLogger(__name__)


def run_booking_expiry_job(now: datetime | None = None) -> list[int]:
    """Cancel PENDING bookings whose start time passed, refunding escrow. Returns the cancelled booking ids."""
    db = SessionLocal()
    try:
        expired = expire_stale_bookings(db, now or datetime.now(timezone.utc))
        db.commit()
        if expired:
            logger.info("Booking expiry job cancelled %s booking(s): %s", len(expired), expired)
        return expired
    except LedgerError:
        db.rollback()
        logger.exception("Booking expiry job failed; run scripts/reconcile_wallets.py")
        return []
    finally:
        db.close()


def run_otp_prune_job() -> int:
    db = SessionLocal()
    try:
        deleted = prune_otps(db)
        db.commit()
        if deleted:
            logger.info("Pruned %s old OTP row(s)", deleted)
        return deleted
    finally:
        db.close()


def run_maintenance_jobs() -> None:
    """Scheduler entry point."""
    run_booking_expiry_job()
    run_otp_prune_job()
