from datetime import datetime, timezone
from decimal import Decimal

from chillconnect.models.booking import BookingStatus
from chillconnect.services.audit_log import CATEGORY_ACCOUNT, CATEGORY_WALLET, create_log


def test_entry_is_clipped_and_meta_made_json_safe(db):
    when = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    entry = create_log(
        db,
        CATEGORY_WALLET,
        "  " + "T" * 300,
        "   ",
        actor_email="   ",
        user_agent="A" * 600,
        meta={"status": BookingStatus.CONFIRMED, "at": when, "fee": Decimal("12.50"), "ids": (1, 2), 7: None},
    )
    db.commit()
    db.refresh(entry)

    assert entry.id is not None
    assert entry.title == "T" * 255
    assert entry.message == "-"
    assert entry.actor_email is None
    assert len(entry.user_agent) == 500
    assert entry.meta == {"status": "CONFIRMED", "at": when.isoformat(), "fee": "12.50", "ids": [1, 2], "7": None}


def test_unknown_category_filed_under_account(db):
    entry = create_log(db, "misc", "Manual note", "Checked the payout by hand.")
    assert entry.category == CATEGORY_ACCOUNT
    assert entry.meta is None
