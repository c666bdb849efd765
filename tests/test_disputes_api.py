from datetime import datetime, timedelta, timezone

import pytest
from conftest import auth_headers, future

from chillconnect.models.booking import Booking, BookingStatus, EscrowStatus
from chillconnect.models.dispute import Dispute, DisputeStatus, DisputeType
from chillconnect.models.user import UserRole
from chillconnect.services import ledger
from chillconnect.services.disputes import DisputeError, appeal_dispute, file_dispute, resolve_dispute

DESCRIPTION = "Provider did not show up at the agreed time and stopped replying."


@pytest.fixture()
def booked(client, make_user):
    """A PENDING booking worth 40 tokens, plus one employee to take disputes."""
    employee = make_user(UserRole.EMPLOYEE)
    seeker = make_user(UserRole.SEEKER, balance=100)
    provider = make_user(UserRole.PROVIDER, hourly_rate=40)
    r = client.post(
        "/bookings",
        json={"provider_id": provider.id, "type": "INCALL", "start_time": future(), "duration": 60},
        headers=auth_headers(seeker),
    )
    assert r.status_code == 201
    return seeker, provider, employee, r.json()["id"]


def _file(client, user, booking_id, **extra):
    body = {"booking_id": booking_id, "dispute_type": "NO_SHOW", "description": DESCRIPTION}
    body.update(extra)
    return client.post("/disputes", json=body, headers=auth_headers(user))


def _resolve(client, user, dispute_id, refund):
    return client.put(
        f"/disputes/{dispute_id}/resolve",
        json={"resolution": "Partial refund after reviewing the chat history.", "refund_amount": refund},
        headers=auth_headers(user),
    )


def _balances(db, user):
    db.expire_all()
    wallet = ledger.get_wallet(db, user.id)
    return wallet.balance, wallet.escrow_balance


def test_filing_freezes_booking(client, db, booked):
    seeker, provider, employee, booking_id = booked
    r = _file(client, seeker, booking_id, evidence=["https://files.example.com/screenshot.png"])
    assert r.status_code == 201
    body = r.json()
    assert body["reported_against"] == provider.id
    assert body["assigned_to"] == employee.id
    assert body["status"] == "OPEN"

    db.expire_all()
    assert db.get(Booking, booking_id).status == BookingStatus.DISPUTED
    # frozen: no status changes, no second dispute
    r = client.put(f"/bookings/{booking_id}/status", json={"status": "CANCELLED"}, headers=auth_headers(seeker))
    assert r.status_code == 400
    assert _file(client, provider, booking_id).status_code == 400


def test_filing_rules(client, make_user, booked):
    seeker, provider, _, booking_id = booked
    outsider = make_user(UserRole.SEEKER)
    assert _file(client, outsider, booking_id).status_code == 403
    assert _file(client, seeker, booking_id, description="too short").status_code == 422
    assert _file(client, seeker, 999).status_code == 404

    client.put(f"/bookings/{booking_id}/status", json={"status": "CANCELLED"}, headers=auth_headers(seeker))
    r = _file(client, seeker, booking_id)
    assert r.status_code == 400
    assert "settled" in r.json()["detail"]


def test_resolution_splits_escrow(client, db, booked):
    seeker, provider, employee, booking_id = booked
    dispute_id = _file(client, seeker, booking_id).json()["id"]

    assert _resolve(client, seeker, dispute_id, 10).status_code == 403
    assert _resolve(client, employee, dispute_id, 41).status_code == 400

    r = _resolve(client, employee, dispute_id, 15)
    assert r.status_code == 200
    assert r.json()["status"] == "RESOLVED"
    assert r.json()["refund_issued"] is True
    assert r.json()["refund_amount"] == 15

    assert _balances(db, seeker) == (75, 0)
    assert _balances(db, provider) == (25, 0)
    booking = db.get(Booking, booking_id)
    assert booking.status == BookingStatus.COMPLETED
    assert booking.escrow_status == EscrowStatus.SPLIT
    assert ledger.reconcile_wallet(db, seeker.id) == []
    assert ledger.reconcile_wallet(db, provider.id) == []


def test_full_refund_cancels_booking(client, db, make_user, booked):
    seeker, _, _, booking_id = booked
    manager = make_user(UserRole.MANAGER)
    dispute_id = _file(client, seeker, booking_id).json()["id"]

    r = _resolve(client, manager, dispute_id, 40)
    assert r.status_code == 200
    db.expire_all()
    booking = db.get(Booking, booking_id)
    assert booking.status == BookingStatus.CANCELLED
    assert booking.escrow_status == EscrowStatus.REFUNDED
    assert _balances(db, seeker) == (100, 0)


def test_unassigned_employee_cannot_resolve(client, make_user, booked):
    seeker, _, _, booking_id = booked
    other_employee = make_user(UserRole.EMPLOYEE)
    dispute_id = _file(client, seeker, booking_id).json()["id"]
    assert _resolve(client, other_employee, dispute_id, 0).status_code == 403


def test_manager_reassigns(client, make_user, booked):
    seeker, _, employee, booking_id = booked
    manager = make_user(UserRole.MANAGER)
    dispute_id = _file(client, seeker, booking_id).json()["id"]

    assert client.put(f"/disputes/{dispute_id}/assign", json={"employee_id": manager.id}, headers=auth_headers(employee)).status_code == 403
    r = client.put(f"/disputes/{dispute_id}/assign", json={"employee_id": manager.id}, headers=auth_headers(manager))
    assert r.status_code == 200
    assert r.json()["assigned_to"] == manager.id
    assert r.json()["status"] == "INVESTIGATING"


def test_appeal_once_and_no_token_movement(client, db, booked):
    seeker, provider, employee, booking_id = booked
    dispute_id = _file(client, seeker, booking_id).json()["id"]
    _resolve(client, employee, dispute_id, 0)

    reason = "The provider was actually absent, please review the messages again."
    r = client.post(f"/disputes/{dispute_id}/appeal", json={"reason": reason}, headers=auth_headers(seeker))
    assert r.status_code == 200
    assert r.json()["status"] == "APPEALED"
    assert client.post(f"/disputes/{dispute_id}/appeal", json={"reason": reason}, headers=auth_headers(seeker)).status_code == 400

    # escrow already released; only the written outcome can change
    assert _resolve(client, employee, dispute_id, 10).status_code == 400
    r = client.put(
        f"/disputes/{dispute_id}/resolve",
        json={"resolution": "Original decision upheld after appeal review."},
        headers=auth_headers(employee),
    )
    assert r.status_code == 200
    assert _balances(db, provider) == (40, 0)


def test_appeal_window_closes(client, db, booked):
    seeker, _, employee, booking_id = booked
    dispute_id = _file(client, seeker, booking_id).json()["id"]
    _resolve(client, employee, dispute_id, 0)

    db.expire_all()
    dispute = db.get(Dispute, dispute_id)
    with pytest.raises(DisputeError):
        appeal_dispute(db, dispute, seeker, "Too late to appeal this one.", now=datetime.now(timezone.utc) + timedelta(days=8))
    assert dispute.status == DisputeStatus.RESOLVED


def test_listing_and_visibility(client, make_user, booked):
    seeker, provider, employee, booking_id = booked
    outsider = make_user(UserRole.SEEKER)
    dispute_id = _file(client, seeker, booking_id).json()["id"]

    assert client.get("/disputes/my", headers=auth_headers(provider)).json()["total"] == 1
    assert client.get(f"/disputes/{dispute_id}", headers=auth_headers(outsider)).status_code == 403
    assert client.get("/disputes", headers=auth_headers(seeker)).status_code == 403
    mine = client.get("/disputes?assigned_to_me=true", headers=auth_headers(employee)).json()
    assert [d["id"] for d in mine["disputes"]] == [dispute_id]
    stats = client.get("/disputes/statistics", headers=auth_headers(employee))
    assert stats.status_code == 200


def test_stale_dispute_is_not_settled_twice(client, db, booked):
    seeker, provider, employee, booking_id = booked
    dispute_id = _file(client, seeker, booking_id).json()["id"]
    # Loaded before the assigned employee resolves it, as a concurrent request would have it
    stale = db.get(Dispute, dispute_id)
    assert stale.status == DisputeStatus.OPEN

    assert _resolve(client, employee, dispute_id, 10).status_code == 200

    with pytest.raises(DisputeError):
        resolve_dispute(db, stale, employee, "Second decision on the same dispute.", 0)
    db.rollback()
    assert _balances(db, seeker) == (70, 0)
    assert _balances(db, provider) == (30, 0)


def test_stale_booking_cannot_be_disputed_twice(client, db, booked):
    seeker, provider, employee, booking_id = booked
    stale = db.get(Booking, booking_id)
    assert _file(client, seeker, booking_id).status_code == 201

    with pytest.raises(DisputeError):
        file_dispute(db, stale, provider, DisputeType.NO_SHOW, DESCRIPTION)
    db.rollback()
    db.expire_all()
    assert db.query(Dispute).filter(Dispute.booking_id == booking_id).count() == 1
