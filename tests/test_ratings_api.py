from datetime import datetime, timedelta, timezone

from conftest import auth_headers

from chillconnect.models.booking import Booking, BookingStatus, BookingType
from chillconnect.models.user import UserProfile, UserRole
from chillconnect.services import ledger


def _booking(db, seeker, provider, status=BookingStatus.COMPLETED):
    start = datetime.now(timezone.utc) - timedelta(days=2)
    booking = Booking(
        seeker_id=seeker.id, provider_id=provider.id, type=BookingType.INCALL,
        start_time=start, end_time=start + timedelta(hours=1), duration=60, token_amount=10,
    )
    db.add(booking)
    db.flush()
    ledger.hold_for_booking(db, booking)
    if status == BookingStatus.COMPLETED:
        ledger.release_to_provider(db, booking)
    booking.status = status
    db.commit()
    return booking


def _rate(client, seeker, booking, stars, **extra):
    body = {"booking_id": booking.id, "rating": stars, "review": "Lovely evening"}
    body.update(extra)
    return client.post("/ratings", json=body, headers=auth_headers(seeker))


def test_rating_updates_provider_aggregates(client, db, make_user):
    provider = make_user(UserRole.PROVIDER, hourly_rate=10)
    first = make_user(UserRole.SEEKER, balance=50)
    second = make_user(UserRole.SEEKER, balance=50)

    assert _rate(client, first, _booking(db, first, provider), 5).status_code == 201
    assert _rate(client, second, _booking(db, second, provider), 2).status_code == 201

    db.expire_all()
    profile = db.query(UserProfile).filter(UserProfile.user_id == provider.id).one()
    assert profile.total_ratings == 2
    assert profile.average_rating == 3.5
    assert profile.rating_breakdown == {"1": 0, "2": 1, "3": 0, "4": 0, "5": 1}

    listing = client.get(f"/ratings/provider/{provider.id}", headers=auth_headers(first)).json()
    assert listing["average_rating"] == 3.5
    assert len(listing["ratings"]) == 2


def test_only_completed_own_booking_once(client, db, make_user):
    provider = make_user(UserRole.PROVIDER, hourly_rate=10)
    seeker = make_user(UserRole.SEEKER, balance=50)
    other = make_user(UserRole.SEEKER)
    pending = _booking(db, seeker, provider, status=BookingStatus.PENDING)
    done = _booking(db, seeker, provider)

    assert _rate(client, seeker, pending, 4).status_code == 400
    assert _rate(client, other, done, 4).status_code == 403
    assert _rate(client, provider, done, 4).status_code == 403
    assert _rate(client, seeker, done, 6).status_code == 422
    assert _rate(client, seeker, done, 4).status_code == 201
    assert _rate(client, seeker, done, 3).status_code == 400


def test_anonymous_rating_hides_seeker(client, db, make_user):
    provider = make_user(UserRole.PROVIDER, hourly_rate=10)
    seeker = make_user(UserRole.SEEKER, balance=50)
    admin = make_user(UserRole.ADMIN)
    booking = _booking(db, seeker, provider)
    rating_id = _rate(client, seeker, booking, 4, anonymous=True).json()["id"]

    seen_by_provider = client.get("/ratings/received", headers=auth_headers(provider)).json()[0]
    assert seen_by_provider["seeker_id"] is None
    assert seen_by_provider["seeker_name"] == "Anonymous"
    seen_by_author = client.get("/ratings/my", headers=auth_headers(seeker)).json()[0]
    assert seen_by_author["seeker_id"] == seeker.id
    seen_by_admin = client.get(f"/ratings/provider/{provider.id}", headers=auth_headers(admin)).json()["ratings"][0]
    assert seen_by_admin["id"] == rating_id
    assert seen_by_admin["seeker_id"] == seeker.id


def test_provider_response_and_delete(client, db, make_user):
    provider = make_user(UserRole.PROVIDER, hourly_rate=10)
    other_provider = make_user(UserRole.PROVIDER, hourly_rate=10)
    seeker = make_user(UserRole.SEEKER, balance=50)
    rating_id = _rate(client, seeker, _booking(db, seeker, provider), 1).json()["id"]

    body = {"response": "Sorry to hear that, thanks for the feedback."}
    assert client.put(f"/ratings/{rating_id}/response", json=body, headers=auth_headers(other_provider)).status_code == 403
    r = client.put(f"/ratings/{rating_id}/response", json=body, headers=auth_headers(provider))
    assert r.status_code == 200
    assert r.json()["provider_response"] == body["response"]

    assert client.delete(f"/ratings/{rating_id}", headers=auth_headers(provider)).status_code == 403
    assert client.delete(f"/ratings/{rating_id}", headers=auth_headers(seeker)).status_code == 200
    db.expire_all()
    profile = db.query(UserProfile).filter(UserProfile.user_id == provider.id).one()
    assert (profile.total_ratings, profile.average_rating) == (0, 0.0)
