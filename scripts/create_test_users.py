"""
Create ready-to-use demo accounts (no OTP or staff review required):
a verified seeker with tokens, a verified provider with a rate, and an employee.
Use when email/SMS are not configured so you can log in and try the booking flow.

Run from project root:
  python scripts/create_test_users.py

Credentials are printed at the end.
"""
import os
import sys
from datetime import date

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from chillconnect.database import Base, SessionLocal, engine
from chillconnect import models  # noqa: F401
from chillconnect.models.user import User, UserProfile, UserRole
from chillconnect.models.wallet import TransactionType
from chillconnect.services import ledger
from chillconnect.services.auth import get_password_hash

PASSWORD = "Password123!"
SEEKER_TOKENS = 200

ACCOUNTS = (
    # email, role, first name, last name, hourly rate
    ("seeker@chillconnect.demo", UserRole.SEEKER, "Test", "Seeker", None),
    ("provider@chillconnect.demo", UserRole.PROVIDER, "Test", "Provider", 20),
    ("employee@chillconnect.demo", UserRole.EMPLOYEE, "Test", "Employee", None),
)


def _create(db, email, role, first_name, last_name, hourly_rate):
    user = User(
        email=email,
        hashed_password=get_password_hash(PASSWORD),
        role=role,
        is_verified=True,
        email_verified=True,
        age_verified=True,
        consent_given=True,
    )
    db.add(user)
    db.flush()
    db.add(UserProfile(
        user_id=user.id,
        first_name=first_name,
        last_name=last_name,
        date_of_birth=date(1990, 1, 1),
        hourly_rate=hourly_rate,
        location="Mumbai" if role == UserRole.PROVIDER else None,
        services=["companionship"] if role == UserRole.PROVIDER else None,
        rating_breakdown={str(i): 0 for i in range(1, 6)},
    ))
    ledger.create_wallet(db, user.id)
    if role == UserRole.SEEKER:
        ledger.credit(db, user.id, SEEKER_TOKENS, TransactionType.ADJUSTMENT, "Demo tokens")
    return user


def main():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        for email, role, first_name, last_name, hourly_rate in ACCOUNTS:
            if db.query(User).filter(User.email == email).first():
                print(f"{role.value.title()} already exists: {email}")
                continue
            _create(db, email, role, first_name, last_name, hourly_rate)
            print(f"Created {role.value.lower()}: {email}")
        db.commit()
    except Exception as e:
        db.rollback()
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        db.close()

    print()
    print("Demo credentials (password for all):", PASSWORD)
    for email, role, *_ in ACCOUNTS:
        print(f"  {role.value:<9} {email}")
    print(f"The seeker starts with {SEEKER_TOKENS} tokens.")


if __name__ == "__main__":
    main()
