"""
Set a new password for an account (support / locked-out staff).
Usage: python scripts/reset_password.py <email> <new_password>
"""
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from chillconnect.database import SessionLocal
from chillconnect.models.user import User
from chillconnect.services.audit_log import create_log, CATEGORY_ACCOUNT
from chillconnect.services.auth import get_password_hash


def main():
    if len(sys.argv) != 3:
        print("Usage: python scripts/reset_password.py <email> <new_password>")
        sys.exit(1)
    email = sys.argv[1].strip().lower()
    password = sys.argv[2]
    if len(password) < 8:
        print("Password must be at least 8 characters")
        sys.exit(1)

    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == email).first()
        if not user:
            print(f"No user found with email: {email}")
            sys.exit(1)
        user.hashed_password = get_password_hash(password)
        create_log(
            db,
            CATEGORY_ACCOUNT,
            "Password reset",
            f"Password for {email} reset from the command line.",
            target_user_id=user.id,
            meta={"source": "scripts/reset_password.py"},
        )
        db.commit()
        print(f"Password updated for {email} (id={user.id}, role={user.role.value})")
    finally:
        db.close()


if __name__ == "__main__":
    main()
