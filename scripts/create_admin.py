"""
Create (or promote) a staff account with profile and wallet. Public registration only creates
seekers and providers, so this is how the first SUPER_ADMIN gets into the system.

Run from project root:
  python scripts/create_admin.py <email> <password> [ROLE] [first_name] [last_name]

ROLE is one of EMPLOYEE, MANAGER, ADMIN, SUPER_ADMIN (default SUPER_ADMIN).
"""
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from chillconnect.database import Base, SessionLocal, engine
from chillconnect.models.user import User, UserProfile, UserRole, STAFF_ROLES
from chillconnect.models.wallet import TokenWallet
from chillconnect.services import ledger
from chillconnect.services.auth import get_password_hash


def main():
    if len(sys.argv) < 3:
        print("Usage: python scripts/create_admin.py <email> <password> [ROLE] [first_name] [last_name]")
        sys.exit(1)
    email = sys.argv[1].strip().lower()
    password = sys.argv[2]
    role_name = (sys.argv[3] if len(sys.argv) > 3 else "SUPER_ADMIN").strip().upper()
    first_name = sys.argv[4] if len(sys.argv) > 4 else "Platform"
    last_name = sys.argv[5] if len(sys.argv) > 5 else role_name.replace("_", " ").title()

    try:
        role = UserRole(role_name)
    except ValueError:
        print(f"Unknown role: {role_name}")
        sys.exit(1)
    if role not in STAFF_ROLES:
        print(f"{role.value} is not a staff role. Use EMPLOYEE, MANAGER, ADMIN or SUPER_ADMIN.")
        sys.exit(1)
    if len(password) < 8:
        print("Password must be at least 8 characters")
        sys.exit(1)

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == email).first()
        if user:
            print(f"User exists (id={user.id}, role={user.role.value}); promoting to {role.value} and resetting password")
            user.role = role
            user.hashed_password = get_password_hash(password)
        else:
            user = User(email=email, hashed_password=get_password_hash(password), role=role, consent_given=True)
            db.add(user)
            db.flush()
            print(f"Created user id={user.id}")
        user.is_verified = True
        user.email_verified = True
        user.age_verified = True
        user.is_suspended = False
        user.suspension_reason = None

        if not db.query(UserProfile).filter(UserProfile.user_id == user.id).first():
            db.add(UserProfile(user_id=user.id, first_name=first_name, last_name=last_name))
        if not db.query(TokenWallet).filter(TokenWallet.user_id == user.id).first():
            ledger.create_wallet(db, user.id)

        db.commit()
        print(f"Done. {role.value} account ready: {email}")
    except Exception as e:
        db.rollback()
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
