"""Shared dependencies: DB session, current user, role gates."""
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from chillconnect.database import get_db
from chillconnect.models.user import User, UserRole, STAFF_ROLES, MANAGER_ROLES, ADMIN_ROLES
from chillconnect.services.auth import decode_token_with_error, user_id_from_payload

security = HTTPBearer(auto_error=False)


def user_from_token(db: Session, token: str | None) -> tuple[User | None, str | None]:
    """Resolve a bearer token to an active user. Returns (user, error). Shared with the chat WebSocket handshake."""
    payload, _ = decode_token_with_error((token or "").strip())
    if not payload:
        return None, "Invalid or expired token"
    user_id = user_id_from_payload(payload)
    if user_id is None:
        return None, "Invalid token"
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        return None, "User not found"
    if user.is_suspended:
        return None, "Account suspended"
    return user, None


def get_current_user(
    db: Session = Depends(get_db),
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> User:
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user, error = user_from_token(db, credentials.credentials)
    if not user:
        raise HTTPException(status_code=403 if error == "Account suspended" else 401, detail=error)
    return user


def require_roles(*roles: UserRole):
    """Dependency factory: current user must hold one of the given roles."""

    def _check(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return current_user

    return _check


require_seeker = require_roles(UserRole.SEEKER)
require_provider = require_roles(UserRole.PROVIDER)
require_staff = require_roles(*STAFF_ROLES)
require_manager = require_roles(*MANAGER_ROLES)
require_admin = require_roles(*ADMIN_ROLES)


def require_verified(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_verified:
        raise HTTPException(status_code=403, detail="Account verification required")
    return current_user
