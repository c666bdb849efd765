"""Append-only audit trail of staff, member and scheduler actions. Rows are never updated or deleted."""
from __future__ import annotations

import enum
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from chillconnect.models.audit_log import AuditLog

logger = logging.getLogger(__name__)

CATEGORY_BOOKING = "booking"
CATEGORY_WALLET = "wallet"
CATEGORY_VERIFICATION = "verification"
CATEGORY_DISPUTE = "dispute"
CATEGORY_WITHDRAWAL = "withdrawal"
CATEGORY_ACCOUNT = "account"
CATEGORY_SUPPORT = "support"

CATEGORIES = frozenset({
    CATEGORY_BOOKING,
    CATEGORY_WALLET,
    CATEGORY_VERIFICATION,
    CATEGORY_DISPUTE,
    CATEGORY_WITHDRAWAL,
    CATEGORY_ACCOUNT,
    CATEGORY_SUPPORT,
})

# Text has no length; keep messages bounded anyway
_MESSAGE_LIMIT = 100_000


def _clip(value: Any, column: str) -> str | None:
    """Stripped text cut to the String column's length; None when blank."""
    if value is None:
        return None
    limit = AuditLog.__table__.c[column].type.length or _MESSAGE_LIMIT
    text = str(value).strip()[:limit]
    return text or None


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    return str(value)


def create_log(
    db: Session,
    category: str,
    title: str,
    message: str,
    *,
    booking_id: int | None = None,
    target_user_id: int | None = None,
    actor_user_id: int | None = None,
    actor_email: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    meta: dict[str, Any] | None = None,
) -> AuditLog:
    """
    Add one audit row to the caller's transaction and flush it so the id is available.
    actor_user_id is None for scheduled jobs. Unknown categories are filed under account.
    """
    if category not in CATEGORIES:
        logger.warning("Unknown audit category %r filed under %s", category, CATEGORY_ACCOUNT)
        category = CATEGORY_ACCOUNT

    entry = AuditLog(
        category=category,
        title=_clip(title, "title") or "-",
        message=_clip(message, "message") or "-",
        booking_id=booking_id,
        target_user_id=target_user_id,
        actor_user_id=actor_user_id,
        actor_email=_clip(actor_email, "actor_email"),
        ip_address=_clip(ip_address, "ip_address"),
        user_agent=_clip(user_agent, "user_agent"),
        meta=_jsonable(meta) if meta is not None else None,
    )
    db.add(entry)
    db.flush()
    return entry


def request_context(request) -> dict[str, str | None]:
    """ip_address / user_agent kwargs for create_log from a FastAPI Request."""
    if request is None:
        return {"ip_address": None, "user_agent": None}
    ip = request.client.host if request.client else None
    ua = (request.headers.get("user-agent") or "").strip() or None
    return {"ip_address": ip, "user_agent": ua}
