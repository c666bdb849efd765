"""Booking chat: message storage with moderation, and the in-process WebSocket room registry."""
from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from fastapi import WebSocket
from sqlalchemy import func
from sqlalchemy.orm import Session

from chillconnect.models.booking import Booking, CHAT_OPEN_STATUSES
from chillconnect.models.message import Message
from chillconnect.models.user import User
from chillconnect.services.moderation import screen

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000


class ChatError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def sender_flagged_count(db: Session, user_id: int) -> int:
    return (
        db.query(func.count(Message.id))
        .filter(Message.sender_id == user_id, Message.is_flagged.is_(True))
        .scalar()
        or 0
    )


def post_message(db: Session, booking: Booking, sender: User, content: str, media_url: str | None = None) -> Message:
    """Store a participant's message after access and moderation checks. Caller commits."""
    if sender.id not in (booking.seeker_id, booking.provider_id):
        raise ChatError("You are not part of this booking", status_code=403)
    if booking.status not in CHAT_OPEN_STATUSES:
        raise ChatError(f"Chat is closed for {booking.status.value.lower()} bookings")
    text = (content or "").strip()
    if not text and not media_url:
        raise ChatError("Message cannot be empty")
    if len(text) > MAX_MESSAGE_LENGTH:
        raise ChatError(f"Message cannot exceed {MAX_MESSAGE_LENGTH} characters")

    flagged, score, reason = screen(text, sender_flagged_count(db, sender.id))
    message = Message(
        booking_id=booking.id,
        sender_id=sender.id,
        content=text,
        media_url=media_url,
        is_flagged=flagged,
        flag_reason=reason,
        risk_score=score,
    )
    db.add(message)
    db.flush()
    if flagged:
        logger.warning("Message %s flagged in booking %s (score=%s): %s", message.id, booking.id, score, reason)
    return message


def post_system_message(db: Session, booking: Booking, content: str) -> Message:
    message = Message(booking_id=booking.id, sender_id=None, content=content.strip(), is_system=True)
    db.add(message)
    db.flush()
    return message


def user_booking_ids(db: Session, user_id: int) -> list[int]:
    rows = (
        db.query(Booking.id)
        .filter((Booking.seeker_id == user_id) | (Booking.provider_id == user_id))
        .all()
    )
    return [r for (r,) in rows]


def serialize_message(message: Message) -> dict:
    return {
        "id": message.id,
        "booking_id": message.booking_id,
        "sender_id": message.sender_id,
        "content": message.content,
        "media_url": message.media_url,
        "is_system": message.is_system,
        "is_flagged": message.is_flagged,
        "created_at": message.created_at.isoformat() if message.created_at else None,
    }


class ConnectionManager:
    """Booking rooms: booking_id -> connected sockets. One process only; no cross-worker fan-out."""

    def __init__(self):
        self._rooms: dict[int, set[WebSocket]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def join(self, websocket: WebSocket, booking_ids: list[int]) -> None:
        async with self._lock:
            for booking_id in booking_ids:
                self._rooms[booking_id].add(websocket)

    async def leave_all(self, websocket: WebSocket) -> None:
        async with self._lock:
            for booking_id in list(self._rooms):
                self._rooms[booking_id].discard(websocket)
                if not self._rooms[booking_id]:
                    del self._rooms[booking_id]

    def members(self, booking_id: int) -> int:
        return len(self._rooms.get(booking_id, ()))

    async def broadcast(self, booking_id: int, payload: dict) -> None:
        async with self._lock:
            sockets = list(self._rooms.get(booking_id, ()))
        for ws in sockets:
            try:
                await ws.send_json(payload)
            except (RuntimeError, ConnectionError) as e:
                logger.info("Dropping dead socket from booking %s: %s", booking_id, e)
                await self.leave_all(ws)


manager = ConnectionManager()
