"""Booking chat over REST, plus the /ws/chat relay."""
import json
import logging
from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from sqlalchemy import func
from sqlalchemy.orm import Session

from chillconnect.database import SessionLocal, get_db
from chillconnect.dependencies import get_current_user, require_staff, user_from_token
from chillconnect.models.booking import Booking
from chillconnect.models.message import Message
from chillconnect.models.user import User
from chillconnect.routers.bookings import get_booking_for
from chillconnect.schemas.chat import Conversation, MessageCreate, MessageReport, MessageResponse, SystemMessageCreate
from chillconnect.services.chat import (
    ChatError,
    manager,
    post_message,
    post_system_message,
    serialize_message,
    user_booking_ids,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])
ws_router = APIRouter(tags=["chat"])


@router.get("/conversations", response_model=list[Conversation])
def conversations(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    bookings = (
        db.query(Booking)
        .filter((Booking.seeker_id == current_user.id) | (Booking.provider_id == current_user.id))
        .order_by(Booking.start_time.desc())
        .all()
    )
    unread = dict(
        db.query(Message.booking_id, func.count(Message.id))
        .filter(
            Message.booking_id.in_([b.id for b in bookings] or [0]),
            Message.is_read.is_(False),
            (Message.sender_id != current_user.id) | Message.sender_id.is_(None),
        )
        .group_by(Message.booking_id)
        .all()
    )
    result = []
    for b in bookings:
        other = b.provider if b.seeker_id == current_user.id else b.seeker
        last = (
            db.query(Message)
            .filter(Message.booking_id == b.id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .first()
        )
        result.append(Conversation(
            booking_id=b.id,
            status=b.status,
            start_time=b.start_time,
            other_party_id=other.id,
            other_party_name=other.display_name,
            last_message=MessageResponse.model_validate(last) if last else None,
            unread_count=unread.get(b.id, 0),
        ))
    return result


@router.get("/flagged", response_model=list[MessageResponse])
def flagged_messages(
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_staff),
):
    rows = (
        db.query(Message)
        .filter(Message.is_flagged.is_(True))
        .order_by(Message.risk_score.desc(), Message.created_at.desc())
        .limit(limit)
        .all()
    )
    return [MessageResponse.model_validate(m) for m in rows]


@router.get("/{booking_id}/messages", response_model=list[MessageResponse])
def list_messages(
    booking_id: int,
    before_id: int | None = None,
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    booking = get_booking_for(db, booking_id, current_user)
    q = db.query(Message).filter(Message.booking_id == booking.id)
    if before_id:
        q = q.filter(Message.id < before_id)
    rows = q.order_by(Message.id.desc()).limit(limit).all()
    if current_user.id in (booking.seeker_id, booking.provider_id):
        unread = [m for m in rows if not m.is_read and m.sender_id != current_user.id]
        for m in unread:
            m.is_read = True
        if unread:
            db.commit()
    return [MessageResponse.model_validate(m) for m in reversed(rows)]


def _store_message(db: Session, booking_id: int, user: User, content: str, media_url: str | None = None) -> Message:
    booking = get_booking_for(db, booking_id, user)
    try:
        message = post_message(db, booking, user, content, media_url)
    except ChatError as e:
        db.rollback()
        raise HTTPException(status_code=e.status_code, detail=e.message)
    db.commit()
    db.refresh(message)
    return message


def _store_system_message(db: Session, booking_id: int, user: User, content: str) -> Message:
    booking = get_booking_for(db, booking_id, user)
    message = post_system_message(db, booking, content)
    db.commit()
    db.refresh(message)
    return message


# DB work runs in the threadpool; only the fan-out awaits on the event loop
@router.post("/{booking_id}/messages", response_model=MessageResponse, status_code=201)
async def send_message(
    booking_id: int,
    data: MessageCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    message = await run_in_threadpool(_store_message, db, booking_id, current_user, data.content, data.media_url)
    await manager.broadcast(message.booking_id, {"type": "message", "message": serialize_message(message)})
    return MessageResponse.model_validate(message)


@router.post("/{booking_id}/system", response_model=MessageResponse, status_code=201)
async def send_system_message(
    booking_id: int,
    data: SystemMessageCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_staff),
):
    message = await run_in_threadpool(_store_system_message, db, booking_id, current_user, data.content)
    await manager.broadcast(message.booking_id, {"type": "message", "message": serialize_message(message)})
    return MessageResponse.model_validate(message)


@router.post("/messages/{message_id}/report", response_model=MessageResponse)
def report_message(
    message_id: int,
    data: MessageReport,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    message = db.query(Message).filter(Message.id == message_id).first()
    if not message:
        raise HTTPException(status_code=404, detail="Message not found")
    get_booking_for(db, message.booking_id, current_user)
    if message.sender_id == current_user.id:
        raise HTTPException(status_code=400, detail="You cannot report your own message")
    message.is_flagged = True
    message.flag_reason = f"Reported: {data.reason}"[:255]
    message.reported_by_id = current_user.id
    db.commit()
    db.refresh(message)
    logger.info("Message %s reported by user %s", message.id, current_user.id)
    return MessageResponse.model_validate(message)


def _open_socket(token: str | None) -> tuple[int | None, list[int], str | None]:
    db = SessionLocal()
    try:
        user, error = user_from_token(db, token)
        if not user:
            return None, [], error
        return user.id, user_booking_ids(db, user.id), None
    finally:
        db.close()


def _handle_frame(user_id: int, frame) -> dict:
    """Store one inbound frame. Fresh session per frame so suspensions apply to open sockets."""
    if not isinstance(frame, dict) or not isinstance(frame.get("booking_id"), int):
        return {"type": "error", "detail": "booking_id and content are required"}
    db = SessionLocal()
    try:
        user = db.query(User).filter(User.id == user_id).first()
        if not user or user.is_suspended:
            return {"type": "error", "detail": "Account suspended", "close": True}
        booking = db.query(Booking).filter(Booking.id == frame["booking_id"]).first()
        if not booking:
            return {"type": "error", "detail": "Booking not found"}
        try:
            message = post_message(db, booking, user, str(frame.get("content") or ""))
        except ChatError as e:
            db.rollback()
            return {"type": "error", "detail": e.message}
        db.commit()
        db.refresh(message)
        return {"type": "message", "message": serialize_message(message)}
    finally:
        db.close()


@ws_router.websocket("/ws/chat")
async def chat_socket(websocket: WebSocket, token: str | None = Query(None)):
    """Frames in: {"booking_id": int, "content": str}. Frames out: {"type": "message"|"error"|"ready", ...}."""
    user_id, booking_ids, error = await run_in_threadpool(_open_socket, token)
    if user_id is None:
        await websocket.close(code=4401, reason=error)
        return
    await websocket.accept()
    await manager.join(websocket, booking_ids)
    await websocket.send_json({"type": "ready", "booking_ids": booking_ids})
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except ValueError:
                await websocket.send_json({"type": "error", "detail": "Frames must be JSON objects"})
                continue
            reply = await run_in_threadpool(_handle_frame, user_id, frame)
            if reply["type"] == "error":
                await websocket.send_json({"type": "error", "detail": reply["detail"]})
                if reply.get("close"):
                    await websocket.close(code=4403, reason=reply["detail"])
                    return
                continue
            booking_id = reply["message"]["booking_id"]
            # Bookings created after the socket connected
            await manager.join(websocket, [booking_id])
            await manager.broadcast(booking_id, reply)
    except WebSocketDisconnect:
        pass
    finally:
        await manager.leave_all(websocket)
