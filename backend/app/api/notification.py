import asyncio
import logging

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from .. import database
from ..database import get_db
from ..models.notification import Notification
from ..services.job_postings import pagination_meta
from ..services.notifications import EVENT_NOTIFICATION, WebSocketConnection, notification_to_public
from ..utils.dependencies import get_current_principal, principal_from_token
from ..utils.error_handlers import ForbiddenError, NotFoundError, UnauthorizedError, get_error_message
from ..utils.roles import Principal

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])
ws_router = APIRouter(tags=["Realtime"])

# Close code for an unauthenticated socket.
WS_UNAUTHORIZED = 4001


def _mine(db: Session, principal: Principal):
    return db.query(Notification).filter(
        Notification.receiver_role == principal.kind,
        Notification.receiver_id == principal.id,
    )


@router.get("")
def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    unread_only: bool = False,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    q = _mine(db, principal)
    if unread_only:
        q = q.filter(Notification.is_read.is_(False))
    total = q.count()
    rows = (
        q.order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "success": True,
        "notifications": [notification_to_public(n) for n in rows],
        "pagination": pagination_meta(page=page, page_size=limit, total=total),
    }


@router.get("/unread-count")
def unread_count(db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    count = _mine(db, principal).filter(Notification.is_read.is_(False)).count()
    return {"success": True, "unread_count": count}


@router.patch("/{notification_id:int}/read")
def mark_read(
    notification_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    n = db.query(Notification).filter(Notification.id == notification_id).first()
    if not n:
        raise NotFoundError(get_error_message("notification_not_found"))
    if n.receiver_role != principal.kind or n.receiver_id != principal.id:
        raise ForbiddenError(get_error_message("forbidden"))
    n.is_read = True
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(n)
    return {"success": True, "notification": notification_to_public(n)}


@router.patch("/read-all")
def mark_all_read(db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    try:
        count = (
            _mine(db, principal)
            .filter(Notification.is_read.is_(False))
            .update({Notification.is_read: True}, synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    return {"success": True, "updated": int(count)}


def _flush_unread(dispatcher, kind: str, identity_id: int) -> list[dict]:
    db = database.SessionLocal()
    try:
        return dispatcher.flush_unread(db, kind, identity_id)
    finally:
        db.close()


@ws_router.websocket("/ws")
async def live_socket(websocket: WebSocket, token: str | None = None):
    """
    Live event channel. Authenticate with `?token=` or a bearer header.

    On connect, unread notifications are delivered oldest first and marked read; after
    that the socket receives `notification`, `new_message`, `new_conversation` and
    `messages_read` events as {"event": ..., "data": ...}.
    """
    if not token:
        auth = websocket.headers.get("Authorization") or ""
        token = auth[7:].strip() if auth.lower().startswith("bearer ") else None
    try:
        if not token:
            raise UnauthorizedError(get_error_message("unauthorized"))
        principal = principal_from_token(token)
    except UnauthorizedError:
        await websocket.close(code=WS_UNAUTHORIZED)
        return

    await websocket.accept()
    registry = websocket.app.state.connection_registry
    dispatcher = websocket.app.state.notification_dispatcher
    connection = WebSocketConnection(websocket, asyncio.get_running_loop())
    registry.register(principal.kind, principal.id, connection)
    try:
        pending = await run_in_threadpool(_flush_unread, dispatcher, principal.kind, principal.id)
        for payload in pending:
            await websocket.send_json({"event": EVENT_NOTIFICATION, "data": payload})

        while True:
            text = await websocket.receive_text()
            if text.strip().lower() == "ping":
                await websocket.send_json({"event": "pong", "data": {}})
    except WebSocketDisconnect:
        pass
    finally:
        registry.unregister(principal.kind, principal.id, connection)
