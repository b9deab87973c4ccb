"""
Notification persistence and best-effort live push.

The Notification row is the durable record; the live push over a registered
WebSocket is a bonus. Missed pushes are recovered when the receiver reconnects
(`flush_unread`) or polls the notifications API.
"""
import asyncio
import logging
import threading
from typing import Any, Protocol

from fastapi import FastAPI, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.notification import Notification

logger = logging.getLogger(__name__)

EVENT_NOTIFICATION = "notification"
EVENT_NEW_MESSAGE = "new_message"
EVENT_NEW_CONVERSATION = "new_conversation"
EVENT_MESSAGES_READ = "messages_read"


class Connection(Protocol):
    def send(self, event: str, payload: dict) -> None: ...


class WebSocketConnection:
    """Adapts a FastAPI WebSocket so sync code on any thread can push to it."""

    def __init__(self, websocket, loop: asyncio.AbstractEventLoop):
        self.websocket = websocket
        self.loop = loop

    def send(self, event: str, payload: dict) -> None:
        future = asyncio.run_coroutine_threadsafe(
            self.websocket.send_json({"event": event, "data": payload}), self.loop
        )
        future.add_done_callback(self._log_failure)

    @staticmethod
    def _log_failure(future) -> None:
        if not future.cancelled() and future.exception() is not None:
            logger.warning("Live push failed: %s", future.exception())


class ConnectionRegistry:
    """Live connections keyed by (receiver kind, identity id)."""

    def __init__(self):
        self._lock = threading.Lock()
        self._connections: dict[tuple[str, int], list[Connection]] = {}

    def register(self, kind: str, identity_id: int, connection: Connection) -> None:
        with self._lock:
            self._connections.setdefault((kind, int(identity_id)), []).append(connection)
        logger.info("Live connection registered kind=%s id=%s", kind, identity_id)

    def unregister(self, kind: str, identity_id: int, connection: Connection) -> None:
        key = (kind, int(identity_id))
        with self._lock:
            conns = self._connections.get(key)
            if not conns:
                return
            self._connections[key] = [c for c in conns if c is not connection]
            if not self._connections[key]:
                del self._connections[key]
        logger.info("Live connection unregistered kind=%s id=%s", kind, identity_id)

    def lookup(self, kind: str, identity_id: int) -> list[Connection]:
        with self._lock:
            return list(self._connections.get((kind, int(identity_id)), []))

    def __len__(self) -> int:
        with self._lock:
            return sum(len(v) for v in self._connections.values())


def notification_to_public(n: Notification) -> dict[str, Any]:
    return {
        "id": n.id,
        "receiver_id": n.receiver_id,
        "receiver_role": n.receiver_role,
        "title": n.title,
        "message": n.message,
        "related_job_id": n.related_job_id,
        "related_application_id": n.related_application_id,
        "status": n.status,
        "is_read": bool(n.is_read),
        "created_at": n.created_at.isoformat() if n.created_at else None,
    }


def build_notification(
    *,
    receiver_id: int,
    receiver_role: str,
    title: str,
    message: str,
    related_job_id: int | None = None,
    related_application_id: int | None = None,
    status: str | None = None,
) -> Notification:
    return Notification(
        receiver_id=int(receiver_id),
        receiver_role=receiver_role,
        title=title,
        message=message,
        related_job_id=related_job_id,
        related_application_id=related_application_id,
        status=status,
        is_read=False,
    )


class NotificationDispatcher:
    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    def send(
        self,
        db: Session,
        *,
        receiver_id: int,
        receiver_role: str,
        title: str,
        message: str,
        related_job_id: int | None = None,
        related_application_id: int | None = None,
        status: str | None = None,
    ) -> Notification | None:
        """
        Persist one notification and push it live if the receiver is connected.

        Never raises: a failed insert is rolled back and logged (returns None),
        a failed push is logged.
        """
        notification = build_notification(
            receiver_id=receiver_id,
            receiver_role=receiver_role,
            title=title,
            message=message,
            related_job_id=related_job_id,
            related_application_id=related_application_id,
            status=status,
        )
        try:
            db.add(notification)
            db.commit()
            db.refresh(notification)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(
                "Failed to persist notification receiver=%s:%s title=%r: %s",
                receiver_role, receiver_id, title, e,
            )
            return None

        self.emit(receiver_role, receiver_id, EVENT_NOTIFICATION, notification_to_public(notification))
        return notification

    def emit(self, kind: str, identity_id: int, event: str, payload: dict) -> int:
        """Push `event` to every live connection of the receiver; returns how many were attempted."""
        connections = self.registry.lookup(kind, identity_id)
        for conn in connections:
            try:
                conn.send(event, payload)
            except Exception as e:  # push is best-effort
                logger.warning("Live push %s to %s:%s failed: %s", event, kind, identity_id, e)
        return len(connections)

    def flush_unread(self, db: Session, kind: str, identity_id: int) -> list[dict]:
        """Unread notifications, oldest first, marked read as they are handed out."""
        rows = (
            db.query(Notification)
            .filter(
                Notification.receiver_role == kind,
                Notification.receiver_id == int(identity_id),
                Notification.is_read.is_(False),
            )
            .order_by(Notification.created_at.asc(), Notification.id.asc())
            .all()
        )
        if not rows:
            return []
        payloads = [notification_to_public(n) for n in rows]
        for n in rows:
            n.is_read = True
        db.commit()
        return payloads


def install_notifications(app: FastAPI, registry: ConnectionRegistry | None = None) -> NotificationDispatcher:
    registry = registry or ConnectionRegistry()
    dispatcher = NotificationDispatcher(registry)
    app.state.connection_registry = registry
    app.state.notification_dispatcher = dispatcher
    return dispatcher


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.notification_dispatcher
