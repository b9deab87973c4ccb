"""
Institute <-> user conversations and messages.

A conversation is unique per (institute, user). Each side has its own unread counter,
bumped when the other side sends and zeroed when the side reads.
"""
import logging
from typing import Any

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.application import Application
from ..models.conversation import Conversation, Message
from ..utils.dates import iso
from ..utils.error_handlers import ForbiddenError, NotFoundError, ValidationError, get_error_message
from ..utils.roles import Capability, Principal
from .notifications import (
    EVENT_MESSAGES_READ,
    EVENT_NEW_CONVERSATION,
    EVENT_NEW_MESSAGE,
    NotificationDispatcher,
)

logger = logging.getLogger(__name__)

MEDIA_TYPES = ("IMAGE", "VIDEO", "PDF")


def message_to_public(m: Message) -> dict[str, Any]:
    return {
        "id": m.id,
        "conversation_id": m.conversation_id,
        "sender_type": m.sender_type,
        "sender_id": m.sender_id,
        "content": m.content,
        "media_url": f"/conversations/{m.conversation_id}/messages/{m.id}/media" if m.media_path else None,
        "media_type": m.media_type,
        "is_read": bool(m.is_read),
        "created_at": iso(m.created_at),
    }


def _counterparty(conv: Conversation, principal: Principal) -> tuple[str, int]:
    if principal.is_institute:
        return Capability.USER.value, conv.user_id
    return Capability.INSTITUTE.value, conv.institute_id


def conversation_to_public(conv: Conversation, principal: Principal) -> dict[str, Any]:
    if principal.is_institute:
        participant = {
            "id": conv.user.id,
            "kind": Capability.USER.value,
            "name": conv.user.full_name,
            "role": conv.user.role,
        } if conv.user else None
        unread = conv.institute_unread_count
    else:
        participant = {
            "id": conv.institute.id,
            "kind": Capability.INSTITUTE.value,
            "name": conv.institute.name,
            "role": conv.institute.role,
        } if conv.institute else None
        unread = conv.user_unread_count
    return {
        "id": conv.id,
        "institute_id": conv.institute_id,
        "user_id": conv.user_id,
        "participant": participant,
        "last_message": message_to_public(conv.last_message) if conv.last_message else None,
        "unread_count": int(unread or 0),
        "created_at": iso(conv.created_at),
        "updated_at": iso(conv.updated_at),
    }


def initiate(
    db: Session, dispatcher: NotificationDispatcher, principal: Principal, application_id: int
) -> tuple[Conversation, bool]:
    """Open (or return the existing) conversation with an applicant; returns (conversation, created)."""
    if not principal.is_institute:
        raise ForbiddenError("Institute access only")

    application = db.query(Application).filter(Application.id == int(application_id)).first()
    if not application:
        raise NotFoundError(get_error_message("application_not_found"))
    if not application.job or application.job.institute_id != principal.id:
        raise ForbiddenError(get_error_message("forbidden"))

    conv = (
        db.query(Conversation)
        .filter(Conversation.institute_id == principal.id, Conversation.user_id == application.user_id)
        .first()
    )
    if conv:
        return conv, False

    conv = Conversation(institute_id=principal.id, user_id=application.user_id)
    try:
        db.add(conv)
        db.commit()
    except IntegrityError:
        # Concurrent initiate created it first.
        db.rollback()
        conv = (
            db.query(Conversation)
            .filter(Conversation.institute_id == principal.id, Conversation.user_id == application.user_id)
            .one()
        )
        return conv, False
    db.refresh(conv)
    logger.info("Conversation created conversation_id=%s institute_id=%s user_id=%s", conv.id, conv.institute_id, conv.user_id)

    user_view = Principal(id=conv.user_id, role=application.user.role, capability=Capability.USER)
    dispatcher.emit(Capability.USER.value, conv.user_id, EVENT_NEW_CONVERSATION, conversation_to_public(conv, user_view))
    return conv, True


def _participant_filter(principal: Principal):
    if principal.is_institute:
        return Conversation.institute_id == principal.id
    if principal.is_user:
        return Conversation.user_id == principal.id
    raise ForbiddenError(get_error_message("forbidden"))


def list_conversations(db: Session, principal: Principal) -> list[Conversation]:
    return (
        db.query(Conversation)
        .filter(_participant_filter(principal))
        .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
        .all()
    )


def total_unread(db: Session, principal: Principal) -> int:
    column = Conversation.institute_unread_count if principal.is_institute else Conversation.user_unread_count
    return int(db.query(func.coalesce(func.sum(column), 0)).filter(_participant_filter(principal)).scalar() or 0)


def get_participant_conversation(db: Session, principal: Principal, conversation_id: int) -> Conversation:
    conv = db.query(Conversation).filter(Conversation.id == int(conversation_id)).first()
    if not conv:
        raise NotFoundError(get_error_message("conversation_not_found"))
    is_participant = (
        (principal.is_institute and conv.institute_id == principal.id)
        or (principal.is_user and conv.user_id == principal.id)
    )
    if not is_participant:
        raise ForbiddenError(get_error_message("not_participant"))
    return conv


def send_message(
    db: Session,
    dispatcher: NotificationDispatcher,
    principal: Principal,
    conversation_id: int,
    *,
    content: str | None = None,
    media_path: str | None = None,
    media_type: str | None = None,
) -> Message:
    conv = get_participant_conversation(db, principal, conversation_id)
    content = (content or "").strip() or None
    if not content and not media_path:
        raise ValidationError(get_error_message("empty_message"))
    if media_path and media_type not in MEDIA_TYPES:
        raise ValidationError(f"Invalid media type. Must be one of: {', '.join(MEDIA_TYPES)}")

    message = Message(
        conversation_id=conv.id,
        sender_type=principal.kind,
        sender_id=principal.id,
        content=content,
        media_path=media_path,
        media_type=media_type if media_path else None,
        is_read=False,
    )
    unread_column = (
        Conversation.user_unread_count if principal.is_institute else Conversation.institute_unread_count
    )
    try:
        db.add(message)
        db.flush()
        db.execute(
            update(Conversation)
            .where(Conversation.id == conv.id)
            .values({unread_column: unread_column + 1, Conversation.last_message_id: message.id})
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(message)
    db.refresh(conv)

    kind, receiver_id = _counterparty(conv, principal)
    dispatcher.emit(kind, receiver_id, EVENT_NEW_MESSAGE, message_to_public(message))
    return message


def get_messages(db: Session, principal: Principal, conversation_id: int, *, page: int = 1, limit: int = 20) -> tuple[list[Message], int]:
    """One page of messages, newest page first, returned oldest -> newest."""
    conv = get_participant_conversation(db, principal, conversation_id)
    q = db.query(Message).filter(Message.conversation_id == conv.id)
    total = q.count()
    rows = (
        q.order_by(Message.created_at.desc(), Message.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    rows.reverse()
    return rows, total


def mark_read(db: Session, dispatcher: NotificationDispatcher, principal: Principal, conversation_id: int) -> int:
    """Mark the other side's messages read and zero my counter; returns rows marked."""
    conv = get_participant_conversation(db, principal, conversation_id)
    other_kind, other_id = _counterparty(conv, principal)
    try:
        marked = (
            db.query(Message)
            .filter(
                Message.conversation_id == conv.id,
                Message.sender_type == other_kind,
                Message.is_read.is_(False),
            )
            .update({Message.is_read: True}, synchronize_session=False)
        )
        if principal.is_institute:
            conv.institute_unread_count = 0
        else:
            conv.user_unread_count = 0
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    dispatcher.emit(other_kind, other_id, EVENT_MESSAGES_READ, {"conversation_id": conv.id, "reader_id": principal.id})
    return int(marked)


def get_message_media(db: Session, principal: Principal, conversation_id: int, message_id: int) -> Message:
    conv = get_participant_conversation(db, principal, conversation_id)
    message = (
        db.query(Message)
        .filter(Message.id == int(message_id), Message.conversation_id == conv.id)
        .first()
    )
    if not message or not message.media_path:
        raise NotFoundError(get_error_message("not_found"))
    return message
