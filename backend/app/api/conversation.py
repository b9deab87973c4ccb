import logging

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile
from fastapi.responses import FileResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..database import get_db
from ..services import messaging
from ..services.job_postings import pagination_meta
from ..services.notifications import NotificationDispatcher, get_dispatcher
from ..utils.dependencies import get_current_principal
from ..utils.error_handlers import NotFoundError, ValidationError
from ..utils.roles import Principal, institute_only
from ..utils.storage import MEDIA_EXTENSIONS, delete_stored, media_type_for, resolve_path, save_upload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["Conversations"])


class InitiateRequest(BaseModel):
    application_id: int


@router.post("")
def initiate_conversation(
    payload: InitiateRequest,
    response: Response,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    principal: Principal = Depends(institute_only),
):
    conv, created = messaging.initiate(db, dispatcher, principal, payload.application_id)
    response.status_code = 201 if created else 200
    return {
        "success": True,
        "created": created,
        "conversation": messaging.conversation_to_public(conv, principal),
    }


@router.get("")
def list_conversations(db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    rows = messaging.list_conversations(db, principal)
    return {"success": True, "conversations": [messaging.conversation_to_public(c, principal) for c in rows]}


@router.get("/unread-count")
def total_unread(db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    return {"success": True, "unread_count": messaging.total_unread(db, principal)}


@router.get("/{conversation_id:int}/messages")
def get_messages(
    conversation_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    rows, total = messaging.get_messages(db, principal, conversation_id, page=page, limit=limit)
    return {
        "success": True,
        "messages": [messaging.message_to_public(m) for m in rows],
        "pagination": pagination_meta(page=page, page_size=limit, total=total),
    }


@router.post("/{conversation_id:int}/messages", status_code=201)
async def send_message(
    conversation_id: int,
    content: str | None = Form(None),
    media_type: str | None = Form(None),
    file: UploadFile | None = File(None),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    principal: Principal = Depends(get_current_principal),
):
    """Send text and/or one media file (image, video or PDF)."""
    # Fail fast on access before storing anything.
    messaging.get_participant_conversation(db, principal, conversation_id)

    stored = None
    if file is not None and file.filename:
        stored = await save_upload(
            file,
            folder=["messages", str(conversation_id)],
            allowed_extensions=set(MEDIA_EXTENSIONS),
        )
        detected = media_type_for(stored.original_filename)
        if media_type and media_type.strip().upper() != detected:
            delete_stored(stored.rel_path)
            raise ValidationError(f"media_type does not match the uploaded file ({detected})")
        media_type = detected

    try:
        message = messaging.send_message(
            db,
            dispatcher,
            principal,
            conversation_id,
            content=content,
            media_path=stored.rel_path if stored else None,
            media_type=media_type if stored else None,
        )
    except Exception:
        delete_stored(stored.rel_path if stored else None)
        raise
    return {"success": True, "message": messaging.message_to_public(message)}


@router.patch("/{conversation_id:int}/read")
def mark_conversation_read(
    conversation_id: int,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    principal: Principal = Depends(get_current_principal),
):
    marked = messaging.mark_read(db, dispatcher, principal, conversation_id)
    return {"success": True, "marked": marked}


@router.get("/{conversation_id:int}/messages/{message_id:int}/media")
def message_media(
    conversation_id: int,
    message_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    message = messaging.get_message_media(db, principal, conversation_id, message_id)
    path = resolve_path(message.media_path)
    if not path.exists():
        raise NotFoundError("Media file missing")
    return FileResponse(path)
