import logging

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.verification import (
    VERIFICATION_APPROVED,
    VERIFICATION_PENDING,
    VERIFICATION_REJECTED,
    VERIFICATION_STATUSES,
    InstituteVerification,
    UserVerification,
)
from ..services.notifications import NotificationDispatcher, get_dispatcher
from ..utils.dates import iso, utcnow
from ..utils.error_handlers import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
    get_error_message,
)
from ..utils.roles import Capability, Principal, admin_only, institute_only, institute_or_admin, user_only
from ..utils.storage import DOCUMENT_EXTENSIONS, delete_stored, save_upload
from ..utils.validation import validate_email, validate_string_field

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/verifications", tags=["Verifications"])


class ReviewRequest(BaseModel):
    note: str | None = Field(default=None, max_length=1000)


async def _document(file: UploadFile | None, url: str | None, field: str, folder: list[str]) -> tuple[str, bool]:
    """Return (reference, stored) for a required document given as upload or URL."""
    if file is not None and file.filename:
        stored = await save_upload(file, folder=folder, allowed_extensions=DOCUMENT_EXTENSIONS)
        return stored.rel_path, True
    url = validate_string_field(url, field, required=False, max_length=500)
    if not url:
        raise ValidationError(f"{field} is required (file or URL)")
    return url, False


def _user_verification_to_public(v: UserVerification) -> dict:
    return {
        "id": v.id,
        "user_id": v.user_id,
        "full_name": v.full_name,
        "license_number": v.license_number,
        "issuing_authority": v.issuing_authority,
        "government_id": v.government_id,
        "degree_certificate": v.degree_certificate,
        "status": v.status,
        "admin_note": v.admin_note,
        "reviewed_at": iso(v.reviewed_at),
        "created_at": iso(v.created_at),
    }


def _institute_verification_to_public(v: InstituteVerification) -> dict:
    return {
        "id": v.id,
        "institute_id": v.institute_id,
        "telephone": v.telephone,
        "email": v.email,
        "admin_name": v.admin_name,
        "admin_phone": v.admin_phone,
        "registration_certificate": v.registration_certificate,
        "status": v.status,
        "admin_note": v.admin_note,
        "reviewed_at": iso(v.reviewed_at),
        "created_at": iso(v.created_at),
    }


def _review(db: Session, v, principal: Principal, status: str, note: str | None) -> None:
    if v.status != VERIFICATION_PENDING:
        raise ConflictError(f"Verification already {v.status.lower()}")
    v.status = status
    v.admin_note = note
    v.reviewed_by = principal.id
    v.reviewed_at = utcnow()
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(v)


# -------------------- users --------------------

@router.post("/users", status_code=201)
async def submit_user_verification(
    full_name: str | None = Form(None),
    license_number: str | None = Form(None),
    issuing_authority: str | None = Form(None),
    government_id_url: str | None = Form(None),
    degree_certificate_url: str | None = Form(None),
    government_id: UploadFile | None = File(None),
    degree_certificate: UploadFile | None = File(None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(user_only),
):
    open_request = (
        db.query(UserVerification.id)
        .filter(
            UserVerification.user_id == principal.id,
            UserVerification.status.in_([VERIFICATION_PENDING, VERIFICATION_APPROVED]),
        )
        .first()
    )
    if open_request:
        raise ConflictError(get_error_message("verification_exists"))

    folder = ["verifications", "users", str(principal.id)]
    stored: list[str] = []
    try:
        gov_ref, gov_stored = await _document(government_id, government_id_url, "government_id", folder)
        if gov_stored:
            stored.append(gov_ref)
        degree_ref, degree_stored = await _document(degree_certificate, degree_certificate_url, "degree_certificate", folder)
        if degree_stored:
            stored.append(degree_ref)

        v = UserVerification(
            user_id=principal.id,
            full_name=validate_string_field(full_name, "full_name", required=False, max_length=255),
            license_number=validate_string_field(license_number, "license_number", required=False, max_length=100),
            issuing_authority=validate_string_field(issuing_authority, "issuing_authority", required=False, max_length=255),
            government_id=gov_ref,
            degree_certificate=degree_ref,
            status=VERIFICATION_PENDING,
        )
        db.add(v)
        db.commit()
    except Exception:
        db.rollback()
        for ref in stored:
            delete_stored(ref)
        raise
    db.refresh(v)
    logger.info("User verification submitted id=%s user_id=%s", v.id, principal.id)
    return {"success": True, "verification": _user_verification_to_public(v)}


@router.get("/users/me")
def my_user_verification(db: Session = Depends(get_db), principal: Principal = Depends(user_only)):
    rows = (
        db.query(UserVerification)
        .filter(UserVerification.user_id == principal.id)
        .order_by(UserVerification.created_at.desc(), UserVerification.id.desc())
        .all()
    )
    return {"success": True, "verifications": [_user_verification_to_public(v) for v in rows]}


@router.get("/users")
def list_user_verifications(
    status: str | None = Query(None),
    user_id: int | None = Query(None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_only),
):
    q = db.query(UserVerification)
    if status:
        status = status.strip().upper()
        if status not in VERIFICATION_STATUSES:
            raise ValidationError(f"Invalid status. Must be one of: {', '.join(VERIFICATION_STATUSES)}")
        q = q.filter(UserVerification.status == status)
    if user_id is not None:
        q = q.filter(UserVerification.user_id == user_id)
    rows = q.order_by(UserVerification.created_at.desc(), UserVerification.id.desc()).all()
    return {"success": True, "verifications": [_user_verification_to_public(v) for v in rows]}


def _get_user_verification(db: Session, verification_id: int) -> UserVerification:
    v = db.query(UserVerification).filter(UserVerification.id == verification_id).first()
    if not v:
        raise NotFoundError(get_error_message("verification_not_found"))
    return v


@router.get("/users/{verification_id:int}")
def get_user_verification(verification_id: int, db: Session = Depends(get_db), principal: Principal = Depends(admin_only)):
    return {"success": True, "verification": _user_verification_to_public(_get_user_verification(db, verification_id))}


def _review_user(db, dispatcher, principal, verification_id: int, status: str, note: str | None) -> dict:
    v = _get_user_verification(db, verification_id)
    _review(db, v, principal, status, note)
    approved = status == VERIFICATION_APPROVED
    message = "Your identity verification was approved." if approved else "Your identity verification was rejected."
    if note:
        message += f" Note: {note}"
    dispatcher.send(
        db,
        receiver_id=v.user_id,
        receiver_role=Capability.USER.value,
        title="Verification Approved" if approved else "Verification Rejected",
        message=message,
    )
    return {"success": True, "verification": _user_verification_to_public(v)}


@router.patch("/users/{verification_id:int}/approve")
def approve_user_verification(
    verification_id: int,
    payload: ReviewRequest | None = None,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    principal: Principal = Depends(admin_only),
):
    return _review_user(db, dispatcher, principal, verification_id, VERIFICATION_APPROVED, payload.note if payload else None)


@router.patch("/users/{verification_id:int}/reject")
def reject_user_verification(
    verification_id: int,
    payload: ReviewRequest | None = None,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    principal: Principal = Depends(admin_only),
):
    return _review_user(db, dispatcher, principal, verification_id, VERIFICATION_REJECTED, payload.note if payload else None)


@router.delete("/users/{verification_id:int}")
def delete_user_verification(verification_id: int, db: Session = Depends(get_db), principal: Principal = Depends(admin_only)):
    v = _get_user_verification(db, verification_id)
    refs = [v.government_id, v.degree_certificate]
    try:
        db.delete(v)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    for ref in refs:
        if ref and ref.startswith("verifications/"):
            delete_stored(ref)
    return {"success": True, "message": "Verification deleted"}


# -------------------- institutes --------------------

@router.post("/institutes", status_code=201)
async def submit_institute_verification(
    telephone: str = Form(...),
    email: str = Form(...),
    admin_name: str = Form(...),
    admin_phone: str = Form(...),
    registration_certificate_url: str | None = Form(None),
    registration_certificate: UploadFile | None = File(None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(institute_only),
):
    existing = db.query(InstituteVerification).filter(InstituteVerification.institute_id == principal.id).first()
    if existing and existing.status != VERIFICATION_REJECTED:
        raise ConflictError(get_error_message("verification_exists"))

    fields = {
        "telephone": validate_string_field(telephone, "telephone", max_length=30),
        "email": validate_email(email),
        "admin_name": validate_string_field(admin_name, "admin_name", max_length=255),
        "admin_phone": validate_string_field(admin_phone, "admin_phone", max_length=30),
    }
    ref, was_stored = await _document(
        registration_certificate,
        registration_certificate_url,
        "registration_certificate",
        ["verifications", "institutes", str(principal.id)],
    )
    try:
        if existing:
            # A rejected request may be resubmitted.
            v = existing
            for key, value in fields.items():
                setattr(v, key, value)
            v.registration_certificate = ref
            v.status = VERIFICATION_PENDING
            v.admin_note = None
            v.reviewed_by = None
            v.reviewed_at = None
        else:
            v = InstituteVerification(institute_id=principal.id, registration_certificate=ref, **fields)
            db.add(v)
        db.commit()
    except IntegrityError:
        db.rollback()
        if was_stored:
            delete_stored(ref)
        raise ConflictError(get_error_message("verification_exists"))
    except SQLAlchemyError:
        db.rollback()
        if was_stored:
            delete_stored(ref)
        raise
    db.refresh(v)
    logger.info("Institute verification submitted id=%s institute_id=%s", v.id, principal.id)
    return {"success": True, "verification": _institute_verification_to_public(v)}


@router.get("/institutes")
def list_institute_verifications(
    status: str | None = Query(None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_only),
):
    q = db.query(InstituteVerification)
    if status:
        q = q.filter(InstituteVerification.status == status.strip().upper())
    rows = q.order_by(InstituteVerification.created_at.desc(), InstituteVerification.id.desc()).all()
    return {"success": True, "verifications": [_institute_verification_to_public(v) for v in rows]}


@router.get("/institutes/{institute_id:int}")
def institute_verification_status(
    institute_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(institute_or_admin),
):
    if principal.is_institute and principal.id != institute_id:
        raise ForbiddenError(get_error_message("forbidden"))
    v = db.query(InstituteVerification).filter(InstituteVerification.institute_id == institute_id).first()
    if not v:
        raise NotFoundError(get_error_message("verification_not_found"))
    return {"success": True, "verification": _institute_verification_to_public(v)}


def _review_institute(db, dispatcher, principal, verification_id: int, status: str, note: str | None) -> dict:
    v = db.query(InstituteVerification).filter(InstituteVerification.id == verification_id).first()
    if not v:
        raise NotFoundError(get_error_message("verification_not_found"))
    _review(db, v, principal, status, note)
    approved = status == VERIFICATION_APPROVED
    message = "Your institute verification was approved." if approved else "Your institute verification was rejected."
    if note:
        message += f" Note: {note}"
    dispatcher.send(
        db,
        receiver_id=v.institute_id,
        receiver_role=Capability.INSTITUTE.value,
        title="Verification Approved" if approved else "Verification Rejected",
        message=message,
    )
    return {"success": True, "verification": _institute_verification_to_public(v)}


@router.patch("/institutes/{verification_id:int}/approve")
def approve_institute_verification(
    verification_id: int,
    payload: ReviewRequest | None = None,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    principal: Principal = Depends(admin_only),
):
    return _review_institute(db, dispatcher, principal, verification_id, VERIFICATION_APPROVED, payload.note if payload else None)


@router.patch("/institutes/{verification_id:int}/reject")
def reject_institute_verification(
    verification_id: int,
    payload: ReviewRequest | None = None,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    principal: Principal = Depends(admin_only),
):
    return _review_institute(db, dispatcher, principal, verification_id, VERIFICATION_REJECTED, payload.note if payload else None)
