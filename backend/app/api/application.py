import json
import logging
from datetime import date

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.application import Application
from ..services import application_lifecycle as lifecycle
from ..services.job_postings import get_owned_job
from ..services.notifications import NotificationDispatcher, get_dispatcher
from ..utils.dependencies import get_current_principal
from ..utils.error_handlers import get_error_message
from ..utils.roles import Principal, institute_only, user_only
from ..utils.storage import RESUME_CONTENT_TYPES, RESUME_EXTENSIONS, delete_stored, resolve_path, save_upload
from ..utils.validation import validate_integer_field, validate_string_field

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/applications", tags=["Applications"])


class RespondNextRoundRequest(BaseModel):
    status: str = Field(description="accept / reject")


class InterviewDecisionRequest(BaseModel):
    decision: str = Field(description="accept / reject")


class ScheduleInterviewRequest(BaseModel):
    interview_type: str = Field(min_length=2, max_length=50)  # e.g. Online / In-person / Phone
    interview_date: date
    interview_time: str = Field(min_length=1, max_length=20)
    interview_link: str | None = Field(default=None, max_length=500)


class RejectRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


def _accept_flag(value: str) -> bool:
    v = (value or "").strip().lower()
    if v in {"accept", "accepted"}:
        return True
    if v in {"reject", "rejected"}:
        return False
    raise HTTPException(status_code=400, detail="Value must be 'accept' or 'reject'")


def _parse_details(raw: str | None) -> dict | None:
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="additional_details must be valid JSON")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="additional_details must be a JSON object")
    return data


@router.post("/jobs/{job_id:int}/apply", status_code=201)
async def apply_to_job(
    job_id: int,
    file: UploadFile | None = File(None),
    resume_url: str | None = Form(None),
    cover_letter: str | None = Form(None),
    experience_years: int | None = Form(None),
    current_position: str | None = Form(None),
    current_institute: str | None = Form(None),
    additional_details: str | None = Form(None),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    principal: Principal = Depends(user_only),
):
    """
    Apply to a job with an uploaded resume (PDF/DOCX, max 5MB) or a resume URL.

    All non-resume preconditions are checked before the upload is stored.
    """
    resume_url = validate_string_field(resume_url, "resume_url", required=False, max_length=500)
    has_file = file is not None and bool(file.filename)
    if not has_file and not resume_url:
        raise HTTPException(status_code=400, detail=get_error_message("no_resume"))
    details = _parse_details(additional_details)
    experience_years = validate_integer_field(experience_years, "experience_years", min_value=0, max_value=80, required=False)

    user, _job = lifecycle.check_can_apply(db, principal, job_id)

    stored = None
    if has_file:
        stored = await save_upload(
            file,
            folder=["applications", str(job_id), str(user.id)],
            allowed_extensions=RESUME_EXTENSIONS,
            allowed_content_types=RESUME_CONTENT_TYPES,
        )

    try:
        application = lifecycle.apply(
            db,
            dispatcher,
            principal,
            job_id,
            resume_path=stored.rel_path if stored else None,
            resume_original_name=stored.original_filename if stored else None,
            resume_url=resume_url,
            cover_letter=validate_string_field(cover_letter, "cover_letter", required=False, max_length=5000),
            experience_years=experience_years,
            current_position=validate_string_field(current_position, "current_position", required=False, max_length=150),
            current_institute=validate_string_field(current_institute, "current_institute", required=False, max_length=255),
            additional_details=details,
        )
    except Exception:
        delete_stored(stored.rel_path if stored else None)
        raise

    return {
        "success": True,
        "message": "Application submitted successfully",
        "application": lifecycle.application_to_public(application, include_job=True),
    }


@router.get("/mine")
def my_applications(
    status: str | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(user_only),
):
    q = db.query(Application).filter(Application.user_id == principal.id)
    if status:
        q = q.filter(Application.status == status.strip().upper())
    rows = q.order_by(Application.created_at.desc(), Application.id.desc()).all()
    return {
        "success": True,
        "applications": [lifecycle.application_to_public(a, include_job=True) for a in rows],
    }


@router.get("/stats")
def my_application_stats(db: Session = Depends(get_db), principal: Principal = Depends(user_only)):
    return {"success": True, "stats": lifecycle.user_stats(db, principal.id)}


@router.get("/job/{job_id:int}")
def job_applications(
    job_id: int,
    status: str | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(institute_only),
):
    job = get_owned_job(db, principal.id, job_id)
    q = db.query(Application).filter(Application.job_id == job.id)
    if status:
        q = q.filter(Application.status == status.strip().upper())
    rows = q.order_by(Application.created_at.desc(), Application.id.desc()).all()
    return {
        "success": True,
        "applications": [lifecycle.application_to_public(a, include_user=True) for a in rows],
    }


@router.get("/{application_id:int}")
def get_application(
    application_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    a = lifecycle.get_visible_application(db, principal, application_id)
    return {
        "success": True,
        "application": lifecycle.application_to_public(a, include_job=True, include_user=True),
    }


@router.get("/{application_id:int}/resume")
def download_resume(
    application_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    a = lifecycle.get_visible_application(db, principal, application_id)
    if not a.resume_path:
        if a.resume_url:
            return {"success": True, "resume_url": a.resume_url}
        raise HTTPException(status_code=404, detail="Resume not found")
    path = resolve_path(a.resume_path)
    if not path.exists():
        raise HTTPException(status_code=404, detail="Resume file missing")
    return FileResponse(path, filename=a.resume_original_name or path.name)


@router.delete("/{application_id:int}")
def delete_application(
    application_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    resume_path = lifecycle.delete_application(db, principal, application_id)
    delete_stored(resume_path)
    return {"success": True, "message": "Application deleted"}


def _transition_response(a: Application) -> dict:
    return {"success": True, "application": lifecycle.application_to_public(a)}


@router.patch("/{application_id:int}/shortlist")
def shortlist(
    application_id: int,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    principal: Principal = Depends(get_current_principal),
):
    return _transition_response(lifecycle.shortlist(db, dispatcher, principal, application_id))


@router.patch("/{application_id:int}/request-next-round")
def request_next_round(
    application_id: int,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    principal: Principal = Depends(get_current_principal),
):
    return _transition_response(lifecycle.request_next_round(db, dispatcher, principal, application_id))


@router.patch("/{application_id:int}/respond-next-round")
def respond_next_round(
    application_id: int,
    payload: RespondNextRoundRequest,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    principal: Principal = Depends(get_current_principal),
):
    accept = _accept_flag(payload.status)
    return _transition_response(
        lifecycle.respond_next_round(db, dispatcher, principal, application_id, accept=accept)
    )


@router.patch("/{application_id:int}/schedule-interview")
def schedule_interview(
    application_id: int,
    payload: ScheduleInterviewRequest,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    principal: Principal = Depends(get_current_principal),
):
    details = lifecycle.InterviewDetails(
        interview_type=payload.interview_type.strip(),
        interview_date=payload.interview_date,
        interview_time=payload.interview_time.strip(),
        interview_link=(payload.interview_link or "").strip() or None,
    )
    return _transition_response(lifecycle.schedule_interview(db, dispatcher, principal, application_id, details))


@router.patch("/{application_id:int}/interview-decision")
def interview_decision(
    application_id: int,
    payload: InterviewDecisionRequest,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    principal: Principal = Depends(get_current_principal),
):
    accept = _accept_flag(payload.decision)
    return _transition_response(
        lifecycle.interview_decision(db, dispatcher, principal, application_id, accept=accept)
    )


@router.patch("/{application_id:int}/hire")
def hire(
    application_id: int,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    principal: Principal = Depends(get_current_principal),
):
    return _transition_response(lifecycle.hire(db, dispatcher, principal, application_id))


@router.patch("/{application_id:int}/reject")
def reject(
    application_id: int,
    payload: RejectRequest | None = None,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    principal: Principal = Depends(get_current_principal),
):
    reason = payload.reason if payload else None
    return _transition_response(lifecycle.reject(db, dispatcher, principal, application_id, reason=reason))
