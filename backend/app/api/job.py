import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.job import Job
from ..models.user import User
from ..models.view import SUBJECT_JOB
from ..services import job_postings
from ..services.expiry_sweep import run_expiry_sweep
from ..services.matching import match_breakdown, rank_jobs
from ..services.notifications import NotificationDispatcher, get_dispatcher
from ..services.view_tracker import record_view
from ..utils.dates import parse_iso_datetime
from ..utils.dependencies import get_optional_principal
from ..utils.roles import Principal, admin_only, institute_only, user_only
from ..utils.validation import (
    validate_experience_level,
    validate_job_status,
    validate_pagination,
    validate_string_field,
    validate_work_location,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["Jobs"])


class JobCreate(BaseModel):
    title: str = Field(min_length=2, max_length=150)
    description: str | None = Field(default=None, max_length=10000)
    requirements: str | None = Field(default=None, max_length=10000)
    job_type: str | None = Field(default=None, max_length=30)
    role: str  # Doctor / Other / Student, drives the credit price
    speciality: str | None = Field(default=None, max_length=150)
    sub_speciality: str | None = Field(default=None, max_length=150)
    skills: list[str] | None = None
    work_location: str
    city: str | None = Field(default=None, max_length=100)
    country: str | None = Field(default=None, max_length=100)
    experience_level: str | None = None
    salary_min: int | None = Field(default=None, ge=0)
    salary_max: int | None = Field(default=None, ge=0)
    salary_currency: str | None = Field(default=None, max_length=5)
    contact_email: str | None = Field(default=None, max_length=255)
    contact_phone: str | None = Field(default=None, max_length=30)
    deadline: str  # ISO datetime string


class JobUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=2, max_length=150)
    description: str | None = Field(default=None, max_length=10000)
    requirements: str | None = Field(default=None, max_length=10000)
    job_type: str | None = Field(default=None, max_length=30)
    speciality: str | None = Field(default=None, max_length=150)
    sub_speciality: str | None = Field(default=None, max_length=150)
    skills: list[str] | None = None
    work_location: str | None = None
    city: str | None = Field(default=None, max_length=100)
    country: str | None = Field(default=None, max_length=100)
    experience_level: str | None = None
    salary_min: int | None = Field(default=None, ge=0)
    salary_max: int | None = Field(default=None, ge=0)
    salary_currency: str | None = Field(default=None, max_length=5)
    contact_email: str | None = Field(default=None, max_length=255)
    contact_phone: str | None = Field(default=None, max_length=30)
    deadline: str | None = None


def _clean_fields(raw: dict) -> dict:
    fields = dict(raw)
    if "title" in fields and fields["title"] is not None:
        fields["title"] = validate_string_field(fields["title"], "title", min_length=2, max_length=150)
    if "work_location" in fields and fields["work_location"] is not None:
        fields["work_location"] = validate_work_location(fields["work_location"])
    if "experience_level" in fields:
        fields["experience_level"] = validate_experience_level(fields["experience_level"])
    if "deadline" in fields:
        fields["deadline"] = parse_iso_datetime(fields["deadline"], "deadline")
    if fields.get("skills") is not None:
        fields["skills"] = [s.strip() for s in fields["skills"] if s and s.strip()]
    return fields


@router.post("", status_code=201)
def create_job(
    payload: JobCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(institute_only),
):
    fields = _clean_fields(payload.model_dump(exclude={"role"}))
    job = job_postings.create_job(db, principal.id, fields, role=payload.role)
    account = job.institute.credit_account
    return {
        "success": True,
        "message": "Job created successfully",
        "job": job_postings.job_to_public(job),
        "balance": account.balance if account else None,
    }


@router.get("")
def list_jobs(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    job_type: str | None = Query(None, alias="jobType"),
    location: str | None = Query(None, description="Work location mode"),
    experience_level: str | None = Query(None, alias="experienceLevel"),
    status: str | None = Query(None),
    speciality: str | None = None,
    city: str | None = None,
    country: str | None = None,
    q: str | None = Query(None, max_length=100),
    db: Session = Depends(get_db),
):
    page, page_size = validate_pagination(page, page_size)
    query = job_postings.filtered_jobs_query(
        db,
        status=validate_job_status(status),
        job_type=job_type,
        work_location=validate_work_location(location) if location else None,
        experience_level=validate_experience_level(experience_level),
        speciality=speciality,
        city=city,
        country=country,
        search=q,
    )
    jobs, total = job_postings.paginate(query, page=page, page_size=page_size, order_by=(Job.created_at.desc(), Job.id.desc()))
    return {
        "success": True,
        "jobs": [job_postings.job_to_public(j) for j in jobs],
        "pagination": job_postings.pagination_meta(page=page, page_size=page_size, total=total),
    }


@router.get("/mine")
def my_jobs(
    status: str | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(institute_only),
):
    query = job_postings.filtered_jobs_query(
        db,
        status=validate_job_status(status) if status else None,
        institute_id=principal.id,
    )
    jobs = query.order_by(Job.created_at.desc(), Job.id.desc()).all()
    counts = job_postings.application_counts(db, [j.id for j in jobs])
    return {
        "success": True,
        "jobs": [job_postings.job_to_public(j, application_count=counts.get(j.id, 0)) for j in jobs],
    }


@router.get("/recommended")
def recommended_jobs(
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    principal: Principal = Depends(user_only),
):
    user = db.query(User).filter(User.id == principal.id).first()
    jobs = job_postings.filtered_jobs_query(db).all()
    ranked = rank_jobs(jobs=jobs, user=user)[:limit] if user else []
    return {
        "success": True,
        "jobs": [{**job_postings.job_to_public(job), "match_score": score} for job, score in ranked],
    }


@router.get("/institute/{institute_id:int}")
def institute_jobs(institute_id: int, db: Session = Depends(get_db)):
    jobs = (
        job_postings.filtered_jobs_query(db, institute_id=institute_id)
        .order_by(Job.created_at.desc(), Job.id.desc())
        .all()
    )
    return {"success": True, "jobs": [job_postings.job_to_public(j) for j in jobs]}


@router.get("/{job_id:int}")
def get_job(
    job_id: int,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_optional_principal),
):
    job = job_postings.get_job(db, job_id)
    record_view(db, SUBJECT_JOB, job.id, principal)

    payload = job_postings.job_to_public(job)
    if principal is not None and principal.is_user:
        user = db.query(User).filter(User.id == principal.id).first()
        if user:
            payload["match"] = match_breakdown(job=job, user=user)
    return {"success": True, "job": payload}


@router.put("/{job_id:int}")
def update_job(
    job_id: int,
    payload: JobUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(institute_only),
):
    changes = _clean_fields(payload.model_dump(exclude_unset=True))
    job = job_postings.update_job(db, principal.id, job_id, changes)
    return {"success": True, "job": job_postings.job_to_public(job)}


@router.post("/{job_id:int}/renew")
def renew_job(
    job_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(institute_only),
):
    job, balance = job_postings.renew_job(db, principal.id, job_id)
    return {
        "success": True,
        "message": "Job renewed successfully",
        "job": job_postings.job_to_public(job),
        "balance": balance,
    }


@router.patch("/{job_id:int}/toggle-status")
def toggle_job_status(
    job_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(institute_only),
):
    job = job_postings.toggle_status(db, principal.id, job_id)
    return {"success": True, "job": job_postings.job_to_public(job)}


@router.delete("/{job_id:int}")
def delete_job(
    job_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(institute_only),
):
    job_postings.delete_job(db, principal.id, job_id)
    return {"success": True, "message": "Job deleted"}


@router.post("/expiry-sweep")
def trigger_expiry_sweep(
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    principal: Principal = Depends(admin_only),
):
    result = run_expiry_sweep(db, dispatcher=dispatcher)
    logger.info("Expiry sweep triggered by admin_id=%s", principal.id)
    return {"success": True, "result": result.as_dict()}
