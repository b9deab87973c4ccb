"""
Job posting store: create / update / renew / toggle / delete, plus listing.

Creation and renewal charge the institute's credit account inside the same
transaction as the job write; any failure rolls both back.
"""
import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import config
from ..models.application import Application
from ..models.job import JOB_ACTIVE, JOB_EXPIRED, JOB_INACTIVE, Job
from ..utils.dates import iso, utcnow
from ..utils.error_handlers import (
    AppError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
    get_error_message,
)
from ..utils.validation import PHYSICAL_WORK_LOCATIONS
from . import credit_ledger

logger = logging.getLogger(__name__)

# Fields an institute may set on create/update (role is fixed at creation).
EDITABLE_FIELDS = (
    "title",
    "description",
    "requirements",
    "job_type",
    "speciality",
    "sub_speciality",
    "skills",
    "work_location",
    "city",
    "country",
    "experience_level",
    "salary_min",
    "salary_max",
    "salary_currency",
    "contact_email",
    "contact_phone",
    "deadline",
)


def job_to_public(job: Job, *, application_count: int | None = None) -> dict[str, Any]:
    payload = {
        "id": job.id,
        "institute_id": job.institute_id,
        "institute_name": job.institute.name if job.institute else None,
        "title": job.title,
        "description": job.description,
        "requirements": job.requirements,
        "job_type": job.job_type,
        "role": job.role,
        "speciality": job.speciality,
        "sub_speciality": job.sub_speciality,
        "skills": job.skills or [],
        "work_location": job.work_location,
        "city": job.city,
        "country": job.country,
        "experience_level": job.experience_level,
        "salary_min": job.salary_min,
        "salary_max": job.salary_max,
        "salary_currency": job.salary_currency,
        "contact_email": job.contact_email,
        "contact_phone": job.contact_phone,
        "deadline": iso(job.deadline),
        "status": job.status,
        "renewed_at": iso(job.renewed_at),
        "created_at": iso(job.created_at),
        "updated_at": iso(job.updated_at),
    }
    if application_count is not None:
        payload["application_count"] = application_count
    return payload


def apply_location_rule(fields: dict[str, Any]) -> None:
    """City/country are required for On-site/Hybrid and cleared for Remote."""
    if fields.get("work_location") in PHYSICAL_WORK_LOCATIONS:
        missing = [k for k in ("city", "country") if not fields.get(k)]
        if missing:
            raise ValidationError(
                f"{' and '.join(missing)} required for {fields['work_location']} jobs",
                details={"missing": missing},
            )
    else:
        fields["city"] = None
        fields["country"] = None


def validate_job_fields(fields: dict[str, Any], *, now: datetime) -> None:
    salary_min, salary_max = fields.get("salary_min"), fields.get("salary_max")
    if salary_min is not None and salary_max is not None and salary_min > salary_max:
        raise ValidationError("salary_min cannot be greater than salary_max")
    deadline = fields.get("deadline")
    if deadline is None:
        raise ValidationError("deadline is required")
    if deadline <= now:
        raise ValidationError("deadline must be in the future")
    apply_location_rule(fields)


def get_job(db: Session, job_id: int) -> Job:
    job = db.query(Job).filter(Job.id == int(job_id)).first()
    if not job:
        raise NotFoundError(get_error_message("job_not_found"))
    return job


def get_owned_job(db: Session, institute_id: int, job_id: int) -> Job:
    job = get_job(db, job_id)
    if int(job.institute_id) != int(institute_id):
        raise ForbiddenError(get_error_message("forbidden"))
    return job


def create_job(db: Session, institute_id: int, fields: dict[str, Any], *, role: str, now: datetime | None = None) -> Job:
    """Validate, charge the creation price and insert the job as one unit."""
    now = now or utcnow()
    role = credit_ledger.normalize_job_role(role)
    fields = {k: fields.get(k) for k in EDITABLE_FIELDS}
    validate_job_fields(fields, now=now)

    account = credit_ledger.find_account_by_institute(db, institute_id)
    if not account:
        raise ValidationError(get_error_message("no_credit_account"))

    try:
        job = Job(institute_id=int(institute_id), role=role, status=JOB_ACTIVE, **fields)
        db.add(job)
        db.flush()
        balance = credit_ledger.charge_job_creation(db, account, role, job.id)
        db.commit()
    except (AppError, SQLAlchemyError):
        db.rollback()
        raise
    db.refresh(job)
    logger.info("Job created job_id=%s institute_id=%s role=%s balance=%s", job.id, institute_id, role, balance)
    return job


def update_job(db: Session, institute_id: int, job_id: int, changes: dict[str, Any], *, now: datetime | None = None) -> Job:
    now = now or utcnow()
    job = get_owned_job(db, institute_id, job_id)
    changes = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS}

    merged = {k: getattr(job, k) for k in EDITABLE_FIELDS}
    merged.update(changes)
    salary_min, salary_max = merged.get("salary_min"), merged.get("salary_max")
    if salary_min is not None and salary_max is not None and salary_min > salary_max:
        raise ValidationError("salary_min cannot be greater than salary_max")
    if "deadline" in changes and (changes["deadline"] is None or changes["deadline"] <= now):
        raise ValidationError("deadline must be in the future")
    apply_location_rule(merged)

    for key in EDITABLE_FIELDS:
        if key in changes or key in ("city", "country"):
            setattr(job, key, merged[key])
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(job)
    return job


def renew_job(db: Session, institute_id: int, job_id: int, *, now: datetime | None = None) -> tuple[Job, int]:
    """
    Re-open an expired job for JOB_RENEWAL_DAYS and charge the renewal price.

    The new deadline extends the old one; if that is still in the past it runs from now.
    """
    now = now or utcnow()
    job = get_owned_job(db, institute_id, job_id)
    if job.status != JOB_EXPIRED:
        raise ValidationError(get_error_message("job_not_expired"))

    account = credit_ledger.find_account_by_institute(db, institute_id)
    if not account:
        raise ValidationError(get_error_message("no_credit_account"))

    window = timedelta(days=config.JOB_RENEWAL_DAYS)
    new_deadline = (job.deadline or now) + window
    if new_deadline < now:
        new_deadline = now + window

    try:
        balance = credit_ledger.charge_job_renewal(db, account, job.role, job.id)
        job.deadline = new_deadline
        job.status = JOB_ACTIVE
        job.renewed_at = now
        db.commit()
    except (AppError, SQLAlchemyError):
        db.rollback()
        raise
    db.refresh(job)
    logger.info("Job renewed job_id=%s deadline=%s balance=%s", job.id, new_deadline.isoformat(), balance)
    return job, balance


def toggle_status(db: Session, institute_id: int, job_id: int) -> Job:
    job = get_owned_job(db, institute_id, job_id)
    if job.status == JOB_EXPIRED:
        raise ValidationError(get_error_message("job_expired"))
    job.status = JOB_INACTIVE if job.status == JOB_ACTIVE else JOB_ACTIVE
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(job)
    logger.info("Job status toggled job_id=%s status=%s", job.id, job.status)
    return job


def delete_job(db: Session, institute_id: int, job_id: int) -> None:
    job = get_owned_job(db, institute_id, job_id)
    try:
        db.delete(job)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    logger.info("Job deleted job_id=%s institute_id=%s", job_id, institute_id)


def filtered_jobs_query(
    db: Session,
    *,
    status: str | None = JOB_ACTIVE,
    job_type: str | None = None,
    work_location: str | None = None,
    experience_level: str | None = None,
    institute_id: int | None = None,
    speciality: str | None = None,
    city: str | None = None,
    country: str | None = None,
    search: str | None = None,
):
    q = db.query(Job)
    if status:
        q = q.filter(Job.status == status)
    if job_type:
        q = q.filter(Job.job_type == job_type)
    if work_location:
        q = q.filter(Job.work_location == work_location)
    if experience_level:
        q = q.filter(Job.experience_level == experience_level)
    if institute_id is not None:
        q = q.filter(Job.institute_id == int(institute_id))
    if speciality:
        q = q.filter(func.lower(Job.speciality) == speciality.strip().lower())
    if city:
        q = q.filter(func.lower(Job.city) == city.strip().lower())
    if country:
        q = q.filter(func.lower(Job.country) == country.strip().lower())
    if search:
        like = f"%{search.strip().lower()}%"
        q = q.filter(or_(
            func.lower(Job.title).like(like),
            func.lower(Job.description).like(like),
            func.lower(Job.speciality).like(like),
        ))
    return q


def paginate(query, *, page: int, page_size: int, order_by) -> tuple[list, int]:
    total = query.order_by(None).count()
    items = query.order_by(*order_by).offset((page - 1) * page_size).limit(page_size).all()
    return items, total


def pagination_meta(*, page: int, page_size: int, total: int) -> dict[str, int]:
    return {
        "page": page,
        "page_size": page_size,
        "total": total,
        "total_pages": (total + page_size - 1) // page_size if page_size else 0,
    }


def application_counts(db: Session, job_ids: list[int]) -> dict[int, int]:
    if not job_ids:
        return {}
    rows = (
        db.query(Application.job_id, func.count(Application.id))
        .filter(Application.job_id.in_(job_ids))
        .group_by(Application.job_id)
        .all()
    )
    return {int(job_id): int(count) for job_id, count in rows}
