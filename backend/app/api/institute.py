import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.institute import Institute
from ..models.job import JOB_ACTIVE, Job
from ..models.view import SUBJECT_INSTITUTE
from ..services import job_postings
from ..services.institute_stats import institute_stats
from ..services.view_tracker import record_view
from ..utils.dates import iso
from ..utils.dependencies import get_optional_principal
from ..utils.error_handlers import ForbiddenError, NotFoundError, get_error_message
from ..utils.roles import Principal, institute_only, institute_or_admin
from ..utils.validation import validate_institute_role, validate_pagination, validate_string_field

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/institutes", tags=["Institutes"])


class InstituteUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=255)
    phone: str | None = Field(default=None, max_length=30)
    address: str | None = Field(default=None, max_length=255)
    city: str | None = Field(default=None, max_length=100)
    country: str | None = Field(default=None, max_length=100)
    website: str | None = Field(default=None, max_length=255)
    about: str | None = Field(default=None, max_length=5000)


def institute_to_public(institute: Institute, *, private: bool = False) -> dict:
    data = {
        "id": institute.id,
        "name": institute.name,
        "role": institute.role,
        "city": institute.city,
        "country": institute.country,
        "website": institute.website,
        "about": institute.about,
        "verification_status": institute.verification.status if institute.verification else None,
        "created_at": iso(institute.created_at),
    }
    if private:
        data.update({"email": institute.email, "phone": institute.phone, "address": institute.address})
    return data


def _get_institute(db: Session, institute_id: int) -> Institute:
    institute = db.query(Institute).filter(Institute.id == institute_id).first()
    if not institute:
        raise NotFoundError(get_error_message("not_found"))
    return institute


@router.get("/me")
def my_institute(db: Session = Depends(get_db), principal: Principal = Depends(institute_only)):
    return {"success": True, "institute": institute_to_public(_get_institute(db, principal.id), private=True)}


@router.put("/me")
def update_my_institute(
    payload: InstituteUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(institute_only),
):
    institute = _get_institute(db, principal.id)
    changes = payload.model_dump(exclude_unset=True)
    if "name" in changes:
        changes["name"] = validate_string_field(changes["name"], "name", min_length=2, max_length=255)
    for key, value in changes.items():
        setattr(institute, key, value)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(institute)
    return {"success": True, "institute": institute_to_public(institute, private=True)}


@router.get("")
def list_institutes(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    role: str | None = None,
    city: str | None = None,
    country: str | None = None,
    q: str | None = Query(None, max_length=100),
    db: Session = Depends(get_db),
):
    page, page_size = validate_pagination(page, page_size)
    query = db.query(Institute)
    if role:
        query = query.filter(Institute.role == validate_institute_role(role))
    if city:
        query = query.filter(Institute.city.ilike(city.strip()))
    if country:
        query = query.filter(Institute.country.ilike(country.strip()))
    if q and q.strip():
        like = f"%{q.strip()}%"
        query = query.filter(or_(Institute.name.ilike(like), Institute.about.ilike(like)))
    institutes, total = job_postings.paginate(query, page=page, page_size=page_size, order_by=(Institute.name.asc(), Institute.id.asc()))
    return {
        "success": True,
        "institutes": [institute_to_public(i) for i in institutes],
        "pagination": job_postings.pagination_meta(page=page, page_size=page_size, total=total),
    }


@router.get("/{institute_id:int}")
def get_institute(
    institute_id: int,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_optional_principal),
):
    institute = _get_institute(db, institute_id)
    # Owners looking at their own page are not counted.
    if not (principal is not None and principal.is_institute and principal.id == institute.id):
        record_view(db, SUBJECT_INSTITUTE, institute.id, principal)
    active_jobs = (
        db.query(Job.id)
        .filter(Job.institute_id == institute.id, Job.status == JOB_ACTIVE)
        .count()
    )
    return {"success": True, "institute": {**institute_to_public(institute), "active_jobs": active_jobs}}


@router.get("/{institute_id:int}/stats")
def get_institute_stats(
    institute_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(institute_or_admin),
):
    if principal.is_institute and principal.id != institute_id:
        raise ForbiddenError(get_error_message("forbidden"))
    _get_institute(db, institute_id)
    return {"success": True, "stats": institute_stats(db, institute_id)}
