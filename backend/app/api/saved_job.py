import logging

from fastapi import APIRouter, Depends
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.saved_job import SavedJob
from ..services.job_postings import get_job, job_to_public
from ..utils.dates import iso
from ..utils.error_handlers import ConflictError, NotFoundError, get_error_message
from ..utils.roles import Principal, user_only

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/saved-jobs", tags=["Saved Jobs"])


@router.post("/{job_id:int}", status_code=201)
def save_job(job_id: int, db: Session = Depends(get_db), principal: Principal = Depends(user_only)):
    job = get_job(db, job_id)
    existing = db.query(SavedJob.id).filter(SavedJob.user_id == principal.id, SavedJob.job_id == job.id).first()
    if existing:
        raise ConflictError(get_error_message("already_saved"))

    saved = SavedJob(user_id=principal.id, job_id=job.id)
    try:
        db.add(saved)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(get_error_message("already_saved"))
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(saved)
    return {"success": True, "saved_job": {"id": saved.id, "job_id": saved.job_id, "created_at": iso(saved.created_at)}}


@router.delete("/{job_id:int}")
def unsave_job(job_id: int, db: Session = Depends(get_db), principal: Principal = Depends(user_only)):
    saved = db.query(SavedJob).filter(SavedJob.user_id == principal.id, SavedJob.job_id == job_id).first()
    if not saved:
        raise NotFoundError(get_error_message("saved_job_not_found"))
    try:
        db.delete(saved)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    return {"success": True, "message": "Job removed from saved list"}


@router.get("")
def list_saved_jobs(db: Session = Depends(get_db), principal: Principal = Depends(user_only)):
    rows = (
        db.query(SavedJob)
        .filter(SavedJob.user_id == principal.id)
        .order_by(SavedJob.created_at.desc(), SavedJob.id.desc())
        .all()
    )
    return {
        "success": True,
        "saved_jobs": [
            {"id": s.id, "saved_at": iso(s.created_at), "job": job_to_public(s.job)}
            for s in rows
            if s.job is not None
        ],
    }
