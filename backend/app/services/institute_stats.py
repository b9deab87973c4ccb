from sqlalchemy.orm import Session

from ..models.application import Application
from ..models.job import Job
from ..models.view import SUBJECT_INSTITUTE, SUBJECT_JOB
from .view_tracker import count_views


def institute_stats(db: Session, institute_id: int) -> dict:
    """
    Dashboard numbers for one institute.

    response_rate = applications / job views (%), avg_response_time_hours = mean time
    from a job being posted to an application arriving.
    """
    job_rows = db.query(Job.id, Job.created_at, Job.status).filter(Job.institute_id == int(institute_id)).all()
    job_ids = [row.id for row in job_rows]
    job_created = {row.id: row.created_at for row in job_rows}

    applications = []
    if job_ids:
        applications = (
            db.query(Application.job_id, Application.created_at, Application.status)
            .filter(Application.job_id.in_(job_ids))
            .all()
        )

    job_views = count_views(db, SUBJECT_JOB, job_ids)
    profile_views = count_views(db, SUBJECT_INSTITUTE, [institute_id])
    total_applications = len(applications)

    deltas = [
        (a.created_at - job_created[a.job_id]).total_seconds() / 3600.0
        for a in applications
        if a.created_at and job_created.get(a.job_id)
    ]
    hired = sum(1 for a in applications if a.status == "HIRED")

    return {
        "total_jobs": len(job_ids),
        "active_jobs": sum(1 for row in job_rows if row.status == "active"),
        "total_job_views": job_views,
        "total_institute_profile_views": profile_views,
        "total_applications": total_applications,
        "average_response_rate": round(total_applications / job_views * 100, 2) if job_views else 0.0,
        "average_response_time_hours": round(sum(deltas) / len(deltas), 2) if deltas else 0.0,
        "conversion_rate": round(hired / total_applications * 100, 2) if total_applications else 0.0,
    }

