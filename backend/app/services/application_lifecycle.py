"""
Application lifecycle: apply, guarded status transitions and their notifications.

Every transition checks, in order: the actor's capability, that the application
exists, that the actor owns it (institute owns the job / user owns the application),
and that the move is legal from the current status. Nothing is written when a check
fails. After the status write commits, exactly one notification goes to the
counterparty; a failed notification never undoes the transition.
"""
import logging
from dataclasses import dataclass
from datetime import date
from typing import Any

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.application import Application
from ..models.job import JOB_ACTIVE, Job
from ..models.user import User
from ..utils.dates import iso
from ..utils.error_handlers import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
    get_error_message,
)
from ..utils.roles import Capability, Principal
from .notifications import NotificationDispatcher
from .profile import profile_completeness

logger = logging.getLogger(__name__)

APPLIED = "APPLIED"
SHORTLISTED = "SHORTLISTED"
NEXT_ROUND_REQUESTED = "NEXT_ROUND_REQUESTED"
NEXT_ROUND_ACCEPTED = "NEXT_ROUND_ACCEPTED"
NEXT_ROUND_REJECTED = "NEXT_ROUND_REJECTED"
INTERVIEW_SCHEDULED = "INTERVIEW_SCHEDULED"
INTERVIEW_ACCEPTED = "INTERVIEW_ACCEPTED"
HIRED = "HIRED"
REJECTED = "REJECTED"

STATUSES = (
    APPLIED,
    SHORTLISTED,
    NEXT_ROUND_REQUESTED,
    NEXT_ROUND_ACCEPTED,
    NEXT_ROUND_REJECTED,
    INTERVIEW_SCHEDULED,
    INTERVIEW_ACCEPTED,
    HIRED,
    REJECTED,
)
TERMINAL_STATUSES = frozenset({HIRED, REJECTED})

TRANSITIONS: dict[str, frozenset[str]] = {
    APPLIED: frozenset({SHORTLISTED, NEXT_ROUND_REQUESTED, REJECTED}),
    SHORTLISTED: frozenset({NEXT_ROUND_REQUESTED, INTERVIEW_SCHEDULED, REJECTED}),
    NEXT_ROUND_REQUESTED: frozenset({NEXT_ROUND_ACCEPTED, NEXT_ROUND_REJECTED, REJECTED}),
    NEXT_ROUND_ACCEPTED: frozenset({INTERVIEW_SCHEDULED, REJECTED}),
    NEXT_ROUND_REJECTED: frozenset({REJECTED}),
    INTERVIEW_SCHEDULED: frozenset({INTERVIEW_ACCEPTED, REJECTED}),
    INTERVIEW_ACCEPTED: frozenset({HIRED, REJECTED}),
    HIRED: frozenset(),
    REJECTED: frozenset(),
}


# Edges the applicant may take; every other edge belongs to the institute.
USER_TRANSITIONS: dict[str, frozenset[str]] = {
    NEXT_ROUND_REQUESTED: frozenset({NEXT_ROUND_ACCEPTED, NEXT_ROUND_REJECTED}),
    INTERVIEW_SCHEDULED: frozenset({INTERVIEW_ACCEPTED, REJECTED}),
}


def can_transition(current: str, target: str, actor: Capability | None = None) -> bool:
    if target not in TRANSITIONS.get(current, frozenset()):
        return False
    if actor is Capability.USER:
        return target in USER_TRANSITIONS.get(current, frozenset())
    return True


@dataclass
class InterviewDetails:
    interview_type: str
    interview_date: date
    interview_time: str
    interview_link: str | None = None


def application_to_public(a: Application, *, include_job: bool = False, include_user: bool = False) -> dict[str, Any]:
    payload = {
        "id": a.id,
        "user_id": a.user_id,
        "job_id": a.job_id,
        "status": a.status,
        "resume_url": a.resume_url,
        "has_resume_file": bool(a.resume_path),
        "resume_original_name": a.resume_original_name,
        "cover_letter": a.cover_letter,
        "experience_years": a.experience_years,
        "current_position": a.current_position,
        "current_institute": a.current_institute,
        "additional_details": a.additional_details,
        "interview": {
            "type": a.interview_type,
            "date": a.interview_date.isoformat() if a.interview_date else None,
            "time": a.interview_time,
            "link": a.interview_link,
        } if a.interview_type else None,
        "created_at": iso(a.created_at),
        "updated_at": iso(a.updated_at),
    }
    if include_job and a.job is not None:
        payload["job"] = {
            "id": a.job.id,
            "title": a.job.title,
            "institute_id": a.job.institute_id,
            "institute_name": a.job.institute.name if a.job.institute else None,
            "status": a.job.status,
        }
    if include_user and a.user is not None:
        payload["user"] = {
            "id": a.user.id,
            "name": a.user.full_name,
            "email": a.user.email,
            "role": a.user.role,
            "speciality": a.user.speciality,
        }
    return payload


# -------------------- apply --------------------

def check_can_apply(db: Session, principal: Principal, job_id: int) -> tuple[User, Job]:
    """Every apply precondition that does not need the resume; raises on failure."""
    if principal.capability is not Capability.USER:
        raise ForbiddenError("User access only")

    user = db.query(User).filter(User.id == principal.id).first()
    if not user:
        raise NotFoundError("User not found")

    complete, missing = profile_completeness(user)
    if not complete:
        raise ValidationError(get_error_message("profile_incomplete"), details={"missing": missing})

    job = db.query(Job).filter(Job.id == int(job_id)).first()
    if not job:
        raise NotFoundError(get_error_message("job_not_found"))
    if job.status != JOB_ACTIVE:
        raise ValidationError(get_error_message("job_closed"))

    existing = (
        db.query(Application.id)
        .filter(Application.user_id == user.id, Application.job_id == job.id)
        .first()
    )
    if existing:
        raise ConflictError(get_error_message("already_applied"), details={"application_id": existing[0]})
    return user, job


def apply(
    db: Session,
    dispatcher: NotificationDispatcher,
    principal: Principal,
    job_id: int,
    *,
    resume_path: str | None = None,
    resume_original_name: str | None = None,
    resume_url: str | None = None,
    cover_letter: str | None = None,
    experience_years: int | None = None,
    current_position: str | None = None,
    current_institute: str | None = None,
    additional_details: dict | None = None,
) -> Application:
    """Create the APPLIED application and tell the institute."""
    if not resume_path and not resume_url:
        raise ValidationError(get_error_message("no_resume"))
    user, job = check_can_apply(db, principal, job_id)

    application = Application(
        user_id=user.id,
        job_id=job.id,
        status=APPLIED,
        resume_path=resume_path,
        resume_original_name=resume_original_name,
        resume_url=resume_url,
        cover_letter=cover_letter,
        experience_years=experience_years,
        current_position=current_position,
        current_institute=current_institute,
        additional_details=additional_details,
    )
    try:
        db.add(application)
        db.commit()
    except IntegrityError:
        # Lost a race against a concurrent apply for the same pair.
        db.rollback()
        raise ConflictError(get_error_message("already_applied"))
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(application)
    logger.info("Application created application_id=%s job_id=%s user_id=%s", application.id, job.id, user.id)

    dispatcher.send(
        db,
        receiver_id=job.institute_id,
        receiver_role=Capability.INSTITUTE.value,
        title="New Job Application",
        message=f"{user.full_name} applied for {job.title}.",
        related_job_id=job.id,
        related_application_id=application.id,
        status=APPLIED,
    )
    return application


# -------------------- transitions --------------------

def _load_for_actor(db: Session, principal: Principal, application_id: int, required: Capability) -> Application:
    if principal.capability is not required:
        raise ForbiddenError(f"{required.value.capitalize()} access only")

    application = db.query(Application).filter(Application.id == int(application_id)).first()
    if not application:
        raise NotFoundError(get_error_message("application_not_found"))

    if required is Capability.INSTITUTE:
        owner_id = application.job.institute_id if application.job else None
    else:
        owner_id = application.user_id
    if owner_id is None or int(owner_id) != int(principal.id):
        raise ForbiddenError(get_error_message("forbidden"))
    return application


def _transition(
    db: Session,
    dispatcher: NotificationDispatcher,
    principal: Principal,
    application_id: int,
    *,
    actor: Capability,
    target: str,
    title: str,
    message,
    changes: dict[str, Any] | None = None,
) -> Application:
    application = _load_for_actor(db, principal, application_id, actor)
    current = application.status
    if not can_transition(current, target, actor):
        raise InvalidTransitionError(current, target)

    application.status = target
    for key, value in (changes or {}).items():
        setattr(application, key, value)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(application)
    logger.info(
        "Application transition application_id=%s %s -> %s by %s:%s",
        application.id, current, target, principal.kind, principal.id,
    )

    job = application.job
    if actor is Capability.INSTITUTE:
        receiver_id, receiver_role = application.user_id, Capability.USER.value
    else:
        receiver_id, receiver_role = job.institute_id, Capability.INSTITUTE.value
    dispatcher.send(
        db,
        receiver_id=receiver_id,
        receiver_role=receiver_role,
        title=title,
        message=message(application) if callable(message) else message,
        related_job_id=job.id,
        related_application_id=application.id,
        status=target,
    )
    return application


def _job_title(db: Session, application_id: int) -> str:
    row = (
        db.query(Job.title)
        .join(Application, Application.job_id == Job.id)
        .filter(Application.id == int(application_id))
        .first()
    )
    return row[0] if row else "the job"


def shortlist(db: Session, dispatcher: NotificationDispatcher, principal: Principal, application_id: int) -> Application:
    title = _job_title(db, application_id)
    return _transition(
        db, dispatcher, principal, application_id,
        actor=Capability.INSTITUTE,
        target=SHORTLISTED,
        title="Application Shortlisted",
        message=f"Your application for {title} was shortlisted.",
    )


def request_next_round(db: Session, dispatcher: NotificationDispatcher, principal: Principal, application_id: int) -> Application:
    title = _job_title(db, application_id)
    return _transition(
        db, dispatcher, principal, application_id,
        actor=Capability.INSTITUTE,
        target=NEXT_ROUND_REQUESTED,
        title="Next Round Requested",
        message=f"The institute has requested a next round for {title}. Please accept or reject.",
    )


def respond_next_round(
    db: Session, dispatcher: NotificationDispatcher, principal: Principal, application_id: int, *, accept: bool
) -> Application:
    title = _job_title(db, application_id)
    verdict = "Accepted" if accept else "Rejected"
    return _transition(
        db, dispatcher, principal, application_id,
        actor=Capability.USER,
        target=NEXT_ROUND_ACCEPTED if accept else NEXT_ROUND_REJECTED,
        title=f"Next Round {verdict}",
        message=lambda a: f"{a.user.full_name} {verdict.lower()} the next round for {title}.",
    )


def schedule_interview(
    db: Session,
    dispatcher: NotificationDispatcher,
    principal: Principal,
    application_id: int,
    details: InterviewDetails,
) -> Application:
    title = _job_title(db, application_id)
    message = (
        f"Your {details.interview_type} interview for {title} is scheduled on "
        f"{details.interview_date.isoformat()} at {details.interview_time}."
    )
    if details.interview_link:
        message += f" Link: {details.interview_link}"
    return _transition(
        db, dispatcher, principal, application_id,
        actor=Capability.INSTITUTE,
        target=INTERVIEW_SCHEDULED,
        title="Interview Scheduled",
        message=message,
        changes={
            "interview_type": details.interview_type,
            "interview_date": details.interview_date,
            "interview_time": details.interview_time,
            "interview_link": details.interview_link,
        },
    )


def interview_decision(
    db: Session, dispatcher: NotificationDispatcher, principal: Principal, application_id: int, *, accept: bool
) -> Application:
    title = _job_title(db, application_id)
    verdict = "Accepted" if accept else "Rejected"
    return _transition(
        db, dispatcher, principal, application_id,
        actor=Capability.USER,
        target=INTERVIEW_ACCEPTED if accept else REJECTED,
        title=f"Interview Result: {verdict}",
        message=lambda a: f"{a.user.full_name} {verdict.lower()} the interview for {title}.",
    )


def hire(db: Session, dispatcher: NotificationDispatcher, principal: Principal, application_id: int) -> Application:
    title = _job_title(db, application_id)
    return _transition(
        db, dispatcher, principal, application_id,
        actor=Capability.INSTITUTE,
        target=HIRED,
        title="Congratulations! You are Hired",
        message=f"You have been hired for {title}.",
    )


def reject(
    db: Session, dispatcher: NotificationDispatcher, principal: Principal, application_id: int, *, reason: str | None = None
) -> Application:
    title = _job_title(db, application_id)
    message = f"Your application for {title} was rejected."
    if reason:
        message += f" Reason: {reason}"
    return _transition(
        db, dispatcher, principal, application_id,
        actor=Capability.INSTITUTE,
        target=REJECTED,
        title="Application Rejected",
        message=message,
    )


# -------------------- reads --------------------

def get_visible_application(db: Session, principal: Principal, application_id: int) -> Application:
    """The owning user or the institute that owns the job may see an application."""
    application = db.query(Application).filter(Application.id == int(application_id)).first()
    if not application:
        raise NotFoundError(get_error_message("application_not_found"))
    if principal.is_user and application.user_id == principal.id:
        return application
    if principal.is_institute and application.job and application.job.institute_id == principal.id:
        return application
    if principal.is_admin:
        return application
    raise ForbiddenError(get_error_message("forbidden"))


def user_stats(db: Session, user_id: int) -> dict[str, Any]:
    rows = (
        db.query(Application.status, func.count(Application.id))
        .filter(Application.user_id == int(user_id))
        .group_by(Application.status)
        .all()
    )
    by_status = {status: 0 for status in STATUSES}
    by_status.update({status: int(count) for status, count in rows})
    return {
        "applied": sum(by_status.values()),
        "interview_scheduled": by_status[INTERVIEW_SCHEDULED],
        "rejected": by_status[REJECTED],
        "hired": by_status[HIRED],
        "by_status": by_status,
    }


def delete_application(db: Session, principal: Principal, application_id: int) -> str | None:
    """Remove an application; returns its stored resume path so the caller can clean it up."""
    application = get_visible_application(db, principal, application_id)
    if principal.is_admin:
        raise ForbiddenError(get_error_message("forbidden"))
    resume_path = application.resume_path
    try:
        db.delete(application)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    logger.info("Application deleted application_id=%s by %s:%s", application_id, principal.kind, principal.id)
    return resume_path
