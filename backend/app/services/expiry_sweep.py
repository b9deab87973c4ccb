"""
Daily job sweep: deadline reminders, then expiry of overdue jobs.

Reminders are de-duplicated per (job, title) since the start of the current UTC day,
so re-running the sweep on the same day does not resend them.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import config
from ..models.job import JOB_ACTIVE, JOB_EXPIRED, Job
from ..models.notification import Notification
from ..utils.dates import start_of_day, utcnow
from ..utils.roles import Capability
from .notifications import EVENT_NOTIFICATION, NotificationDispatcher, build_notification, notification_to_public

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    reminders_sent: int = 0
    reminders_skipped: int = 0
    expired: int = 0
    reminded_job_ids: list[int] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "reminders_sent": self.reminders_sent,
            "reminders_skipped": self.reminders_skipped,
            "expired": self.expired,
            "reminded_job_ids": self.reminded_job_ids,
        }


def reminder_title(days: int) -> str:
    return f"Job Expiry Reminder: {days} Day{'' if days == 1 else 's'} Left"


def reminder_message(job_title: str, days: int) -> str:
    return (
        f'Your job posting "{job_title}" will expire in {days} day{"" if days == 1 else "s"}. '
        "Please renew it if you wish to keep it active."
    )


def _send_reminders(db: Session, now: datetime, days: int, result: SweepResult) -> list[Notification]:
    today = start_of_day(now)
    window_start = today + timedelta(days=days)
    window_end = window_start + timedelta(days=1)
    title = reminder_title(days)

    jobs = (
        db.query(Job)
        .filter(Job.status == JOB_ACTIVE, Job.deadline >= window_start, Job.deadline < window_end)
        .all()
    )
    created: list[Notification] = []
    for job in jobs:
        already = (
            db.query(Notification.id)
            .filter(
                Notification.related_job_id == job.id,
                Notification.title == title,
                Notification.created_at >= today,
            )
            .first()
        )
        if already:
            result.reminders_skipped += 1
            continue
        notification = build_notification(
            receiver_id=job.institute_id,
            receiver_role=Capability.INSTITUTE.value,
            title=title,
            message=reminder_message(job.title, days),
            related_job_id=job.id,
        )
        notification.created_at = now
        db.add(notification)
        created.append(notification)
        result.reminders_sent += 1
        result.reminded_job_ids.append(job.id)
    return created


def run_expiry_sweep(
    db: Session,
    now: datetime | None = None,
    *,
    reminder_days: list[int] | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> SweepResult:
    now = now or utcnow()
    result = SweepResult()

    try:
        created: list[Notification] = []
        for days in config.REMINDER_DAYS_BEFORE if reminder_days is None else reminder_days:
            created.extend(_send_reminders(db, now, days, result))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    if dispatcher is not None:
        for n in created:
            db.refresh(n)
            dispatcher.emit(n.receiver_role, n.receiver_id, EVENT_NOTIFICATION, notification_to_public(n))

    try:
        result.expired = (
            db.query(Job)
            .filter(Job.deadline < now, Job.status != JOB_EXPIRED)
            .update({Job.status: JOB_EXPIRED}, synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info(
        "Expiry sweep done reminders_sent=%s skipped=%s expired=%s",
        result.reminders_sent, result.reminders_skipped, result.expired,
    )
    return result
