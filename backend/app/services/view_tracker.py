import logging
from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import config
from ..models.view import View
from ..utils.dates import utcnow

logger = logging.getLogger(__name__)


def record_view(
    db: Session,
    subject_type: str,
    subject_id: int,
    viewer=None,
    now: datetime | None = None,
) -> bool:
    """
    Record one view of (subject_type, subject_id); returns True if a row was stored.

    `viewer` is a Principal or None for anonymous traffic. The same identified viewer is
    counted at most once per VIEW_DEDUP_WINDOW_MINUTES; anonymous views are always stored.
    Failures are logged and swallowed so the calling request proceeds.
    """
    now = now or utcnow()
    viewer_id = getattr(viewer, "id", None)
    viewer_role = getattr(viewer, "kind", None)
    try:
        if viewer_id is not None:
            window_start = now - timedelta(minutes=config.VIEW_DEDUP_WINDOW_MINUTES)
            recent = (
                db.query(View.id)
                .filter(
                    View.subject_type == subject_type,
                    View.subject_id == int(subject_id),
                    View.viewer_role == viewer_role,
                    View.viewer_id == int(viewer_id),
                    View.viewed_at > window_start,
                )
                .first()
            )
            if recent:
                return False

        db.add(View(
            subject_type=subject_type,
            subject_id=int(subject_id),
            viewer_id=viewer_id,
            viewer_role=viewer_role,
            viewed_at=now,
        ))
        db.commit()
        return True
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning("Failed to record %s view id=%s: %s", subject_type, subject_id, e)
        return False


def count_views(db: Session, subject_type: str, subject_ids) -> int:
    ids = [int(i) for i in subject_ids]
    if not ids:
        return 0
    return int(
        db.query(func.count(View.id))
        .filter(View.subject_type == subject_type, View.subject_id.in_(ids))
        .scalar()
        or 0
    )
