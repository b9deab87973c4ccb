from sqlalchemy import Column, DateTime, Index, Integer, String

from ..database import Base
from ..utils.dates import utcnow

SUBJECT_JOB = "job"
SUBJECT_INSTITUTE = "institute"


class View(Base):
    """Analytics-only view record; `viewer_id` is NULL for anonymous viewers."""
    __tablename__ = "views"
    __table_args__ = (
        Index("ix_views_subject_viewer", "subject_type", "subject_id", "viewer_role", "viewer_id", "viewed_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    subject_type = Column(String(20), nullable=False)
    subject_id = Column(Integer, nullable=False)
    viewer_id = Column(Integer, nullable=True)
    viewer_role = Column(String(20), nullable=True)
    viewed_at = Column(DateTime, nullable=False, default=utcnow)
