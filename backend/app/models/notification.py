from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.sql import func

from ..database import Base
from ..utils.dates import utcnow


class Notification(Base):
    """Immutable except for `is_read`."""
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_receiver", "receiver_role", "receiver_id", "is_read"),
    )

    id = Column(Integer, primary_key=True, index=True)
    receiver_id = Column(Integer, nullable=False)
    receiver_role = Column(String(20), nullable=False)  # USER / INSTITUTE / ADMIN
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    related_job_id = Column(Integer, ForeignKey("jobs.id", ondelete="SET NULL"), nullable=True, index=True)
    related_application_id = Column(Integer, ForeignKey("applications.id", ondelete="SET NULL"), nullable=True)
    status = Column(String(40), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow, server_default=func.now(), index=True)
