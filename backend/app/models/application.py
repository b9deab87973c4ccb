from sqlalchemy import JSON, Column, Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base
from ..utils.dates import utcnow


class Application(Base):
    __tablename__ = "applications"
    __table_args__ = (
        UniqueConstraint("user_id", "job_id", name="uq_applications_user_job"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(40), nullable=False, default="APPLIED", index=True)
    # Either an uploaded file (relative to UPLOAD_DIR) or an external URL.
    resume_path = Column(String(500), nullable=True)
    resume_original_name = Column(String(255), nullable=True)
    resume_url = Column(String(500), nullable=True)
    cover_letter = Column(Text, nullable=True)
    experience_years = Column(Integer, nullable=True)
    current_position = Column(String(150), nullable=True)
    current_institute = Column(String(255), nullable=True)
    additional_details = Column(JSON, nullable=True)
    interview_type = Column(String(50), nullable=True)
    interview_date = Column(Date, nullable=True)
    interview_time = Column(String(20), nullable=True)
    interview_link = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    job = relationship("Job", back_populates="applications")
    user = relationship("User", back_populates="applications")
