from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base
from ..utils.dates import utcnow

JOB_ACTIVE = "active"
JOB_INACTIVE = "inactive"
JOB_EXPIRED = "expired"


class Job(Base):
    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, index=True)
    institute_id = Column(Integer, ForeignKey("institutes.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(150), nullable=False)
    description = Column(Text, nullable=True)
    requirements = Column(Text, nullable=True)
    job_type = Column(String(30), nullable=True)  # Full-time / Part-time / Contract / Internship
    role = Column(String(30), nullable=False)  # price category: Doctor / Other / Student
    speciality = Column(String(150), nullable=True)
    sub_speciality = Column(String(150), nullable=True)
    skills = Column(JSON, nullable=True)  # list[str]
    work_location = Column(String(20), nullable=False)  # On-site / Hybrid / Remote
    city = Column(String(100), nullable=True)
    country = Column(String(100), nullable=True)
    experience_level = Column(String(20), nullable=True)  # fresher / intermediate / experienced
    salary_min = Column(Integer, nullable=True)
    salary_max = Column(Integer, nullable=True)
    salary_currency = Column(String(5), nullable=True)
    contact_email = Column(String(255), nullable=True)
    contact_phone = Column(String(30), nullable=True)
    deadline = Column(DateTime, nullable=False, index=True)
    status = Column(String(20), nullable=False, default=JOB_ACTIVE, index=True)
    renewed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    institute = relationship("Institute", back_populates="jobs")
    # Deleting a job should also remove dependent applications at ORM level.
    applications = relationship("Application", back_populates="job", cascade="all, delete-orphan")
