from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base
from ..utils.dates import utcnow

VERIFICATION_PENDING = "PENDING"
VERIFICATION_APPROVED = "APPROVED"
VERIFICATION_REJECTED = "REJECTED"
VERIFICATION_STATUSES = (VERIFICATION_PENDING, VERIFICATION_APPROVED, VERIFICATION_REJECTED)


class UserVerification(Base):
    __tablename__ = "user_verifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    full_name = Column(String(255), nullable=True)
    license_number = Column(String(100), nullable=True)
    issuing_authority = Column(String(255), nullable=True)
    # Each document is a stored upload path or a caller-supplied URL.
    government_id = Column(String(500), nullable=False)
    degree_certificate = Column(String(500), nullable=False)
    status = Column(String(20), nullable=False, default=VERIFICATION_PENDING, index=True)
    admin_note = Column(Text, nullable=True)
    reviewed_by = Column(Integer, ForeignKey("admins.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, server_default=func.now())

    user = relationship("User")


class InstituteVerification(Base):
    __tablename__ = "institute_verifications"

    id = Column(Integer, primary_key=True, index=True)
    institute_id = Column(Integer, ForeignKey("institutes.id", ondelete="CASCADE"), unique=True, nullable=False)
    telephone = Column(String(30), nullable=False)
    email = Column(String(255), nullable=False)
    admin_name = Column(String(255), nullable=False)
    admin_phone = Column(String(30), nullable=False)
    registration_certificate = Column(String(500), nullable=False)
    status = Column(String(20), nullable=False, default=VERIFICATION_PENDING, index=True)
    admin_note = Column(Text, nullable=True)
    reviewed_by = Column(Integer, ForeignKey("admins.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, server_default=func.now())

    institute = relationship("Institute", back_populates="verification")
