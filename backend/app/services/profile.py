from sqlalchemy.orm import Session

from ..models.user import User
from ..models.verification import UserVerification
from .matching import user_specialities

STUDENT_ROLE = "STUDENT"


def profile_completeness(user: User) -> tuple[bool, list[str]]:
    """
    Whether `user` may apply to jobs, and which sections are missing.

    Education, skills and a speciality (profile field or speciality list) are always
    required; experience is required unless the user is a student.
    """
    missing: list[str] = []
    if not user.educations:
        missing.append("education")
    if not user.skills:
        missing.append("skills")
    if not user_specialities(user):
        missing.append("speciality")
    if (user.role or "").upper() != STUDENT_ROLE and not user.experiences:
        missing.append("experience")
    return not missing, missing


def latest_verification(db: Session, user_id: int) -> UserVerification | None:
    return (
        db.query(UserVerification)
        .filter(UserVerification.user_id == int(user_id))
        .order_by(UserVerification.created_at.desc(), UserVerification.id.desc())
        .first()
    )


def completion_report(db: Session, user: User) -> dict:
    complete, missing = profile_completeness(user)
    verification = latest_verification(db, user.id)
    return {
        "complete": complete,
        "missing": missing,
        "sections": {
            "education": len(user.educations),
            "experience": len(user.experiences),
            "skills": len(user.skills),
            "specialities": len(user_specialities(user)),
        },
        "verification_status": verification.status if verification else None,
    }
