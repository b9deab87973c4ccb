import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.profile import UserEducation, UserExperience, UserSkill, UserSpeciality
from ..models.user import User
from ..services.profile import completion_report
from ..utils.error_handlers import NotFoundError, ValidationError, get_error_message, handle_database_error
from ..utils.roles import Principal, user_only

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/profile", tags=["Profile"])


class ProfileUpdate(BaseModel):
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    phone: str | None = Field(default=None, max_length=30)
    city: str | None = Field(default=None, max_length=100)
    country: str | None = Field(default=None, max_length=100)
    speciality: str | None = Field(default=None, max_length=150)
    sub_speciality: str | None = Field(default=None, max_length=150)
    experience_years: int | None = Field(default=None, ge=0, le=80)
    bio: str | None = Field(default=None, max_length=5000)


class EducationIn(BaseModel):
    degree: str = Field(min_length=1, max_length=150)
    institution: str = Field(min_length=1, max_length=255)
    field_of_study: str | None = Field(default=None, max_length=150)
    start_date: date | None = None
    end_date: date | None = None


class ExperienceIn(BaseModel):
    title: str = Field(min_length=1, max_length=150)
    organization: str = Field(min_length=1, max_length=255)
    start_date: date | None = None
    end_date: date | None = None
    is_current: bool = False
    description: str | None = Field(default=None, max_length=5000)


class NamesIn(BaseModel):
    items: list[str]


def _load_user(db: Session, principal: Principal) -> User:
    user = db.query(User).filter(User.id == principal.id).first()
    if not user:
        raise HTTPException(status_code=401, detail=get_error_message("unauthorized"))
    return user


def _commit(db: Session, operation: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise handle_database_error(e, operation)


def _check_dates(start: date | None, end: date | None) -> None:
    if start and end and end < start:
        raise ValidationError("end_date cannot be before start_date")


def _education_to_public(e: UserEducation) -> dict:
    return {
        "id": e.id,
        "degree": e.degree,
        "institution": e.institution,
        "field_of_study": e.field_of_study,
        "start_date": e.start_date.isoformat() if e.start_date else None,
        "end_date": e.end_date.isoformat() if e.end_date else None,
    }


def _experience_to_public(e: UserExperience) -> dict:
    return {
        "id": e.id,
        "title": e.title,
        "organization": e.organization,
        "start_date": e.start_date.isoformat() if e.start_date else None,
        "end_date": e.end_date.isoformat() if e.end_date else None,
        "is_current": bool(e.is_current),
        "description": e.description,
    }


def _profile_to_public(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "role": user.role,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "phone": user.phone,
        "city": user.city,
        "country": user.country,
        "speciality": user.speciality,
        "sub_speciality": user.sub_speciality,
        "experience_years": user.experience_years,
        "bio": user.bio,
        "educations": [_education_to_public(e) for e in user.educations],
        "experiences": [_experience_to_public(e) for e in user.experiences],
        "skills": [s.name for s in user.skills],
        "specialities": [s.name for s in user.specialities],
    }


@router.get("")
def get_profile(db: Session = Depends(get_db), principal: Principal = Depends(user_only)):
    return {"success": True, "profile": _profile_to_public(_load_user(db, principal))}


@router.put("")
def update_profile(payload: ProfileUpdate, db: Session = Depends(get_db), principal: Principal = Depends(user_only)):
    user = _load_user(db, principal)
    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(user, key, value.strip() if isinstance(value, str) else value)
    _commit(db, "updating profile")
    db.refresh(user)
    return {"success": True, "profile": _profile_to_public(user)}


@router.get("/completion")
def profile_completion(db: Session = Depends(get_db), principal: Principal = Depends(user_only)):
    return {"success": True, "completion": completion_report(db, _load_user(db, principal))}


# -------------------- education --------------------

@router.get("/educations")
def list_educations(db: Session = Depends(get_db), principal: Principal = Depends(user_only)):
    return {"success": True, "educations": [_education_to_public(e) for e in _load_user(db, principal).educations]}


@router.post("/educations", status_code=201)
def add_education(payload: EducationIn, db: Session = Depends(get_db), principal: Principal = Depends(user_only)):
    _check_dates(payload.start_date, payload.end_date)
    entry = UserEducation(user_id=principal.id, **payload.model_dump())
    db.add(entry)
    _commit(db, "adding education")
    db.refresh(entry)
    return {"success": True, "education": _education_to_public(entry)}


def _owned_entry(db: Session, model, entry_id: int, principal: Principal):
    entry = db.query(model).filter(model.id == entry_id, model.user_id == principal.id).first()
    if not entry:
        raise NotFoundError(get_error_message("not_found"))
    return entry


@router.put("/educations/{entry_id:int}")
def update_education(
    entry_id: int, payload: EducationIn, db: Session = Depends(get_db), principal: Principal = Depends(user_only)
):
    _check_dates(payload.start_date, payload.end_date)
    entry = _owned_entry(db, UserEducation, entry_id, principal)
    for key, value in payload.model_dump().items():
        setattr(entry, key, value)
    _commit(db, "updating education")
    db.refresh(entry)
    return {"success": True, "education": _education_to_public(entry)}


@router.delete("/educations/{entry_id:int}")
def delete_education(entry_id: int, db: Session = Depends(get_db), principal: Principal = Depends(user_only)):
    db.delete(_owned_entry(db, UserEducation, entry_id, principal))
    _commit(db, "deleting education")
    return {"success": True, "message": "Education deleted"}


# -------------------- experience --------------------

@router.get("/experiences")
def list_experiences(db: Session = Depends(get_db), principal: Principal = Depends(user_only)):
    return {"success": True, "experiences": [_experience_to_public(e) for e in _load_user(db, principal).experiences]}


@router.post("/experiences", status_code=201)
def add_experience(payload: ExperienceIn, db: Session = Depends(get_db), principal: Principal = Depends(user_only)):
    _check_dates(payload.start_date, payload.end_date)
    entry = UserExperience(user_id=principal.id, **payload.model_dump())
    db.add(entry)
    _commit(db, "adding experience")
    db.refresh(entry)
    return {"success": True, "experience": _experience_to_public(entry)}


@router.put("/experiences/{entry_id:int}")
def update_experience(
    entry_id: int, payload: ExperienceIn, db: Session = Depends(get_db), principal: Principal = Depends(user_only)
):
    _check_dates(payload.start_date, payload.end_date)
    entry = _owned_entry(db, UserExperience, entry_id, principal)
    for key, value in payload.model_dump().items():
        setattr(entry, key, value)
    _commit(db, "updating experience")
    db.refresh(entry)
    return {"success": True, "experience": _experience_to_public(entry)}


@router.delete("/experiences/{entry_id:int}")
def delete_experience(entry_id: int, db: Session = Depends(get_db), principal: Principal = Depends(user_only)):
    db.delete(_owned_entry(db, UserExperience, entry_id, principal))
    _commit(db, "deleting experience")
    return {"success": True, "message": "Experience deleted"}


# -------------------- skills / specialities --------------------

def _replace_names(db: Session, model, user_id: int, names: list[str], max_length: int) -> list[str]:
    cleaned: list[str] = []
    seen: set[str] = set()
    for raw in names:
        name = (raw or "").strip()
        if not name or name.lower() in seen:
            continue
        if len(name) > max_length:
            raise ValidationError(f"'{name[:20]}...' is too long (max {max_length} characters)")
        seen.add(name.lower())
        cleaned.append(name)

    db.query(model).filter(model.user_id == user_id).delete(synchronize_session=False)
    for name in cleaned:
        db.add(model(user_id=user_id, name=name))
    _commit(db, f"replacing {model.__tablename__}")
    return cleaned


def _names(db: Session, model, user_id: int) -> list[str]:
    return [row.name for row in db.query(model).filter(model.user_id == user_id).order_by(model.id.asc()).all()]


@router.get("/skills")
def get_skills(db: Session = Depends(get_db), principal: Principal = Depends(user_only)):
    return {"success": True, "skills": _names(db, UserSkill, principal.id)}


@router.put("/skills")
def replace_skills(payload: NamesIn, db: Session = Depends(get_db), principal: Principal = Depends(user_only)):
    return {"success": True, "skills": _replace_names(db, UserSkill, principal.id, payload.items, 100)}


@router.delete("/skills")
def clear_skills(db: Session = Depends(get_db), principal: Principal = Depends(user_only)):
    _replace_names(db, UserSkill, principal.id, [], 100)
    return {"success": True, "skills": []}


@router.get("/specialities")
def get_specialities(db: Session = Depends(get_db), principal: Principal = Depends(user_only)):
    return {"success": True, "specialities": _names(db, UserSpeciality, principal.id)}


@router.put("/specialities")
def replace_specialities(payload: NamesIn, db: Session = Depends(get_db), principal: Principal = Depends(user_only)):
    return {"success": True, "specialities": _replace_names(db, UserSpeciality, principal.id, payload.items, 150)}


@router.delete("/specialities")
def clear_specialities(db: Session = Depends(get_db), principal: Principal = Depends(user_only)):
    _replace_names(db, UserSpeciality, principal.id, [], 150)
    return {"success": True, "specialities": []}
