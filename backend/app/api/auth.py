from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from .. import config
from ..database import get_db
from ..models.admin import Admin
from ..models.institute import Institute
from ..models.user import User
from ..utils.dependencies import ACCESS_TOKEN_COOKIE, get_current_principal
from ..utils.jwt import create_access_token
from ..utils.roles import ADMIN_ROLE, Capability, Principal, classify_role
from ..utils.security import hash_password, verify_password
from ..utils.validation import validate_any_role, validate_email, validate_password, validate_string_field
from ..utils.error_handlers import get_error_message, handle_database_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])

_MODEL_BY_CAPABILITY = {
    Capability.USER: User,
    Capability.INSTITUTE: Institute,
    Capability.ADMIN: Admin,
}


class SignupRequest(BaseModel):
    email: str
    password: str
    role: str  # DOCTOR / NURSE / STUDENT / HOSPITAL / CLINIC / LAB / PHARMACY / ADMIN
    name: str | None = Field(default=None, max_length=255)  # institute or admin name
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    city: str | None = Field(default=None, max_length=100)
    country: str | None = Field(default=None, max_length=100)
    admin_key: str | None = None


class LoginRequest(BaseModel):
    email: str
    password: str
    role: str | None = None  # optional role gate (frontend-selected role)


def _email_taken(db: Session, email: str) -> bool:
    return any(
        db.query(model.id).filter(model.email == email).first()
        for model in _MODEL_BY_CAPABILITY.values()
    )


def _identity_payload(identity, role: str, capability: Capability) -> dict:
    return {"id": identity.id, "email": identity.email, "role": role, "kind": capability.value}


def _issue_token(response: Response, identity, role: str) -> str:
    token = create_access_token({"sub": str(identity.id), "role": role})
    response.set_cookie(
        ACCESS_TOKEN_COOKIE,
        token,
        httponly=True,
        samesite="lax",
        secure=config.COOKIE_SECURE,
        max_age=config.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )
    return token


@router.post("/signup", status_code=201)
def signup(payload: SignupRequest, response: Response, db: Session = Depends(get_db)):
    email = validate_email(payload.email)
    validate_password(payload.password)
    role = validate_any_role(payload.role)
    capability = classify_role(role)

    if capability is Capability.ADMIN and config.ADMIN_SIGNUP_KEY and payload.admin_key != config.ADMIN_SIGNUP_KEY:
        raise HTTPException(status_code=403, detail=get_error_message("invalid_admin_key"))

    try:
        if _email_taken(db, email):
            raise HTTPException(status_code=400, detail=get_error_message("email_exists"))
    except SQLAlchemyError as e:
        raise handle_database_error(e, "checking existing account")

    hashed = hash_password(payload.password)

    if capability is Capability.USER:
        identity = User(
            email=email,
            password=hashed,
            role=role,
            first_name=validate_string_field(payload.first_name, "first_name", required=False, max_length=100),
            last_name=validate_string_field(payload.last_name, "last_name", required=False, max_length=100),
            city=payload.city,
            country=payload.country,
        )
    elif capability is Capability.INSTITUTE:
        identity = Institute(
            email=email,
            password=hashed,
            role=role,
            name=validate_string_field(payload.name, "name", min_length=2, max_length=255),
            city=payload.city,
            country=payload.country,
        )
    else:
        identity = Admin(email=email, password=hashed, name=payload.name)

    try:
        db.add(identity)
        db.commit()
        db.refresh(identity)
    except SQLAlchemyError as e:
        db.rollback()
        raise handle_database_error(e, "creating account")

    logger.info("Account created kind=%s id=%s role=%s", capability.value, identity.id, role)
    token = _issue_token(response, identity, role)
    return {
        "message": "Account created successfully",
        "user": _identity_payload(identity, role, capability),
        "access_token": token,
        "token_type": "bearer",
    }


@router.post("/login")
def login(payload: LoginRequest, response: Response, db: Session = Depends(get_db)):
    email = validate_email(payload.email)
    if not payload.password:
        raise HTTPException(status_code=400, detail="Password is required")

    found = None
    for capability, model in _MODEL_BY_CAPABILITY.items():
        identity = db.query(model).filter(model.email == email).first()
        if identity:
            found = (identity, capability)
            break

    if not found or not verify_password(payload.password, found[0].password):
        raise HTTPException(status_code=401, detail=get_error_message("invalid_credentials"))

    identity, capability = found
    role = ADMIN_ROLE if capability is Capability.ADMIN else identity.role

    if payload.role and payload.role.strip().upper() != role:
        raise HTTPException(
            status_code=403,
            detail="Role mismatch. Please select the correct account type.",
        )

    token = _issue_token(response, identity, role)
    return {
        "access_token": token,
        "token_type": "bearer",
        "user": _identity_payload(identity, role, capability),
    }


@router.post("/logout")
def logout(response: Response):
    response.delete_cookie(ACCESS_TOKEN_COOKIE)
    return {"message": "Logged out successfully"}


@router.get("/me")
def me(principal: Principal = Depends(get_current_principal), db: Session = Depends(get_db)):
    model = _MODEL_BY_CAPABILITY[principal.capability]
    identity = db.query(model).filter(model.id == principal.id).first()
    if not identity:
        raise HTTPException(status_code=401, detail=get_error_message("unauthorized"))
    return {"success": True, "user": _identity_payload(identity, principal.role, principal.capability)}
