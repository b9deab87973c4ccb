"""
Validation utilities for input validation and error handling.
"""
import re
from typing import Any
from fastapi import HTTPException

from .roles import ADMIN_ROLE, INSTITUTE_ROLES, USER_ROLES, normalize_role

WORK_LOCATIONS = ("On-site", "Hybrid", "Remote")
# Work-location modes that need a physical city/country.
PHYSICAL_WORK_LOCATIONS = ("On-site", "Hybrid")
EXPERIENCE_LEVELS = ("fresher", "intermediate", "experienced")
JOB_STATUSES = ("active", "inactive", "expired")


def validate_email(email: str) -> str:
    """Validate email format."""
    if not email or not isinstance(email, str):
        raise HTTPException(status_code=400, detail="Email is required")

    email = email.strip().lower()
    if len(email) > 255:
        raise HTTPException(status_code=400, detail="Email too long (max 255 characters)")

    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    if not re.match(pattern, email):
        raise HTTPException(status_code=400, detail="Invalid email format")

    return email


def validate_password(password: str) -> None:
    """Validate password strength."""
    if not password or not isinstance(password, str):
        raise HTTPException(status_code=400, detail="Password is required")

    if len(password) < 6:
        raise HTTPException(status_code=400, detail="Password must be at least 6 characters")

    if len(password) > 128:
        raise HTTPException(status_code=400, detail="Password too long (max 128 characters)")


def validate_string_field(
    value: Any,
    field_name: str,
    min_length: int = 1,
    max_length: int = 1000,
    required: bool = True,
    pattern: str | None = None,
) -> str | None:
    """Validate a string field with common rules."""
    if value is None:
        if required:
            raise HTTPException(status_code=400, detail=f"{field_name} is required")
        return None

    if not isinstance(value, str):
        raise HTTPException(status_code=400, detail=f"{field_name} must be a string")

    value = value.strip()

    if not value:
        if required:
            raise HTTPException(status_code=400, detail=f"{field_name} cannot be empty")
        return None

    if len(value) < min_length:
        raise HTTPException(
            status_code=400,
            detail=f"{field_name} must be at least {min_length} characters"
        )

    if len(value) > max_length:
        raise HTTPException(
            status_code=400,
            detail=f"{field_name} must not exceed {max_length} characters"
        )

    if pattern and not re.match(pattern, value):
        raise HTTPException(status_code=400, detail=f"{field_name} format is invalid")

    return value


def validate_integer_field(
    value: Any,
    field_name: str,
    min_value: int | None = None,
    max_value: int | None = None,
    required: bool = True,
) -> int | None:
    """Validate an integer field."""
    if value is None:
        if required:
            raise HTTPException(status_code=400, detail=f"{field_name} is required")
        return None

    if not isinstance(value, int):
        try:
            value = int(value)
        except (ValueError, TypeError):
            raise HTTPException(status_code=400, detail=f"{field_name} must be a valid integer")

    if min_value is not None and value < min_value:
        raise HTTPException(
            status_code=400,
            detail=f"{field_name} must be at least {min_value}"
        )

    if max_value is not None and value > max_value:
        raise HTTPException(
            status_code=400,
            detail=f"{field_name} must not exceed {max_value}"
        )

    return value


def _validate_choice(value: str | None, field_name: str, choices) -> str:
    if value not in choices:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid {field_name}. Must be one of: {', '.join(choices)}"
        )
    return value


def validate_institute_role(role: str) -> str:
    """Institute kind (HOSPITAL / CLINIC / LAB / PHARMACY)."""
    if not role:
        raise HTTPException(status_code=400, detail="Role is required")
    return _validate_choice(normalize_role(role), "role", INSTITUTE_ROLES)


def validate_any_role(role: str) -> str:
    if not role:
        raise HTTPException(status_code=400, detail="Role is required")
    return _validate_choice(normalize_role(role), "role", (*USER_ROLES, *INSTITUTE_ROLES, ADMIN_ROLE))


def validate_job_status(status: str | None) -> str:
    """Validate job status."""
    if not status:
        return "active"
    return _validate_choice(status.strip().lower(), "status", JOB_STATUSES)


def validate_work_location(value: str | None) -> str:
    if not value:
        raise HTTPException(status_code=400, detail="workLocation is required")
    # Accept case variants like "on-site" / "REMOTE".
    for loc in WORK_LOCATIONS:
        if loc.lower() == value.strip().lower():
            return loc
    return _validate_choice(value, "workLocation", WORK_LOCATIONS)


def validate_experience_level(value: str | None) -> str | None:
    if not value:
        return None
    return _validate_choice(value.strip().lower(), "experienceLevel", EXPERIENCE_LEVELS)


def validate_pagination(page: int | None, page_size: int | None, *, default_size: int = 20, max_size: int = 100) -> tuple[int, int]:
    page = validate_integer_field(page if page is not None else 1, "page", min_value=1)
    page_size = validate_integer_field(
        page_size if page_size is not None else default_size, "pageSize", min_value=1, max_value=max_size
    )
    return page, page_size


def sanitize_filename(filename: str) -> str:
    """Sanitize filename to prevent directory traversal and other attacks."""
    if not filename:
        raise HTTPException(status_code=400, detail="Filename is required")

    # Remove any path separators
    filename = filename.replace("/", "_").replace("\\", "_")

    # Remove any null bytes
    filename = filename.replace("\x00", "")

    # Remove directory traversal sequences
    filename = filename.replace("..", "_")

    # Remove leading dots to prevent hidden files
    filename = filename.lstrip(".")

    if len(filename) > 255:
        raise HTTPException(status_code=400, detail="Filename too long")

    if not filename or filename == "_":
        raise HTTPException(status_code=400, detail="Invalid filename")

    return filename
