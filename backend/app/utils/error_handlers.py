"""
Centralized error handling and user-friendly error messages.
"""
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..config import APP_ENV

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base application error."""
    def __init__(self, message: str, status_code: int = 500, details: dict | None = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AppError):
    """Validation error."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, status_code=400, details=details)


class NotFoundError(AppError):
    """Resource not found error."""
    def __init__(self, message: str = "Resource not found", details: dict | None = None):
        super().__init__(message, status_code=404, details=details)


class UnauthorizedError(AppError):
    """Unauthorized access error."""
    def __init__(self, message: str = "Unauthorized access", details: dict | None = None):
        super().__init__(message, status_code=401, details=details)


class ForbiddenError(AppError):
    """Forbidden access error."""
    def __init__(self, message: str = "Access forbidden", details: dict | None = None):
        super().__init__(message, status_code=403, details=details)


class ConflictError(AppError):
    """Duplicate resource or state conflict."""
    def __init__(self, message: str = "Resource already exists", details: dict | None = None):
        super().__init__(message, status_code=409, details=details)


class InsufficientCreditsError(AppError):
    """Debit would take the balance below zero."""
    def __init__(self, required: int, available: int):
        self.required = int(required)
        self.available = int(available)
        super().__init__(
            get_error_message("insufficient_credits"),
            status_code=400,
            details={"required": self.required, "available": self.available},
        )


class InvalidTransitionError(ConflictError):
    """Application status change not allowed from the current status."""
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot move application from {current} to {target}.",
            details={"current_status": current, "target_status": target},
        )


# User-friendly error messages
ERROR_MESSAGES = {
    # Authentication
    "invalid_credentials": "Invalid email or password. Please try again.",
    "email_exists": "An account with this email already exists. Please login instead.",
    "weak_password": "Password must be at least 6 characters long.",
    "session_expired": "Your session has expired. Please login again.",
    "invalid_admin_key": "Invalid admin signup key.",

    # File uploads
    "file_too_large": "File is too large. Maximum size is 5MB.",
    "invalid_file_type": "Invalid file type for this upload.",
    "upload_failed": "Failed to store file. Please try again.",

    # Credits
    "no_credit_account": "No credits account found for this institute",
    "credit_account_exists": "Credits account already exists for this institute",
    "credit_account_not_found": "Credits account not found.",
    "insufficient_credits": "Insufficient credits to perform this action.",

    # Jobs
    "job_not_found": "Job posting not found or has been removed.",
    "job_closed": "This job posting is no longer accepting applications.",
    "job_not_expired": "Job is not expired",
    "job_expired": "Expired jobs must be renewed before they can be activated.",
    "already_applied": "You have already applied to this job.",
    "already_saved": "Job already saved.",
    "saved_job_not_found": "Saved job not found.",

    # Applications
    "application_not_found": "Application not found. It may have been withdrawn.",
    "no_resume": "Please upload a resume or provide a resume URL before applying.",
    "profile_incomplete": "Please complete your profile before applying to jobs.",

    # Messaging
    "conversation_not_found": "Conversation not found.",
    "not_participant": "You are not a participant in this conversation.",
    "empty_message": "Message must contain text or media.",

    # Notifications
    "notification_not_found": "Notification not found.",

    # Verification
    "verification_not_found": "Verification not found.",
    "verification_exists": "A verification request already exists.",

    # General
    "unauthorized": "Please login to access this feature.",
    "forbidden": "You don't have permission to access this resource.",
    "not_found": "The requested resource was not found.",
    "server_error": "Something went wrong on our end. Please try again later.",
    "database_error": "Database connection issue. Please try again later.",
    "validation_error": "Please check your input and try again.",
}


def get_error_message(error_key: str, default: str | None = None) -> str:
    """Get a user-friendly error message."""
    return ERROR_MESSAGES.get(error_key, default or ERROR_MESSAGES["server_error"])


def handle_database_error(error: Exception, operation: str = "") -> HTTPException:
    """Handle database errors with user-friendly messages."""
    logger.error(f"Database error during {operation}: {error}")

    error_str = str(error).lower()

    # Detect specific DB errors
    if "duplicate" in error_str or "unique" in error_str:
        return HTTPException(
            status_code=409,
            detail="This record already exists. Please check your input."
        )

    if "foreign key" in error_str:
        return HTTPException(
            status_code=400,
            detail="Invalid reference. The related record may have been deleted."
        )

    if "connection" in error_str or "operational" in error_str:
        return HTTPException(
            status_code=503,
            detail=get_error_message("database_error")
        )

    return HTTPException(
        status_code=500,
        detail=get_error_message("server_error")
    )


def create_error_response(
    status_code: int,
    message,
    details: dict | None = None
) -> JSONResponse:
    """Create a standardized error response."""
    content = {
        "success": False,
        "error": message,
        "status_code": status_code,
    }

    if details:
        content["details"] = details

    return JSONResponse(
        status_code=status_code,
        content=content
    )


def _internal_details(exc: Exception) -> dict | None:
    if APP_ENV != "development":
        return None
    root = getattr(exc, "orig", None)
    return {"type": type(exc).__name__, "message": str(root or exc)}


async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("AppError %s on %s: %s", exc.status_code, request.url.path, exc.message)
        return create_error_response(exc.status_code, exc.message, exc.details if APP_ENV == "development" else None)
    return create_error_response(exc.status_code, exc.message, exc.details)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTPException with user-friendly messages."""
    return create_error_response(exc.status_code, exc.detail)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    return create_error_response(
        422,
        get_error_message("validation_error"),
        {"errors": [
            {"loc": list(err.get("loc", [])), "msg": err.get("msg")}
            for err in exc.errors()
        ]},
    )


async def sqlalchemy_operational_error_handler(request: Request, exc: OperationalError):
    """Handle database operational errors."""
    logger.exception("Database OperationalError: %s", exc)
    return create_error_response(503, get_error_message("database_error"), _internal_details(exc))


async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError):
    """Handle general database errors."""
    logger.exception("Database SQLAlchemyError: %s", exc)
    return create_error_response(500, get_error_message("database_error"), _internal_details(exc))


async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors globally."""
    logger.exception("Unhandled exception: %s", exc)
    return create_error_response(500, get_error_message("server_error"), _internal_details(exc))


def register_exception_handlers(app: FastAPI) -> None:
    """Install the JSON error handlers on `app`."""
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(OperationalError, sqlalchemy_operational_error_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)
