import os
from pathlib import Path
from dotenv import load_dotenv

# Override=True so changes in backend/.env take effect on process reload.
#
# For automated tests (SQLite), we need to prevent backend/.env from overriding the
# test DATABASE_URL. Set DISABLE_DOTENV=1 to skip loading .env.
if os.getenv("DISABLE_DOTENV") != "1":
    load_dotenv(override=True)


def _env_bool(name: str, default: str = "0") -> bool:
    return (os.getenv(name, default) or default).strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    return int(raw) if raw else default


_raw_database_url = (os.getenv("DATABASE_URL") or "").strip()
# Default to a local SQLite DB for dev so the backend can start out-of-the-box.
# Use an absolute path so it works regardless of current working directory.
_default_sqlite_path = (Path(__file__).resolve().parent.parent / "dev.db").as_posix()
DATABASE_URL = _raw_database_url or f"sqlite:///{_default_sqlite_path}"

# "development" exposes internal error details in 500 responses.
APP_ENV = (os.getenv("APP_ENV") or "production").strip().lower()
LOG_LEVEL = (os.getenv("LOG_LEVEL") or "INFO").strip().upper()
SQL_ECHO = _env_bool("SQL_ECHO", "0")

# File uploads
# Absolute path; override with UPLOAD_DIR in env (useful for tests).
UPLOAD_DIR = os.getenv("UPLOAD_DIR") or (Path(__file__).resolve().parent.parent / "uploads").as_posix()
MAX_UPLOAD_MB = _env_int("MAX_UPLOAD_MB", 5)

# Auth / JWT
# NOTE: keep a default for local dev so the server can boot even if SECRET_KEY isn't set.
SECRET_KEY = os.getenv("SECRET_KEY", "dev_secret_change_me")
ACCESS_TOKEN_EXPIRE_MINUTES = _env_int("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7)
# When set, admin signup must present this key.
ADMIN_SIGNUP_KEY = (os.getenv("ADMIN_SIGNUP_KEY") or "").strip()
COOKIE_SECURE = _env_bool("COOKIE_SECURE", "0")

# Jobs / sweep
JOB_RENEWAL_DAYS = _env_int("JOB_RENEWAL_DAYS", 30)
REMINDER_DAYS_BEFORE = [
    int(d) for d in (os.getenv("REMINDER_DAYS_BEFORE") or "1,7").split(",") if d.strip()
]

# Views
VIEW_DEDUP_WINDOW_MINUTES = _env_int("VIEW_DEDUP_WINDOW_MINUTES", 10)

FRONTEND_ORIGINS = [
    origin.strip()
    for origin in (os.getenv("FRONTEND_ORIGINS") or "").split(",")
    if origin.strip()
]
