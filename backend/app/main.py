import logging

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from . import database
from .api import application as application_api
from .api import auth as auth_api
from .api import conversation as conversation_api
from .api import credits as credits_api
from .api import institute as institute_api
from .api import job as job_api
from .api import notification as notification_api
from .api import profile as profile_api
from .api import saved_job as saved_job_api
from .api import verification as verification_api
from .config import FRONTEND_ORIGINS, LOG_LEVEL
from .services.notifications import install_notifications
from .utils.error_handlers import register_exception_handlers

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Healthcare Jobs API")

app.include_router(auth_api.router)
app.include_router(job_api.router)
app.include_router(application_api.router)
app.include_router(credits_api.router)
app.include_router(notification_api.router)
app.include_router(notification_api.ws_router)
app.include_router(conversation_api.router)
app.include_router(profile_api.router)
app.include_router(saved_job_api.router)
app.include_router(verification_api.router)
app.include_router(institute_api.router)

register_exception_handlers(app)
install_notifications(app)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {
        "status": "Backend running",
        "service": "Healthcare Jobs API"
    }


_default_origins = ["http://localhost:5173", "http://127.0.0.1:5173"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=[*_default_origins, *FRONTEND_ORIGINS],
    allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup() -> None:
    try:
        database.init_db()
        app.state.db_init_error = None
    except SQLAlchemyError as e:
        logger.exception("Database init failed")
        app.state.db_init_error = str(e)


@app.get("/db/health")
def db_health():
    if getattr(app.state, "db_init_error", None):
        raise HTTPException(
            status_code=503,
            detail=f"DB init failed: {app.state.db_init_error}",
        )

    try:
        with database.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        raise HTTPException(
            status_code=503,
            detail=f"DB connection failed: {e}",
        )

    return {"status": "ok"}
