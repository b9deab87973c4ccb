import os
import sys
from datetime import timedelta
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient


# Ensure `import backend.app...` works regardless of where pytest is run from.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


@pytest.fixture(scope="session")
def test_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    return tmp_path_factory.mktemp("db") / "test.sqlite3"


@pytest.fixture()
def app(test_db_path: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> FastAPI:
    """
    Create a FastAPI app wired to a temporary SQLite DB.

    `backend.app.main` is not imported so startup hooks never touch the dev database.
    """
    # Must be set before importing app.config / app.database.
    os.environ["DISABLE_DOTENV"] = "1"
    os.environ["DATABASE_URL"] = f"sqlite+pysqlite:///{test_db_path}"
    os.environ["UPLOAD_DIR"] = str(test_db_path.parent / "uploads")
    os.environ["ADMIN_SIGNUP_KEY"] = ""

    from backend.app import config
    from backend.app import database as db

    monkeypatch.setattr(config, "UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setattr(config, "ADMIN_SIGNUP_KEY", "")

    engine = db.build_engine(os.environ["DATABASE_URL"])
    from sqlalchemy.orm import sessionmaker

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    # Patch the shared database module so router dependencies use the test DB.
    monkeypatch.setattr(db, "engine", engine)
    monkeypatch.setattr(db, "SessionLocal", TestingSessionLocal)

    # Import models so Base metadata is populated, then create tables.
    from backend.app import models  # noqa: F401

    db.Base.metadata.drop_all(bind=engine)
    db.Base.metadata.create_all(bind=engine)

    from backend.app.api import application as application_api
    from backend.app.api import auth as auth_api
    from backend.app.api import conversation as conversation_api
    from backend.app.api import credits as credits_api
    from backend.app.api import institute as institute_api
    from backend.app.api import job as job_api
    from backend.app.api import notification as notification_api
    from backend.app.api import profile as profile_api
    from backend.app.api import saved_job as saved_job_api
    from backend.app.api import verification as verification_api
    from backend.app.services.notifications import install_notifications
    from backend.app.utils.error_handlers import register_exception_handlers

    fastapi_app = FastAPI()
    for module in (
        auth_api,
        job_api,
        application_api,
        credits_api,
        notification_api,
        conversation_api,
        profile_api,
        saved_job_api,
        verification_api,
        institute_api,
    ):
        fastapi_app.include_router(module.router)
    fastapi_app.include_router(notification_api.ws_router)
    register_exception_handlers(fastapi_app)
    install_notifications(fastapi_app)

    yield fastapi_app
    engine.dispose()


@pytest.fixture()
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


@pytest.fixture()
def db_session(app: FastAPI):
    """
    Direct SQLAlchemy session bound to the same temporary SQLite DB used by the test app.
    """
    from backend.app import database

    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def registry(app: FastAPI):
    return app.state.connection_registry


@pytest.fixture()
def dispatcher(app: FastAPI):
    return app.state.notification_dispatcher


class RecordingConnection:
    """Stand-in live connection that keeps every pushed event."""

    def __init__(self, fail: bool = False):
        self.events: list[tuple[str, dict]] = []
        self.fail = fail

    def send(self, event: str, payload: dict) -> None:
        if self.fail:
            raise RuntimeError("socket gone")
        self.events.append((event, payload))

    def titles(self) -> list[str]:
        return [p.get("title") for e, p in self.events if e == "notification"]


@pytest.fixture()
def recording_connection():
    return RecordingConnection


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def make_account(client: TestClient):
    """Sign up an account through the API; returns {"id", "token", "headers", "role"}."""
    counter = {"n": 0}

    def _make(role: str, email: str | None = None, **extra) -> dict:
        counter["n"] += 1
        email = email or f"{role.lower()}{counter['n']}@example.com"
        body = {"email": email, "password": "Testpass123!", "role": role, **extra}
        if role.upper() in {"HOSPITAL", "CLINIC", "LAB", "PHARMACY"}:
            body.setdefault("name", f"{role.title()} {counter['n']}")
        else:
            body.setdefault("first_name", "Test")
            body.setdefault("last_name", f"Person{counter['n']}")
        r = client.post("/auth/signup", json=body)
        assert r.status_code == 201, r.text
        # Keep requests explicit: only the bearer header authenticates.
        client.cookies.clear()
        data = r.json()
        return {
            "id": data["user"]["id"],
            "token": data["access_token"],
            "headers": auth_headers(data["access_token"]),
            "role": data["user"]["role"],
            "email": email,
        }

    return _make


@pytest.fixture()
def fund(db_session):
    """Open a credit account for an institute with `balance` credits."""
    from backend.app.services import credit_ledger

    def _fund(institute_id: int, balance: int):
        account = credit_ledger.open_account(db_session, institute_id, balance)
        db_session.commit()
        db_session.refresh(account)
        return account

    return _fund


@pytest.fixture()
def complete_profile(db_session):
    """Give a user every profile section required to apply."""
    from backend.app.models.profile import UserEducation, UserExperience, UserSkill, UserSpeciality

    def _complete(user_id: int, *, experience: bool = True, speciality: str = "Cardiology"):
        db_session.add(UserEducation(user_id=user_id, degree="MBBS", institution="City Medical College"))
        db_session.add(UserSkill(user_id=user_id, name="Patient care"))
        db_session.add(UserSpeciality(user_id=user_id, name=speciality))
        if experience:
            db_session.add(UserExperience(user_id=user_id, title="Resident", organization="General Hospital"))
        db_session.commit()

    return _complete


def future_iso(days: int = 30) -> str:
    from backend.app.utils.dates import utcnow

    return (utcnow() + timedelta(days=days)).isoformat()


@pytest.fixture()
def post_job(client: TestClient):
    """Create a job through the API as the given institute."""

    def _post(headers: dict, *, expect: int = 201, **overrides):
        body = {
            "title": "Staff Cardiologist",
            "description": "Full-time cardiology role",
            "role": "Doctor",
            "speciality": "Cardiology",
            "skills": ["Echocardiography", "Patient care"],
            "work_location": "On-site",
            "city": "Lahore",
            "country": "Pakistan",
            "experience_level": "experienced",
            "deadline": future_iso(),
        }
        body.update(overrides)
        r = client.post("/jobs", json=body, headers=headers)
        assert r.status_code == expect, r.text
        return r.json()

    return _post


@pytest.fixture()
def resume_file():
    return ("resume.pdf", b"%PDF-1.4\n% minimal resume\n", "application/pdf")
