"""Repo-root Uvicorn entrypoint.

Allows running the backend from the repo root:

    uvicorn app.main:app --reload

The FastAPI app itself lives in `backend/app/main.py`.
"""

from backend.app.main import app  # re-export
