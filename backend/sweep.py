#!/usr/bin/env python3
"""
Daily job sweep: sends deadline reminders and expires overdue postings.

Run once a day from cron, e.g.

    0 0 * * * cd /srv/medjobs && python backend/sweep.py
"""

import logging
import sys
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

# Add repo root to path so `backend.app` resolves.
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from backend.app.config import LOG_LEVEL  # noqa: E402
from backend.app.database import SessionLocal, init_db  # noqa: E402
from backend.app.services.expiry_sweep import run_expiry_sweep  # noqa: E402

logger = logging.getLogger("sweep")


def main() -> int:
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    init_db()
    db = SessionLocal()
    try:
        result = run_expiry_sweep(db)
    except SQLAlchemyError:
        logger.exception("Expiry sweep failed")
        return 1
    finally:
        db.close()
    logger.info("Sweep result: %s", result.as_dict())
    return 0


if __name__ == "__main__":
    sys.exit(main())
