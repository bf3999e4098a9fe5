# services/api/admin_api/janitor_runner.py

import os
import time
import logging

from sqlalchemy.orm import Session as OrmSession

from .config import settings
from .db import SessionLocal
from .janitor import run_session_cleanup
from .logging_mw import configure_logging

LOG = logging.getLogger("admin_api.janitor")

def main():
    configure_logging(settings.LOG_LEVEL)
    sleep_seconds = int(os.getenv("JANITOR_SLEEP_SECONDS", "3600"))
    while True:
        try:
            db: OrmSession = SessionLocal()
            try:
                res = run_session_cleanup(db)
                LOG.info("cleanup_ok %s", res)
            finally:
                db.close()
        except Exception:
            LOG.exception("cleanup_failed")

        time.sleep(sleep_seconds)

if __name__ == "__main__":
    main()
