import logging
import sys

from medcheck.core.config import settings
from medcheck.core.logging import setup_logging
from medcheck.db.session import SessionLocal
from medcheck.services.auth_service import ensure_staff_user

logger = logging.getLogger("medcheck.seed")


def seed_staff() -> int:
    if not settings.seed_staff_email or not settings.seed_staff_password:
        logger.error("seed_staff_skipped reason=SEED_STAFF_EMAIL and SEED_STAFF_PASSWORD must be set")
        return 1

    db = SessionLocal()
    try:
        staff = ensure_staff_user(db, settings.seed_staff_email, settings.seed_staff_password)
        logger.info("seed_staff_ensured id=%s email=%s", staff.id, staff.email)
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    setup_logging()
    sys.exit(seed_staff())
