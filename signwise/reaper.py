"""
CLI entrypoint for the expired refresh-token cleanup. The API process already
runs it daily; use this from cron when the in-process schedule is disabled:

  python -m signwise.reaper

e.g. 0 0 * * * cd /path/to/signwise && .venv/bin/python -m signwise.reaper
"""

import logging
import sys

from signwise.core.config import configure_logging, get_settings
from signwise.core.database import SessionLocal
from signwise.services.reaper import run_token_reaper

logger = logging.getLogger(__name__)


def main() -> int:
    """Run one sweep: delete expired, unrevoked refresh tokens."""
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    db = SessionLocal()
    try:
        deleted = run_token_reaper(db, settings, logger)
        logger.info("Token reaper completed: tokens_deleted=%s", deleted)
        return 0
    except Exception as e:
        logger.exception("Token reaper failed: %s", e)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
