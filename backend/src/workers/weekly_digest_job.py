"""
Weekly Analytics Digest Job.

Emails every eligible company its weekly KPI summary with AI commentary.
Same flow as POST /api/cron/weekly-digest, for schedulers that run
commands instead of calling URLs.

Run as a weekly cron job (from backend/):
    python -m src.workers.weekly_digest_job
"""

import asyncio
import logging
import sys

from dotenv import load_dotenv

from src.database.session import get_db_session_sync
from src.services.digest_service import DigestService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def main():
    """Main entry point for the weekly digest job."""
    load_dotenv()
    logger.info("Weekly Digest Job starting")

    session = get_db_session_sync()
    try:
        result = asyncio.run(DigestService(session).run_weekly_digest())
        failed = [r for r in result["results"] if not r.get("success")]
        logger.info("Weekly Digest Job stats", extra={
            "processed": result["processed"],
            "failed": len(failed),
        })
    except Exception as e:
        logger.error(
            "Weekly Digest Job failed",
            extra={"error": str(e)},
            exc_info=True
        )
        sys.exit(1)
    finally:
        session.close()

    logger.info("Weekly Digest Job finished")


if __name__ == "__main__":
    main()
