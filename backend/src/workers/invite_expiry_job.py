"""
Invite Expiry Job.

Marks pending team invitations past their expiry as expired.

Run as a daily cron job (from backend/):
    python -m src.workers.invite_expiry_job
"""

import logging
import sys

from dotenv import load_dotenv

from src.database.session import get_db_session_sync
from src.services.team_service import TeamService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def run(session) -> int:
    expired = TeamService(session).expire_stale_invites()
    session.commit()
    return expired


def main():
    """Main entry point for the invite expiry job."""
    load_dotenv()
    logger.info("Invite Expiry Job starting")

    session = get_db_session_sync()
    try:
        expired = run(session)
        logger.info("Invite Expiry Job stats", extra={"expired": expired})
    except Exception as e:
        session.rollback()
        logger.error(
            "Invite Expiry Job failed",
            extra={"error": str(e)},
            exc_info=True
        )
        sys.exit(1)
    finally:
        session.close()

    logger.info("Invite Expiry Job finished")


if __name__ == "__main__":
    main()
