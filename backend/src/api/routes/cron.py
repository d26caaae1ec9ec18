"""
Scheduled job endpoints, called by the platform scheduler.

Requests must carry Authorization: Bearer <CRON_SECRET>. With no secret
configured every request is rejected.
"""

import hmac
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from src.config.settings import get_cron_secret
from src.database.session import get_db_session
from src.services.digest_service import DigestService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"])


def require_cron_secret(request: Request) -> None:
    secret = get_cron_secret()
    header = request.headers.get("Authorization", "")
    expected = f"Bearer {secret}" if secret else None
    if not expected or not hmac.compare_digest(header.encode(), expected.encode()):
        logger.warning("Rejected cron request", extra={"path": request.url.path})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.post("/weekly-digest", dependencies=[Depends(require_cron_secret)])
async def weekly_digest(request: Request, db: Session = Depends(get_db_session)):
    service = DigestService(db, correlation_id=getattr(request.state, "correlation_id", None))
    return await service.run_weekly_digest()
