import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from src.api.dependencies.company_context import CompanyContext, get_company_context
from src.database.session import get_db_session
from src.services.dashboard_service import DashboardNotFoundError, DashboardService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("")
async def get_dashboard(
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db_session),
):
    try:
        dashboard = DashboardService(db).get_dashboard(ctx.company_id)
    except DashboardNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Company not found")
    return {**dashboard, "is_impersonating": ctx.is_impersonating}
