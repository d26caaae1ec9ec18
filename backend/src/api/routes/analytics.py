"""
Analytics API routes.

Endpoints:
- GET /api/analytics/preview            - KPI preview (cached)
- GET /api/analytics/revenue-by-channel - Revenue by utm_source
- GET /api/analytics/top-revenue        - Top products by revenue
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from src.api.dependencies.company_context import CompanyContext, get_company_context
from src.database.session import get_db_session
from src.services.analytics_service import AnalyticsService
from src.services.company_service import AnalyticsNotConfiguredError, CompanyNotFoundError
from src.services.revenue_service import RevenueService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


@router.get("/preview")
async def get_preview(
    date_range: str = Query("30d", alias="dateRange"),
    funnel_type: str = Query("profile", alias="funnelType"),
    compare: bool = Query(False),
    refresh: bool = Query(False),
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db_session),
):
    try:
        kpis = await AnalyticsService(db).get_preview(
            ctx.company_id,
            date_range=date_range,
            funnel_type=funnel_type,
            compare=compare,
            refresh=refresh,
        )
    except CompanyNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Company not found")
    except AnalyticsNotConfiguredError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="PostHog not configured for this company",
        )
    return kpis


@router.get("/revenue-by-channel")
async def revenue_by_channel(
    date_from: str = Query("30d", alias="from"),
    date_to: str = Query("now", alias="to"),
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db_session),
):
    points = await RevenueService(db).get_revenue_by_channel(ctx.company_id, date_from, date_to)
    return {"data": points}


@router.get("/top-revenue")
async def top_revenue(
    date_from: str = Query("30d", alias="from"),
    date_to: str = Query("now", alias="to"),
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db_session),
):
    points = await RevenueService(db).get_top_revenue(ctx.company_id, date_from, date_to)
    return {"data": points}
