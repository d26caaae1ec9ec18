"""
AI insight routes.

Endpoints:
- POST  /api/ai/insights - Generate and save an insight (rate limited)
- GET   /api/ai/insights - One insight by id, or a list by dateRange
- PATCH /api/ai/insights - Rate, comment on or archive an insight
- POST  /api/ai/summary  - Simple weekly summary (rate limited)

Request bodies use the camelCase field names the web client sends.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from src.api.dependencies.company_context import CompanyContext, get_company_context
from src.database.session import get_db_session
from src.insights.llm_client import LLMError, LLMNotConfiguredError
from src.middleware.rate_limit import rate_limit_dependency
from src.platform.errors import ExternalServiceError, PaymentRequiredError, ServiceUnavailableError
from src.services.insight_service import (
    DEFAULT_LIST_LIMIT,
    InsightFeatureNotAvailableError,
    InsightNotFoundError,
    InsightService,
    InvalidInsightUpdateError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ai", tags=["ai"])


# =============================================================================
# Request Models
# =============================================================================

class GenerateInsightRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    kpis: Optional[Dict[str, Any]] = None
    previous_kpis: Optional[Dict[str, Any]] = Field(None, alias="previousKpis")
    date_range: str = Field("7d", alias="dateRange")
    start_date: Optional[datetime] = Field(None, alias="startDate")
    end_date: Optional[datetime] = Field(None, alias="endDate")
    industry: Optional[str] = None
    language: str = "en"


class UpdateInsightRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    insight_id: str = Field(..., alias="insightId")
    quality_score: Optional[int] = Field(None, alias="qualityScore")
    user_feedback: Optional[str] = Field(None, alias="userFeedback")
    status: Optional[str] = None


class SummaryRequest(BaseModel):
    kpis: Optional[Dict[str, Any]] = None


def _raise_llm_error(e: LLMError) -> None:
    if isinstance(e, LLMNotConfiguredError):
        raise ServiceUnavailableError("AI service not configured")
    raise ExternalServiceError("openai", "Failed to generate insights")


# =============================================================================
# Endpoints
# =============================================================================

@router.post("/insights")
async def generate_insights(
    request: Request,
    body: GenerateInsightRequest,
    ctx: CompanyContext = Depends(get_company_context),
    _rate_limit=Depends(rate_limit_dependency("ai_insights", limit=10, window=3600)),
    db: Session = Depends(get_db_session),
):
    service = InsightService(db, correlation_id=getattr(request.state, "correlation_id", None))
    try:
        result = await service.generate_and_save(
            ctx.company_id,
            kpis=body.kpis or {},
            previous_kpis=body.previous_kpis,
            date_range=body.date_range,
            start_date=body.start_date,
            end_date=body.end_date,
            industry=body.industry,
            language=body.language,
            user_id=ctx.user.id,
        )
        db.commit()
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except InsightFeatureNotAvailableError as e:
        raise PaymentRequiredError(str(e))
    except LLMError as e:
        logger.error("Insight generation failed", extra={"company_id": ctx.company_id, "error": str(e)})
        _raise_llm_error(e)

    return {
        "success": True,
        "insights": result["insights"],
        "metadata": result["metadata"],
        "saved": True,
        "insight_id": result["insight_id"],
    }


@router.get("/insights")
async def get_insights(
    insight_id: Optional[str] = Query(None, alias="id"),
    date_range: str = Query("7d", alias="dateRange"),
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=100),
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db_session),
):
    service = InsightService(db)
    if insight_id:
        try:
            insight = service.get_insight(ctx.company_id, insight_id)
        except InsightNotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Insight not found")
        return {"success": True, "insight": insight.to_dict()}

    insights = service.list_insights(ctx.company_id, date_range=date_range, limit=limit)
    return {
        "success": True,
        "insights": [insight.to_dict() for insight in insights],
        "count": len(insights),
    }


@router.patch("/insights")
async def update_insight(
    request: Request,
    body: UpdateInsightRequest,
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db_session),
):
    service = InsightService(db, correlation_id=getattr(request.state, "correlation_id", None))
    try:
        insight = service.update_insight(
            ctx.company_id,
            body.insight_id,
            quality_score=body.quality_score,
            user_feedback=body.user_feedback,
            status=body.status,
            user_id=ctx.user.id,
        )
        db.commit()
    except InsightNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Insight not found")
    except InvalidInsightUpdateError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return {"success": True, "insight": insight.to_dict()}


@router.post("/summary")
async def generate_summary(
    body: SummaryRequest,
    ctx: CompanyContext = Depends(get_company_context),
    _rate_limit=Depends(rate_limit_dependency("ai_summary", limit=20, window=3600)),
    db: Session = Depends(get_db_session),
):
    try:
        summary = await InsightService(db).summarize(body.kpis or {})
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except LLMError as e:
        logger.error("Summary generation failed", extra={"company_id": ctx.company_id, "error": str(e)})
        _raise_llm_error(e)

    return {"success": True, "summary": summary}
