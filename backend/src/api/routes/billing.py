"""
Billing API routes backed by Stripe.

Endpoints:
- GET  /api/billing/plans        - Active plans (public)
- GET  /api/billing/subscription - Current company subscription
- POST /api/billing/checkout     - Start a Stripe Checkout session
- POST /api/billing/portal       - Open the Stripe billing portal (owner only)

company_id is NEVER accepted from the request body.
"""

import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from src.api.dependencies.company_context import CompanyContext, get_company_context
from src.database.session import get_db_session
from src.platform.errors import ExternalServiceError, ServiceUnavailableError
from src.services.billing_service import (
    BillingNotConfiguredError,
    BillingPermissionError,
    BillingService,
    InvalidPlanError,
    StripeCustomerNotFoundError,
    StripeOperationError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/billing", tags=["billing"])


class CreateCheckoutRequest(BaseModel):
    """Request to create a checkout session."""
    model_config = ConfigDict(populate_by_name=True)

    plan_id: str = Field(..., alias="planId", min_length=1, description="Plan ID to subscribe to")
    interval: Literal["month", "year"] = "month"


def _service(request: Request, db: Session) -> BillingService:
    return BillingService(db, correlation_id=getattr(request.state, "correlation_id", None))


@router.get("/plans")
async def list_plans(db: Session = Depends(get_db_session)):
    """
    List all available subscription plans.

    This endpoint does not require company context.
    """
    plans = BillingService(db).list_plans()
    return {"plans": [plan.to_dict() for plan in plans]}


@router.get("/subscription")
async def get_subscription(
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db_session),
):
    subscription = BillingService(db).get_subscription(ctx.company_id)
    return {"subscription": subscription.to_dict() if subscription else None}


@router.post("/checkout")
async def create_checkout(
    request: Request,
    body: CreateCheckoutRequest,
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db_session),
):
    logger.info("Creating checkout session", extra={
        "company_id": ctx.company_id,
        "plan_id": body.plan_id,
        "interval": body.interval,
    })

    try:
        result = _service(request, db).create_checkout_session(
            ctx.company,
            user_email=ctx.user.email,
            plan_id=body.plan_id,
            interval=body.interval,
            user_id=ctx.user.id,
        )
        db.commit()
    except BillingNotConfiguredError:
        raise ServiceUnavailableError("Billing not configured")
    except InvalidPlanError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except StripeOperationError as e:
        raise ExternalServiceError("stripe", str(e))

    return result


@router.post("/portal")
async def create_portal(
    request: Request,
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db_session),
):
    try:
        result = _service(request, db).create_portal_session(ctx.company, ctx.user)
    except BillingNotConfiguredError:
        raise ServiceUnavailableError("Billing not configured")
    except BillingPermissionError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except StripeCustomerNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except StripeOperationError as e:
        raise ExternalServiceError("stripe", str(e))

    return result
