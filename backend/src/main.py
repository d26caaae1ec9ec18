"""
FastAPI application factory.

Run locally with:
    uvicorn src.main:app --reload
"""

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.routes import (
    admin,
    ai,
    analytics,
    billing,
    company,
    contact,
    cron,
    dashboard,
    health,
    onboarding,
    team,
    webhooks_stripe,
)
from src.config.settings import get_site_url
from src.platform.errors import ErrorHandlerMiddleware, register_error_handlers
from src.platform.health import get_health_checker

logger = logging.getLogger(__name__)

ROUTERS = (
    health.router,
    company.router,
    onboarding.router,
    analytics.router,
    ai.router,
    billing.router,
    webhooks_stripe.router,
    team.router,
    admin.router,
    cron.router,
    contact.router,
    dashboard.router,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    get_health_checker().log_config_status()
    logger.info("AskMe Analytics API started", extra={"routers": len(ROUTERS)})
    yield
    logger.info("AskMe Analytics API stopped")


def create_app() -> FastAPI:
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = FastAPI(title="AskMe Analytics API", version="1.0.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[get_site_url()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ErrorHandlerMiddleware)
    register_error_handlers(app)

    for router in ROUTERS:
        app.include_router(router)

    return app


app = create_app()
