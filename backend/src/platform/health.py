"""
Service health checks.

- Database connectivity (SELECT 1)
- Required / optional environment variables
- Which third-party integrations are configured

Secret values are never included in the report or the logs.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

SERVICE_NAME = "askme-analytics-api"

REQUIRED_ENV_VARS = [
    "DATABASE_URL",
    "AUTH_JWT_SECRET",
]

OPTIONAL_ENV_VARS = [
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "RESEND_API_KEY",
    "OPENAI_API_KEY",
    "REDIS_URL",
    "POSTHOG_ENCRYPTION_KEY",
    "CRON_SECRET",
]

# Integration name -> variable that enables it
INTEGRATION_ENV_VARS = {
    "stripe": "STRIPE_SECRET_KEY",
    "resend": "RESEND_API_KEY",
    "openai": "OPENAI_API_KEY",
    "redis": "REDIS_URL",
}


class HealthChecker:
    """Health check service used by the /health endpoint."""

    def __init__(self):
        self.db_url = os.getenv("DATABASE_URL")
        self._db_engine = None

    def check_database(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Returns:
            Dict with 'status' (ok/error) and 'message'
        """
        if not self.db_url:
            return {"status": "error", "message": "DATABASE_URL not configured"}

        try:
            if not self._db_engine:
                self._db_engine = create_engine(self.db_url, pool_pre_ping=True)

            with self._db_engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()

            return {"status": "ok", "message": "Database connection successful"}
        except SQLAlchemyError as e:
            logger.error("Database connection failed", extra={"error": str(e)})
            return {"status": "error", "message": "Database connection failed"}

    def check_environment_variables(self) -> Dict[str, Any]:
        """
        Check required environment variables are present.

        Returns:
            Dict with 'status', 'present', and 'missing' lists
        """
        present = [var for var in REQUIRED_ENV_VARS + OPTIONAL_ENV_VARS if os.getenv(var)]
        missing = [var for var in REQUIRED_ENV_VARS if not os.getenv(var)]

        return {
            "status": "ok" if not missing else "error",
            "present": present,
            "missing": missing,
            "message": f"{len(present)} vars present, {len(missing)} missing",
        }

    def check_integrations(self) -> Dict[str, bool]:
        return {name: bool(os.getenv(var)) for name, var in INTEGRATION_ENV_VARS.items()}

    def get_health_status(self) -> Dict[str, Any]:
        """
        Get comprehensive health status.

        Overall status is "ok" only if the database and required
        variables both pass; otherwise "degraded".
        """
        db_check = self.check_database()
        env_check = self.check_environment_variables()

        overall_status = "ok"
        if db_check["status"] != "ok" or env_check["status"] != "ok":
            overall_status = "degraded"

        return {
            "status": overall_status,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "checks": {
                "database": db_check,
                "environment": env_check,
                "integrations": self.check_integrations(),
            },
        }

    def log_config_status(self) -> None:
        """Log configuration status on startup (names only, never values)."""
        env_check = self.check_environment_variables()

        logger.info("Configuration status", extra={
            "required_vars_missing": env_check["missing"],
            "optional_vars_present": [v for v in env_check["present"] if v in OPTIONAL_ENV_VARS],
            "integrations": self.check_integrations(),
        })

        if env_check["missing"]:
            logger.warning("Missing required environment variables", extra={
                "missing_vars": env_check["missing"]
            })


_health_checker: Optional[HealthChecker] = None


def get_health_checker() -> HealthChecker:
    """Get or create health checker instance."""
    global _health_checker
    if _health_checker is None:
        _health_checker = HealthChecker()
    return _health_checker
