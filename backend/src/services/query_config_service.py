"""
Per-company analytics query configuration.

Stored overrides win; every other query type falls back to the
standard template for the company's client id.
"""

import logging
from typing import Any, Dict

from sqlalchemy.orm import Session

from src.integrations.posthog.query_builder import inject_client_filter
from src.integrations.posthog.query_templates import QUERY_TEMPLATES, get_query_template
from src.models.query_configuration import QueryConfiguration

logger = logging.getLogger(__name__)

# Query types served by the analytics preview
PREVIEW_QUERY_TYPES = (
    "traffic",
    "funnel",
    "retention",
    "deviceMix",
    "geography",
    "lifecycle",
    "cityGeography",
    "renewalFunnel",
)


class QueryConfigService:

    def __init__(self, session: Session):
        self.session = session

    def get_query_config_for_company(self, company_id: str, client_id: str) -> Dict[str, Dict[str, Any]]:
        rows = self.session.query(QueryConfiguration).filter(
            QueryConfiguration.company_id == company_id,
            QueryConfiguration.is_active.is_(True),
        ).all()
        # Stored overrides may predate the client filter; templates already carry it
        stored = {row.query_type: inject_client_filter(row.query_config, client_id) for row in rows if row.query_config}

        config: Dict[str, Dict[str, Any]] = {}
        for query_type in PREVIEW_QUERY_TYPES:
            query = stored.get(query_type) or get_query_template(query_type, client_id)
            if query is not None:
                config[query_type] = query

        if stored:
            logger.debug(
                "Using stored query configuration",
                extra={"company_id": company_id, "query_types": sorted(stored)},
            )
        return config

    def set_query_config(self, company_id: str, query_type: str, query_config: Dict[str, Any]) -> QueryConfiguration:
        """Upsert the active configuration for one query type."""
        if query_type not in QUERY_TEMPLATES:
            raise ValueError(f"Unknown query type: {query_type}")

        row = self.session.query(QueryConfiguration).filter(
            QueryConfiguration.company_id == company_id,
            QueryConfiguration.query_type == query_type,
        ).first()
        if row is None:
            row = QueryConfiguration(company_id=company_id, query_type=query_type)
            self.session.add(row)
        row.query_config = query_config
        row.is_active = True
        self.session.flush()
        return row
