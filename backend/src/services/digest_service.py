"""
Weekly digest: snapshot comparison, AI commentary and email delivery.

Each company is processed in isolation. A failure for one company is
recorded in its result entry and never stops the run.
"""

import html
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from src.config.settings import get_site_url
from src.insights.llm_client import LLMClient, LLMError
from src.insights.prompts import DIGEST_SYSTEM_PROMPT, build_digest_prompt
from src.integrations.email.resend_client import EmailSender, EmailSendError
from src.models.ai_insight import AIInsight, InsightStatus
from src.models.analytics_snapshot import AnalyticsSnapshot
from src.models.company import Company
from src.models.email import EmailDigest, EmailRecipient
from src.models.plan import Plan
from src.models.subscription import Subscription, SubscriptionStatus
from src.platform.audit import AuditAction, AuditOutcome, log_system_audit_event_sync

logger = logging.getLogger(__name__)

DIGEST_MAX_TOKENS = 1000
DIGEST_TEMPERATURE = 0.7
AI_UNAVAILABLE_TEXT = "AI insights temporarily unavailable"
TOP_PAGES_LIMIT = 5


class DigestError(Exception):
    """Raised when a company's digest cannot be produced or sent."""
    pass


def format_date(value: datetime) -> str:
    return f"{value.month}/{value.day}/{value.year}"


def calculate_change(current: float, previous: float) -> Optional[Dict[str, Any]]:
    """Week-over-week change; None when there is no previous value."""
    if not previous:
        return None
    change = ((current - previous) / previous) * 100
    return {
        "value": change,
        "formatted": f"{'+' if change > 0 else ''}{change:.1f}%",
        "positive": change > 0,
    }


def _metric_card(title: str, value: Any, change: Optional[Dict[str, Any]] = None) -> str:
    change_html = ""
    if change:
        css_class = "positive" if change["positive"] else "negative"
        change_html = f'<div class="metric-change {css_class}">{change["formatted"]} vs last week</div>'
    return (
        '<div class="metric-card">'
        f"<h3>{title}</h3>"
        f'<div class="metric-value">{value:,}</div>'
        f"{change_html}"
        "</div>"
    )


def render_digest_html(
    company_name: str,
    current: Dict[str, Any],
    previous: Optional[Dict[str, Any]],
    ai_insights: str,
    now: Optional[datetime] = None,
) -> str:
    """
    Render the digest email.

    ``current`` and ``previous`` are snapshot KPI dicts; visitors and
    pageviews come from their traffic section.
    """
    now = now or datetime.now(timezone.utc)
    site_url = get_site_url()
    name = html.escape(company_name)

    traffic = current.get("traffic") or {}
    prev_traffic = (previous or {}).get("traffic") or {}
    visitors = traffic.get("unique_users") or 0
    pageviews = traffic.get("pageviews") or 0
    sessions = traffic.get("sessions")
    top_pages = traffic.get("top_pages")

    cards = [
        _metric_card("Visitors", visitors, calculate_change(visitors, prev_traffic.get("unique_users") or 0)),
        _metric_card("Page Views", pageviews, calculate_change(pageviews, prev_traffic.get("pageviews") or 0)),
    ]
    if sessions:
        cards.append(_metric_card("Sessions", sessions))

    if top_pages:
        items = "".join(
            f"<li><strong>{html.escape(str(page.get('page', '')))}</strong>: {page.get('views', 0)} views</li>"
            for page in top_pages[:TOP_PAGES_LIMIT]
        )
        pages_html = f"<ul>{items}</ul>"
    else:
        pages_html = "<p>No page data available</p>"

    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Weekly Analytics Digest</title>
  <style>
    body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; margin: 0; background-color: #f8f9fa; }}
    .container {{ max-width: 600px; margin: 0 auto; background: white; }}
    .header {{ background: #2563eb; color: white; padding: 24px; text-align: center; }}
    .content {{ padding: 24px; }}
    .metric-card {{ background: #f8f9fa; border-radius: 8px; padding: 16px; margin: 12px 0; }}
    .metric-value {{ font-size: 24px; font-weight: bold; color: #2563eb; }}
    .metric-change {{ font-size: 14px; margin-top: 4px; }}
    .positive {{ color: #059669; }}
    .negative {{ color: #dc2626; }}
    .insights {{ background: #eff6ff; border-left: 4px solid #2563eb; padding: 16px; margin: 16px 0; }}
    .footer {{ background: #f1f5f9; padding: 16px; text-align: center; font-size: 12px; color: #64748b; }}
    .btn {{ display: inline-block; background: #2563eb; color: white; padding: 12px 24px; text-decoration: none; border-radius: 6px; }}
  </style>
</head>
<body>
  <div class="container">
    <div class="header">
      <h1>Weekly Analytics Digest</h1>
      <p>{name} &bull; {format_date(now)}</p>
    </div>
    <div class="content">
      <h2>Key Metrics</h2>
      {"".join(cards)}
      <div class="insights">
        <h3>AI Insights &amp; Recommendations</h3>
        <div style="white-space: pre-line;">{html.escape(ai_insights)}</div>
      </div>
      <div style="text-align: center; margin: 24px 0;">
        <a href="{site_url}/dashboard" class="btn">View Full Dashboard</a>
      </div>
      <h3>Top Pages</h3>
      {pages_html}
    </div>
    <div class="footer">
      <p>This digest was automatically generated for {name}</p>
      <p>To unsubscribe or modify settings, visit your <a href="{site_url}/settings">account settings</a></p>
    </div>
  </div>
</body>
</html>
"""


class DigestService:
    """Builds and sends weekly digests for eligible companies."""

    def __init__(
        self,
        session: Session,
        llm_client: Optional[LLMClient] = None,
        email_sender: Optional[EmailSender] = None,
        correlation_id: Optional[str] = None,
    ):
        self.session = session
        self._llm_client = llm_client
        self._email_sender = email_sender
        self.correlation_id = correlation_id or str(uuid.uuid4())

    @property
    def llm_client(self) -> LLMClient:
        if self._llm_client is None:
            self._llm_client = LLMClient()
        return self._llm_client

    @property
    def email_sender(self) -> EmailSender:
        if self._email_sender is None:
            self._email_sender = EmailSender()
        return self._email_sender

    def get_eligible_companies(self) -> List[Company]:
        """Active companies with an active subscription whose plan includes the digest."""
        return (
            self.session.query(Company)
            .join(Subscription, Subscription.company_id == Company.id)
            .outerjoin(Plan, Plan.id == Subscription.plan_id)
            .filter(
                Company.is_active.is_(True),
                Subscription.status == SubscriptionStatus.ACTIVE.value,
                or_(Plan.id.is_(None), Plan.email_digest.is_(True)),
            )
            .all()
        )

    async def run_weekly_digest(self) -> Dict[str, Any]:
        companies = self.get_eligible_companies()
        logger.info("weekly_digest.started", extra={"company_count": len(companies)})

        results = []
        for company in companies:
            company_id = company.id
            try:
                results.append(await self.send_company_digest(company))
            except (DigestError, EmailSendError) as e:
                logger.warning(
                    "weekly_digest.company_failed",
                    extra={"company_id": company_id, "error": str(e)},
                )
                self._audit(company_id, AuditAction.DIGEST_FAILED, {"error": str(e)}, AuditOutcome.FAILURE)
                results.append({"company_id": company_id, "success": False, "error": str(e)})
            except Exception as e:
                logger.exception("weekly_digest.company_error", extra={"company_id": company_id})
                self.session.rollback()
                results.append({"company_id": company_id, "success": False, "error": str(e)})

        succeeded = sum(1 for r in results if r["success"])
        logger.info(
            "weekly_digest.completed",
            extra={"processed": len(results), "succeeded": succeeded, "failed": len(results) - succeeded},
        )
        return {"success": True, "processed": len(results), "results": results}

    async def send_company_digest(self, company: Company, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Raises:
            DigestError: If there is no snapshot, no recipient, or the send fails
        """
        now = now or datetime.now(timezone.utc)
        snapshot = self._latest_snapshot(company.id)
        if snapshot is None:
            raise DigestError("No recent analytics data found")

        previous = self._latest_snapshot(company.id, before=now - timedelta(days=7))
        current_kpis = snapshot.to_kpis()
        previous_kpis = previous.to_kpis() if previous else None

        ai_text, insight = await self._generate_commentary(company, snapshot, current_kpis, previous_kpis, now)

        recipients = [
            r.email
            for r in self.session.query(EmailRecipient).filter(
                EmailRecipient.company_id == company.id,
                EmailRecipient.is_active.is_(True),
            )
        ]
        if not recipients:
            raise DigestError("No email recipients configured")

        subject = f"Weekly Analytics Digest - {company.name} - {format_date(now)}"
        body = render_digest_html(company.name, current_kpis, previous_kpis, ai_text, now=now)

        try:
            message_id = self.email_sender.send(to=recipients, subject=subject, html=body)
        except EmailSendError as e:
            raise DigestError(f"Failed to send email: {e}") from e

        self.session.add(EmailDigest(
            company_id=company.id,
            snapshot_id=snapshot.id,
            insight_id=insight.id if insight else None,
            recipients=recipients,
            subject=subject,
            content=body,
            provider_message_id=message_id,
            sent_at=now,
        ))
        self.session.flush()
        self._audit(company.id, AuditAction.DIGEST_SENT, {"recipients_count": len(recipients)})

        logger.info(
            "weekly_digest.company_sent",
            extra={"company_id": company.id, "recipients_count": len(recipients)},
        )
        return {
            "company_id": company.id,
            "success": True,
            "email_id": message_id,
            "recipients_count": len(recipients),
        }

    def _latest_snapshot(self, company_id: str, before: Optional[datetime] = None) -> Optional[AnalyticsSnapshot]:
        query = self.session.query(AnalyticsSnapshot).filter(AnalyticsSnapshot.company_id == company_id)
        if before is not None:
            query = query.filter(AnalyticsSnapshot.snapshot_date <= before)
        return query.order_by(AnalyticsSnapshot.snapshot_date.desc()).first()

    async def _generate_commentary(
        self,
        company: Company,
        snapshot: AnalyticsSnapshot,
        current_kpis: Dict[str, Any],
        previous_kpis: Optional[Dict[str, Any]],
        now: datetime,
    ):
        """AI text plus the stored insight row; falls back to a placeholder on LLM failure."""
        try:
            result = await self.llm_client.complete(
                build_digest_prompt(company.name, current_kpis, previous_kpis),
                temperature=DIGEST_TEMPERATURE,
                system_prompt=DIGEST_SYSTEM_PROMPT,
                max_tokens=DIGEST_MAX_TOKENS,
            )
        except LLMError as e:
            logger.warning("weekly_digest.ai_failed", extra={"company_id": company.id, "error": str(e)})
            return AI_UNAVAILABLE_TEXT, None

        text = result.content or "Unable to generate insights"
        insight = AIInsight(
            company_id=company.id,
            snapshot_id=snapshot.id,
            date_range=snapshot.date_range,
            headline=f"Weekly Analytics Digest - {format_date(now)}",
            summary=text,
            kpis_snapshot=current_kpis,
            model_used=result.model,
            prompt_tokens=result.prompt_tokens,
            completion_tokens=result.completion_tokens,
            total_tokens=result.total_tokens,
            status=InsightStatus.GENERATED.value,
        )
        self.session.add(insight)
        self.session.flush()
        return text, insight

    def _audit(
        self,
        company_id: str,
        action: AuditAction,
        metadata: Dict[str, Any],
        outcome: AuditOutcome = AuditOutcome.SUCCESS,
    ) -> None:
        log_system_audit_event_sync(
            db=self.session,
            company_id=company_id,
            action=action,
            resource_type="email_digest",
            metadata=metadata,
            correlation_id=self.correlation_id,
            source="cron",
            outcome=outcome,
        )
