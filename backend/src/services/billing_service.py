"""
BillingService: plan catalog, subscription lookup and Stripe sessions.

Subscription rows are written only by the Stripe webhook handler
(see stripe_webhook_service); this service never mutates them.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

import stripe
from sqlalchemy.orm import Session

from src.auth.permissions import can_manage_billing
from src.config.settings import get_site_url, get_stripe_price_id, get_stripe_secret_key
from src.models.company import Company
from src.models.plan import Plan
from src.models.subscription import Subscription
from src.models.user import User
from src.platform.audit import AuditAction, AuditEvent, write_audit_log_sync

logger = logging.getLogger(__name__)

BILLING_INTERVALS = ("month", "year")
YEARLY_SUFFIX = "_yearly"


# =============================================================================
# Exceptions
# =============================================================================

class BillingServiceError(Exception):
    """Base exception for billing service errors."""
    pass


class BillingNotConfiguredError(BillingServiceError):
    pass


class InvalidPlanError(BillingServiceError):
    pass


class BillingPermissionError(BillingServiceError):
    pass


class StripeCustomerNotFoundError(BillingServiceError):
    pass


class StripeOperationError(BillingServiceError):
    """Raised when a Stripe API call fails."""
    pass


def configure_stripe() -> None:
    """Set the Stripe API key from the environment."""
    secret_key = get_stripe_secret_key()
    if not secret_key:
        raise BillingNotConfiguredError("Billing not configured")
    stripe.api_key = secret_key


def full_plan_id(plan_id: str, interval: str = "month") -> str:
    return f"{plan_id}{YEARLY_SUFFIX}" if interval == "year" else plan_id


def base_plan_id(plan_id: Optional[str]) -> Optional[str]:
    if plan_id and plan_id.endswith(YEARLY_SUFFIX):
        return plan_id[: -len(YEARLY_SUFFIX)]
    return plan_id


# =============================================================================
# Service
# =============================================================================

class BillingService:

    def __init__(self, session: Session, correlation_id: Optional[str] = None):
        self.session = session
        self.correlation_id = correlation_id or str(uuid.uuid4())

    def list_plans(self) -> List[Plan]:
        return (
            self.session.query(Plan)
            .filter(Plan.is_active.is_(True))
            .order_by(Plan.sort_order)
            .all()
        )

    def get_subscription(self, company_id: str) -> Optional[Subscription]:
        return self.session.query(Subscription).filter(Subscription.company_id == company_id).first()

    def create_checkout_session(
        self,
        company: Company,
        user_email: str,
        plan_id: str,
        interval: str = "month",
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Start a subscription-mode Stripe Checkout session.

        Returns:
            Dict with session_id and url

        Raises:
            BillingNotConfiguredError: If STRIPE_SECRET_KEY is unset
            InvalidPlanError: If the interval or plan price is unknown
            StripeOperationError: If a Stripe call fails
        """
        configure_stripe()

        if interval not in BILLING_INTERVALS:
            raise InvalidPlanError(f"Invalid billing interval: {interval}")

        plan_key = full_plan_id(plan_id, interval)
        price_id = get_stripe_price_id(plan_key)
        if not price_id:
            raise InvalidPlanError(f"Unknown plan: {plan_key}")

        customer_id = self._get_or_create_customer(company, user_email)
        site_url = get_site_url()
        metadata = {"company_id": company.id, "plan_id": plan_key}

        try:
            checkout = stripe.checkout.Session.create(
                customer=customer_id,
                payment_method_types=["card"],
                line_items=[{"price": price_id, "quantity": 1}],
                mode="subscription",
                success_url=f"{site_url}/billing/success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{site_url}/pricing",
                metadata=metadata,
                subscription_data={"metadata": metadata},
            )
        except stripe.StripeError as e:
            logger.error("Stripe checkout session failed", extra={"company_id": company.id, "error": str(e)})
            raise StripeOperationError(f"Failed to create checkout session: {e}") from e

        logger.info("Checkout session created", extra={"company_id": company.id, "plan_id": plan_key})
        self._emit(company.id, AuditAction.BILLING_CHECKOUT_STARTED, user_id, {"plan_id": plan_key, "interval": interval})
        return {"session_id": checkout.id, "url": checkout.url}

    def create_portal_session(self, company: Company, user: User) -> Dict[str, str]:
        """
        Raises:
            BillingNotConfiguredError: If STRIPE_SECRET_KEY is unset
            BillingPermissionError: If the user is not the owner
            StripeCustomerNotFoundError: If the company has no Stripe customer
        """
        configure_stripe()

        if not can_manage_billing(user):
            raise BillingPermissionError("Only company owners can manage billing")
        if not company.stripe_customer_id:
            raise StripeCustomerNotFoundError("No Stripe customer found")

        try:
            portal = stripe.billing_portal.Session.create(
                customer=company.stripe_customer_id,
                return_url=f"{get_site_url()}/settings/billing",
            )
        except stripe.StripeError as e:
            logger.error("Stripe portal session failed", extra={"company_id": company.id, "error": str(e)})
            raise StripeOperationError(f"Failed to create billing portal session: {e}") from e

        self._emit(company.id, AuditAction.BILLING_PORTAL_OPENED, user.id, {})
        return {"url": portal.url}

    def _get_or_create_customer(self, company: Company, user_email: str) -> str:
        if company.stripe_customer_id:
            return company.stripe_customer_id

        try:
            customer = stripe.Customer.create(
                email=company.billing_email or user_email,
                name=company.name,
                metadata={"company_id": company.id},
            )
        except stripe.StripeError as e:
            logger.error("Stripe customer creation failed", extra={"company_id": company.id, "error": str(e)})
            raise StripeOperationError(f"Failed to create Stripe customer: {e}") from e

        company.stripe_customer_id = customer.id
        self.session.commit()
        logger.info("Stripe customer created", extra={"company_id": company.id})
        return customer.id

    def _emit(self, company_id: str, action: AuditAction, user_id: Optional[str], metadata: Dict[str, Any]) -> None:
        write_audit_log_sync(
            db=self.session,
            event=AuditEvent(
                company_id=company_id,
                action=action,
                user_id=user_id,
                resource_type="billing",
                resource_id=company_id,
                correlation_id=self.correlation_id,
                metadata=metadata,
            ),
        )
