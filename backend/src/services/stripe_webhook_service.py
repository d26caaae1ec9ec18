"""
Stripe webhook processing.

Stripe is the source of truth for subscription state; these handlers
mirror it into the subscriptions and payments tables.

SECURITY:
- Every payload is verified with stripe.Webhook.construct_event before use
- company_id comes from metadata we set at checkout, or from our own
  subscription rows, never from unverified input
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import stripe
from sqlalchemy.orm import Session

from src.config.settings import get_stripe_secret_key, get_stripe_webhook_secret
from src.models.company import Company
from src.models.plan import Plan
from src.models.subscription import Payment, Subscription, SubscriptionStatus
from src.integrations.posthog.capture_client import get_capture_client
from src.platform.audit import AuditAction, log_system_audit_event_sync
from src.services.billing_service import base_plan_id
from src.services.event_capture import EventCapture

logger = logging.getLogger(__name__)


class WebhookSignatureError(Exception):
    """Raised when the payload cannot be verified."""
    pass


def _get(obj: Any, key: str, default: Any = None) -> Any:
    """Read a field from a dict or StripeObject."""
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError, AttributeError):
        return default
    return default if value is None else value


def _from_timestamp(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _period_bounds(subscription: Any) -> Dict[str, Optional[datetime]]:
    """Current period start/end; newer API versions carry them on the items."""
    start = _get(subscription, "current_period_start")
    end = _get(subscription, "current_period_end")
    if start is None or end is None:
        items = _get(_get(subscription, "items"), "data") or []
        if items:
            start = start or _get(items[0], "current_period_start")
            end = end or _get(items[0], "current_period_end")
    return {
        "current_period_start": _from_timestamp(start),
        "current_period_end": _from_timestamp(end),
    }


def construct_event(payload: bytes, signature: str, secret: Optional[str] = None) -> Dict[str, Any]:
    """
    Verify the signature and return the event as a plain dict.

    Raises:
        WebhookSignatureError: If verification fails or no secret is configured
    """
    secret = secret or get_stripe_webhook_secret()
    if not secret:
        raise WebhookSignatureError("Webhook secret not configured")
    try:
        stripe.Webhook.construct_event(payload, signature, secret)
    except (ValueError, stripe.SignatureVerificationError) as e:
        raise WebhookSignatureError(str(e)) from e
    return json.loads(payload)


class StripeWebhookProcessor:
    """Dispatches verified Stripe events to handlers."""

    def __init__(
        self,
        session: Session,
        retrieve_subscription: Optional[Callable[[str], Any]] = None,
        correlation_id: Optional[str] = None,
        event_capture: Optional[EventCapture] = None,
    ):
        self.session = session
        self._retrieve_subscription = retrieve_subscription
        self.correlation_id = correlation_id or str(uuid.uuid4())
        if event_capture is None:
            capture_client = get_capture_client()
            event_capture = EventCapture(client_provider=lambda: capture_client)
        self.event_capture = event_capture
        self._handlers: Dict[str, Callable[[Dict[str, Any]], bool]] = {
            "checkout.session.completed": self._handle_checkout_completed,
            "customer.subscription.updated": self._handle_subscription_updated,
            "customer.subscription.deleted": self._handle_subscription_deleted,
            "invoice.payment_succeeded": self._handle_payment_succeeded,
            "invoice.payment_failed": self._handle_payment_failed,
        }

    def process_event(self, event: Dict[str, Any]) -> bool:
        """
        Apply one event.

        Returns:
            True if the event changed state, False if it was ignored
        """
        event_type = event.get("type")
        data = (event.get("data") or {}).get("object") or {}
        handler = self._handlers.get(event_type)

        if handler is None:
            logger.info("Unhandled Stripe event", extra={"event_type": event_type, "event_id": event.get("id")})
            return False

        logger.info("Processing Stripe event", extra={"event_type": event_type, "event_id": event.get("id")})
        handled = handler(data)
        self.session.commit()
        return handled

    # =========================================================================
    # Handlers
    # =========================================================================

    def _handle_checkout_completed(self, session_obj: Dict[str, Any]) -> bool:
        metadata = session_obj.get("metadata") or {}
        company_id = metadata.get("company_id")
        plan_id = metadata.get("plan_id")
        if not company_id or not plan_id:
            logger.error("Checkout session missing metadata", extra={"session_id": session_obj.get("id")})
            return False

        stripe_subscription_id = session_obj.get("subscription")
        remote = self.retrieve_subscription(stripe_subscription_id) if stripe_subscription_id else None

        subscription = self.session.query(Subscription).filter(Subscription.company_id == company_id).first()
        created = subscription is None
        if created:
            subscription = Subscription(company_id=company_id)
            self.session.add(subscription)

        subscription.plan_id = self._resolve_plan(plan_id)
        subscription.stripe_subscription_id = stripe_subscription_id
        subscription.stripe_customer_id = session_obj.get("customer")
        if remote is not None:
            self._apply_remote_state(subscription, remote)
        else:
            subscription.status = SubscriptionStatus.ACTIVE.value

        company = self.session.query(Company).filter(Company.id == company_id).first()
        if company is not None and not company.stripe_customer_id and session_obj.get("customer"):
            company.stripe_customer_id = session_obj.get("customer")

        self.session.flush()
        self._audit(
            company_id,
            AuditAction.BILLING_SUBSCRIPTION_CREATED if created else AuditAction.BILLING_SUBSCRIPTION_UPDATED,
            subscription.id,
            {"plan_id": plan_id, "status": subscription.status},
        )
        self._capture_checkout(company_id, plan_id, session_obj)
        return True

    def _handle_subscription_updated(self, remote: Dict[str, Any]) -> bool:
        subscription = self._find_by_stripe_id(remote.get("id"))
        if subscription is None:
            logger.warning("Subscription not found for update", extra={"stripe_subscription_id": remote.get("id")})
            return False

        self._apply_remote_state(subscription, remote)
        self.session.flush()
        self._audit(
            subscription.company_id,
            AuditAction.BILLING_SUBSCRIPTION_UPDATED,
            subscription.id,
            {"status": subscription.status, "cancel_at_period_end": subscription.cancel_at_period_end},
        )
        return True

    def _handle_subscription_deleted(self, remote: Dict[str, Any]) -> bool:
        subscription = self._find_by_stripe_id(remote.get("id"))
        if subscription is None:
            return False

        subscription.status = SubscriptionStatus.CANCELED.value
        subscription.canceled_at = datetime.now(timezone.utc)
        self.session.flush()
        self._audit(subscription.company_id, AuditAction.BILLING_SUBSCRIPTION_CANCELLED, subscription.id, {})
        return True

    def _handle_payment_succeeded(self, invoice: Dict[str, Any]) -> bool:
        invoice_id = invoice.get("id")
        if not invoice_id:
            return False
        if self.session.query(Payment).filter(Payment.stripe_invoice_id == invoice_id).first():
            logger.info("Duplicate invoice event ignored", extra={"invoice_id": invoice_id})
            return False

        subscription = self._find_by_stripe_id(self._invoice_subscription_id(invoice))
        company_id = subscription.company_id if subscription else self._company_for_customer(invoice.get("customer"))
        if company_id is None:
            logger.warning("No company for paid invoice", extra={"invoice_id": invoice_id})
            return False

        paid_at = _from_timestamp((invoice.get("status_transitions") or {}).get("paid_at"))
        payment = Payment(
            company_id=company_id,
            subscription_id=subscription.id if subscription else None,
            stripe_invoice_id=invoice_id,
            stripe_payment_intent_id=invoice.get("payment_intent"),
            amount_cents=invoice.get("amount_paid") or 0,
            currency=invoice.get("currency") or "usd",
            status="succeeded",
            paid_at=paid_at or datetime.now(timezone.utc),
        )
        self.session.add(payment)
        self.session.flush()
        self._audit(
            company_id,
            AuditAction.BILLING_PAYMENT_SUCCESS,
            payment.id,
            {"invoice_id": invoice_id, "amount_cents": payment.amount_cents},
        )
        return True

    def _handle_payment_failed(self, invoice: Dict[str, Any]) -> bool:
        logger.error("Invoice payment failed", extra={"invoice_id": invoice.get("id")})
        subscription = self._find_by_stripe_id(self._invoice_subscription_id(invoice))
        if subscription is None:
            return False

        subscription.status = SubscriptionStatus.PAST_DUE.value
        self.session.flush()
        self._audit(
            subscription.company_id,
            AuditAction.BILLING_PAYMENT_FAILED,
            subscription.id,
            {"invoice_id": invoice.get("id")},
        )
        return True

    # =========================================================================
    # Private Helpers
    # =========================================================================

    def retrieve_subscription(self, stripe_subscription_id: str) -> Any:
        if self._retrieve_subscription is not None:
            return self._retrieve_subscription(stripe_subscription_id)
        stripe.api_key = get_stripe_secret_key()
        return stripe.Subscription.retrieve(stripe_subscription_id)

    @staticmethod
    def _apply_remote_state(subscription: Subscription, remote: Any) -> None:
        subscription.status = _get(remote, "status", subscription.status)
        bounds = _period_bounds(remote)
        subscription.current_period_start = bounds["current_period_start"]
        subscription.current_period_end = bounds["current_period_end"]
        subscription.trial_end = _from_timestamp(_get(remote, "trial_end"))
        subscription.cancel_at_period_end = bool(_get(remote, "cancel_at_period_end", False))

    @staticmethod
    def _invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
        subscription_id = invoice.get("subscription")
        if subscription_id:
            return subscription_id
        details = ((invoice.get("parent") or {}).get("subscription_details") or {})
        return details.get("subscription")

    def _find_by_stripe_id(self, stripe_subscription_id: Optional[str]) -> Optional[Subscription]:
        if not stripe_subscription_id:
            return None
        return self.session.query(Subscription).filter(
            Subscription.stripe_subscription_id == stripe_subscription_id
        ).first()

    def _company_for_customer(self, customer_id: Optional[str]) -> Optional[str]:
        if not customer_id:
            return None
        company = self.session.query(Company).filter(Company.stripe_customer_id == customer_id).first()
        return company.id if company else None

    def _resolve_plan(self, plan_id: str) -> Optional[str]:
        """Monthly plan id for a (possibly yearly) checkout plan; None if not in the catalog."""
        plan_key = base_plan_id(plan_id)
        if self.session.query(Plan).filter(Plan.id == plan_key).first() is None:
            logger.warning("Checkout plan not in catalog", extra={"plan_id": plan_key})
            return None
        return plan_key

    def _capture_checkout(self, company_id: str, plan_id: str, session_obj: Dict[str, Any]) -> None:
        """Revenue events, once per checkout session."""
        props = {
            "distinct_id": company_id,
            "company_id": company_id,
            "product": plan_id,
            "price": (session_obj.get("amount_total") or 0) / 100,
            "quantity": 1,
            "currency": session_obj.get("currency"),
        }
        path = f"/billing/checkout/{session_obj.get('id')}"
        self.event_capture.capture_once("checkout_completed", props, path=path)
        if session_obj.get("subscription"):
            self.event_capture.capture_once("subscription_completed", props, path=path)
        self.event_capture.poll()

    def _audit(self, company_id: str, action: AuditAction, resource_id: Optional[str], metadata: Dict[str, Any]) -> None:
        log_system_audit_event_sync(
            db=self.session,
            company_id=company_id,
            action=action,
            resource_type="subscription",
            resource_id=resource_id,
            metadata=metadata,
            correlation_id=self.correlation_id,
            source="webhook",
        )
