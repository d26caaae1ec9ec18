"""
Tests for BillingService and the Stripe webhook processor.

Stripe SDK calls are patched; no network access is needed.
"""

import json
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import stripe

from src.models.plan import Plan
from src.models.subscription import Payment, Subscription, SubscriptionStatus
from src.platform.audit import AuditAction, AuditLog
from src.services.billing_service import (
    BillingNotConfiguredError,
    BillingPermissionError,
    BillingService,
    InvalidPlanError,
    StripeCustomerNotFoundError,
    StripeOperationError,
    base_plan_id,
    full_plan_id,
)
from src.services.event_capture import EventCapture
from src.services.stripe_webhook_service import (
    StripeWebhookProcessor,
    WebhookSignatureError,
    construct_event,
)


@pytest.fixture
def stripe_env(monkeypatch):
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setenv("STRIPE_PRICE_GROWTH_MONTHLY", "price_growth_m")
    monkeypatch.setenv("STRIPE_PRICE_GROWTH_YEARLY", "price_growth_y")
    monkeypatch.setenv("APP_URL", "https://app.example.com/")


@pytest.fixture
def service(test_db_session):
    return BillingService(test_db_session, correlation_id="corr-billing")


def actions(session):
    return [row.action for row in session.query(AuditLog)]


# ============================================================================
# TEST SUITE: PLAN IDS
# ============================================================================

class TestPlanIds:

    def test_full_and_base_ids(self):
        assert full_plan_id("growth", "year") == "growth_yearly"
        assert full_plan_id("growth", "month") == "growth"
        assert base_plan_id("growth_yearly") == "growth"
        assert base_plan_id(None) is None


class TestCatalog:

    def test_active_plans_sorted(self, service, test_db_session):
        test_db_session.add_all([
            Plan(id="growth", name="Growth", sort_order=2),
            Plan(id="starter", name="Starter", sort_order=1),
            Plan(id="legacy", name="Legacy", sort_order=0, is_active=False),
        ])
        test_db_session.commit()

        assert [p.id for p in service.list_plans()] == ["starter", "growth"]


# ============================================================================
# TEST SUITE: CHECKOUT
# ============================================================================

class TestCheckout:

    def test_creates_customer_and_session(self, service, test_db_session, company, stripe_env):
        with patch.object(stripe.Customer, "create", return_value=SimpleNamespace(id="cus_new")) as create_customer, \
                patch.object(stripe.checkout.Session, "create",
                             return_value=SimpleNamespace(id="cs_1", url="https://checkout")) as create_session:
            result = service.create_checkout_session(company, "owner@acme.com", "growth", "year", user_id="user-owner")

        assert result == {"session_id": "cs_1", "url": "https://checkout"}
        assert company.stripe_customer_id == "cus_new"
        assert create_customer.call_args.kwargs["email"] == "owner@acme.com"

        kwargs = create_session.call_args.kwargs
        assert kwargs["customer"] == "cus_new"
        assert kwargs["line_items"] == [{"price": "price_growth_y", "quantity": 1}]
        assert kwargs["metadata"] == {"company_id": company.id, "plan_id": "growth_yearly"}
        assert kwargs["cancel_url"] == "https://app.example.com/pricing"
        assert AuditAction.BILLING_CHECKOUT_STARTED.value in actions(test_db_session)

    def test_reuses_existing_customer(self, service, company, stripe_env):
        company.stripe_customer_id = "cus_existing"

        with patch.object(stripe.Customer, "create") as create_customer, \
                patch.object(stripe.checkout.Session, "create", return_value=SimpleNamespace(id="cs", url="u")):
            service.create_checkout_session(company, "owner@acme.com", "growth")

        create_customer.assert_not_called()

    def test_not_configured(self, service, company, monkeypatch):
        monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)

        with pytest.raises(BillingNotConfiguredError):
            service.create_checkout_session(company, "owner@acme.com", "growth")

    @pytest.mark.parametrize("plan_id,interval", [("platinum", "month"), ("growth", "week")])
    def test_invalid_plan(self, service, company, stripe_env, plan_id, interval):
        with pytest.raises(InvalidPlanError):
            service.create_checkout_session(company, "owner@acme.com", plan_id, interval)

    def test_stripe_failure(self, service, company, stripe_env):
        company.stripe_customer_id = "cus_existing"
        with patch.object(stripe.checkout.Session, "create", side_effect=stripe.APIConnectionError("down")):
            with pytest.raises(StripeOperationError):
                service.create_checkout_session(company, "owner@acme.com", "growth")

    def test_new_customer_survives_checkout_failure(self, service, test_db_session, company, stripe_env):
        with patch.object(stripe.Customer, "create", return_value=SimpleNamespace(id="cus_kept")), \
                patch.object(stripe.checkout.Session, "create", side_effect=stripe.APIConnectionError("down")):
            with pytest.raises(StripeOperationError):
                service.create_checkout_session(company, "owner@acme.com", "growth")

        test_db_session.rollback()

        assert company.stripe_customer_id == "cus_kept"

        with patch.object(stripe.Customer, "create") as create_customer, \
                patch.object(stripe.checkout.Session, "create", return_value=SimpleNamespace(id="cs", url="u")):
            service.create_checkout_session(company, "owner@acme.com", "growth")

        create_customer.assert_not_called()


class TestPortal:

    def test_owner_gets_portal(self, service, test_db_session, company, owner, stripe_env):
        company.stripe_customer_id = "cus_1"
        with patch.object(stripe.billing_portal.Session, "create", return_value=SimpleNamespace(url="https://portal")) as create:
            assert service.create_portal_session(company, owner) == {"url": "https://portal"}

        assert create.call_args.kwargs["return_url"] == "https://app.example.com/settings/billing"
        assert AuditAction.BILLING_PORTAL_OPENED.value in actions(test_db_session)

    def test_non_owner_rejected(self, service, company, make_user, stripe_env):
        admin = make_user(company_id=company.id, role="admin")

        with pytest.raises(BillingPermissionError):
            service.create_portal_session(company, admin)

    def test_missing_customer(self, service, company, owner, stripe_env):
        with pytest.raises(StripeCustomerNotFoundError):
            service.create_portal_session(company, owner)


# ============================================================================
# TEST SUITE: WEBHOOKS
# ============================================================================

class TestConstructEvent:

    def test_invalid_signature(self):
        with patch.object(stripe.Webhook, "construct_event",
                          side_effect=stripe.SignatureVerificationError("bad", "sig")):
            with pytest.raises(WebhookSignatureError):
                construct_event(b"{}", "sig", secret="whsec_1")

    def test_missing_secret(self, monkeypatch):
        monkeypatch.delenv("STRIPE_WEBHOOK_SECRET", raising=False)

        with pytest.raises(WebhookSignatureError):
            construct_event(b"{}", "sig")

    def test_returns_plain_dict(self):
        payload = json.dumps({"id": "evt_1", "type": "invoice.payment_failed"}).encode()
        with patch.object(stripe.Webhook, "construct_event", return_value=MagicMock()):
            assert construct_event(payload, "sig", secret="whsec_1")["id"] == "evt_1"


def event(event_type, obj):
    return {"id": "evt_1", "type": event_type, "data": {"object": obj}}


REMOTE_SUBSCRIPTION = {
    "id": "sub_new",
    "status": "trialing",
    "current_period_start": 1_700_000_000,
    "current_period_end": 1_702_592_000,
    "trial_end": 1_701_000_000,
    "cancel_at_period_end": False,
}


class TestWebhookProcessor:

    def test_checkout_completed_creates_subscription(self, test_db_session, company, growth_plan):
        processor = StripeWebhookProcessor(test_db_session, retrieve_subscription=lambda _id: REMOTE_SUBSCRIPTION)

        handled = processor.process_event(event("checkout.session.completed", {
            "id": "cs_1",
            "customer": "cus_9",
            "subscription": "sub_new",
            "metadata": {"company_id": company.id, "plan_id": "growth_yearly"},
        }))

        assert handled is True
        subscription = test_db_session.query(Subscription).filter(Subscription.company_id == company.id).one()
        assert subscription.plan_id == "growth"
        assert subscription.status == "trialing"
        assert subscription.stripe_customer_id == "cus_9"
        assert subscription.current_period_end is not None
        assert company.stripe_customer_id == "cus_9"
        assert AuditAction.BILLING_SUBSCRIPTION_CREATED.value in actions(test_db_session)

    def test_checkout_completed_captures_revenue_events(self, test_db_session, company, growth_plan):
        capture_client = MagicMock()
        processor = StripeWebhookProcessor(
            test_db_session,
            retrieve_subscription=lambda _id: REMOTE_SUBSCRIPTION,
            event_capture=EventCapture(client_provider=lambda: capture_client),
        )
        checkout = event("checkout.session.completed", {
            "id": "cs_2",
            "customer": "cus_9",
            "subscription": "sub_new",
            "amount_total": 4900,
            "currency": "usd",
            "metadata": {"company_id": company.id, "plan_id": "growth"},
        })

        processor.process_event(checkout)
        processor.process_event(checkout)

        sent = [(c.args[0], c.args[1]) for c in capture_client.capture.call_args_list]
        assert [name for name, _ in sent] == ["checkout_completed", "subscription_completed"]
        props = sent[0][1]
        assert props["distinct_id"] == company.id
        assert props["revenue"] == "49.00"
        assert props["product_name"] == "growth"

    def test_checkout_missing_metadata_ignored(self, test_db_session):
        processor = StripeWebhookProcessor(test_db_session, retrieve_subscription=MagicMock())

        assert processor.process_event(event("checkout.session.completed", {"id": "cs_1"})) is False

    def test_subscription_updated_reads_item_periods(self, test_db_session, active_subscription):
        processor = StripeWebhookProcessor(test_db_session)

        handled = processor.process_event(event("customer.subscription.updated", {
            "id": "sub_123",
            "status": "active",
            "cancel_at_period_end": True,
            "items": {"data": [{"current_period_start": 1_700_000_000, "current_period_end": 1_702_592_000}]},
        }))

        assert handled is True
        assert active_subscription.cancel_at_period_end is True
        assert active_subscription.current_period_start is not None

    def test_subscription_deleted(self, test_db_session, active_subscription):
        StripeWebhookProcessor(test_db_session).process_event(
            event("customer.subscription.deleted", {"id": "sub_123"})
        )

        assert active_subscription.status == SubscriptionStatus.CANCELED.value
        assert active_subscription.canceled_at is not None

    def test_payment_succeeded_is_idempotent(self, test_db_session, active_subscription):
        processor = StripeWebhookProcessor(test_db_session)
        invoice = {
            "id": "in_1",
            "customer": "cus_123",
            "parent": {"subscription_details": {"subscription": "sub_123"}},
            "amount_paid": 4900,
            "currency": "usd",
            "status_transitions": {"paid_at": 1_700_000_000},
        }

        assert processor.process_event(event("invoice.payment_succeeded", invoice)) is True
        assert processor.process_event(event("invoice.payment_succeeded", invoice)) is False

        payment = test_db_session.query(Payment).one()
        assert payment.amount_cents == 4900
        assert payment.subscription_id == active_subscription.id

    def test_payment_failed_marks_past_due(self, test_db_session, active_subscription):
        StripeWebhookProcessor(test_db_session).process_event(
            event("invoice.payment_failed", {"id": "in_2", "subscription": "sub_123"})
        )

        assert active_subscription.status == SubscriptionStatus.PAST_DUE.value
        assert AuditAction.BILLING_PAYMENT_FAILED.value in actions(test_db_session)

    def test_unknown_event_ignored(self, test_db_session):
        assert StripeWebhookProcessor(test_db_session).process_event(event("customer.created", {})) is False
