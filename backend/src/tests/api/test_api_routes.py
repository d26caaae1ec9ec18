"""
HTTP-level tests for the API routers.

Requests go through the real application (auth dependency, company
context resolution, error middleware) with the database dependency
pointed at the per-test SQLite session and bearer tokens signed with a
test secret.
"""

import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import jwt
import pytest
from fastapi.testclient import TestClient

from src.database.session import get_db_session
from src.integrations.email.resend_client import EmailSendError
from src.main import create_app
from src.models.email import EmailRecipient
from src.models.invite import TeamInvite
from src.models.subscription import Subscription, SubscriptionStatus
from src.models.user import User, UserRole
from src.platform.audit import AuditAction, AuditLog
from src.platform.errors import CORRELATION_HEADER
from src.services.contact_service import ContactService

JWT_SECRET = "test-jwt-secret"
WEBHOOK_SECRET = "whsec_test"


def make_token(user_id, email=None, expires_in=3600, name=None):
    claims = {
        "sub": user_id,
        "aud": "authenticated",
        "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    }
    if email:
        claims["email"] = email
    if name:
        claims["user_metadata"] = {"full_name": name}
    return jwt.encode(claims, JWT_SECRET, algorithm="HS256")


def auth_header(user_id, email=None, **kwargs):
    return {"Authorization": f"Bearer {make_token(user_id, email, **kwargs)}"}


@pytest.fixture
def client(test_db_session, monkeypatch):
    monkeypatch.setenv("AUTH_JWT_SECRET", JWT_SECRET)
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "false")
    monkeypatch.delenv("AUTH_JWT_AUDIENCE", raising=False)
    monkeypatch.delenv("RESEND_API_KEY", raising=False)

    app = create_app()

    def _override_db():
        yield test_db_session

    app.dependency_overrides[get_db_session] = _override_db
    return TestClient(app)


# =============================================================================
# Authentication
# =============================================================================

class TestAuthentication:

    def test_missing_token_returns_401(self, client):
        response = client.get("/api/company")
        assert response.status_code == 401

    def test_wrong_signature_returns_401(self, client):
        token = jwt.encode(
            {"sub": "user-x", "aud": "authenticated", "exp": int(time.time()) + 60},
            "some-other-secret",
            algorithm="HS256",
        )
        response = client.get("/api/company", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_expired_token_returns_401(self, client):
        response = client.get("/api/company", headers=auth_header("user-x", "x@acme.com", expires_in=-60))
        assert response.status_code == 401
        assert response.json()["detail"] == "Token has expired"

    def test_first_request_provisions_user(self, client, test_db_session):
        response = client.get(
            "/api/onboarding/status",
            headers=auth_header("user-new", "New@Example.com", name="New Person"),
        )

        assert response.status_code == 200
        user = test_db_session.query(User).filter(User.id == "user-new").first()
        assert user is not None
        assert user.email == "new@example.com"
        assert user.name == "New Person"


# =============================================================================
# Company
# =============================================================================

class TestCompanyRoutes:

    def test_get_company_for_member(self, client, owner):
        response = client.get("/api/company", headers=auth_header(owner.id, owner.email))

        assert response.status_code == 200
        body = response.json()
        assert body["company"]["id"] == "company-1"
        assert body["role"] == UserRole.OWNER.value
        assert body["is_impersonating"] is False
        assert "posthog_api_key_encrypted" not in body["company"]

    def test_get_company_without_company_returns_404(self, client, make_user):
        user = make_user(company_id=None)
        response = client.get("/api/company", headers=auth_header(user.id, user.email))
        assert response.status_code == 404

    def test_create_company_makes_caller_owner(self, client, test_db_session, make_user):
        user = make_user(company_id=None, email="founder@newco.io")

        response = client.post(
            "/api/company",
            json={"name": "NewCo", "industry": "ecommerce"},
            headers=auth_header(user.id, user.email),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["company"]["name"] == "NewCo"

        test_db_session.expire_all()
        refreshed = test_db_session.query(User).filter(User.id == user.id).first()
        assert refreshed.company_id == body["company"]["id"]
        assert refreshed.role == UserRole.OWNER.value

    def test_create_company_when_already_member_returns_409(self, client, owner):
        response = client.post(
            "/api/company",
            json={"name": "Second Co"},
            headers=auth_header(owner.id, owner.email),
        )
        assert response.status_code == 409

    def test_member_cannot_update_company(self, client, company, make_user):
        member = make_user(company_id=company.id)
        response = client.patch(
            "/api/company",
            json={"name": "Renamed"},
            headers=auth_header(member.id, member.email),
        )
        assert response.status_code == 403

    def test_owner_updates_company(self, client, owner):
        response = client.patch(
            "/api/company",
            json={"name": "Acme Holdings", "primary_goal": "conversion"},
            headers=auth_header(owner.id, owner.email),
        )

        assert response.status_code == 200
        assert response.json()["company"]["name"] == "Acme Holdings"

    def test_recipient_lifecycle(self, client, owner, test_db_session):
        headers = auth_header(owner.id, owner.email)

        created = client.post(
            "/api/company/recipients",
            json={"email": "Reports@Acme.com", "name": "Reports"},
            headers=headers,
        )
        assert created.status_code == 201
        recipient_id = created.json()["recipient"]["id"]

        duplicate = client.post(
            "/api/company/recipients",
            json={"email": "reports@acme.com"},
            headers=headers,
        )
        assert duplicate.status_code == 409

        listed = client.get("/api/company/recipients", headers=headers)
        assert [r["email"] for r in listed.json()["recipients"]] == ["reports@acme.com"]

        deleted = client.delete(f"/api/company/recipients/{recipient_id}", headers=headers)
        assert deleted.status_code == 200
        assert test_db_session.query(EmailRecipient).count() == 0

        missing = client.delete(f"/api/company/recipients/{recipient_id}", headers=headers)
        assert missing.status_code == 404


# =============================================================================
# Team
# =============================================================================

class TestTeamRoutes:

    def test_owner_invites_member(self, client, owner, active_subscription, test_db_session):
        response = client.post(
            "/api/team/invite",
            json={"email": "Newbie@Acme.com", "role": "member"},
            headers=auth_header(owner.id, owner.email),
        )

        assert response.status_code == 200
        invite = response.json()["invite"]
        assert invite["email"] == "newbie@acme.com"
        assert test_db_session.query(TeamInvite).count() == 1

    def test_oversized_correlation_header_is_not_stored(self, client, owner, active_subscription, test_db_session):
        response = client.post(
            "/api/team/invite",
            json={"email": "traced@acme.com"},
            headers={**auth_header(owner.id, owner.email), CORRELATION_HEADER: "x" * 80},
        )

        assert response.status_code == 200
        assert len(response.headers[CORRELATION_HEADER]) == 36
        assert test_db_session.query(TeamInvite).count() == 1
        stored = {row.correlation_id for row in test_db_session.query(AuditLog)}
        assert stored == {response.headers[CORRELATION_HEADER]}

    def test_duplicate_invite_returns_409(self, client, owner, active_subscription):
        headers = auth_header(owner.id, owner.email)
        client.post("/api/team/invite", json={"email": "dup@acme.com"}, headers=headers)

        response = client.post("/api/team/invite", json={"email": "dup@acme.com"}, headers=headers)
        assert response.status_code == 409

    def test_member_cannot_invite(self, client, company, make_user, active_subscription):
        member = make_user(company_id=company.id)
        response = client.post(
            "/api/team/invite",
            json={"email": "friend@acme.com"},
            headers=auth_header(member.id, member.email),
        )
        assert response.status_code == 403

    def test_invite_without_paid_plan_hits_team_limit(self, client, owner):
        response = client.post(
            "/api/team/invite",
            json={"email": "friend@acme.com"},
            headers=auth_header(owner.id, owner.email),
        )
        assert response.status_code == 400
        assert "Team size limit reached" in response.json()["detail"]

    def test_unknown_invite_token_returns_404(self, client):
        response = client.get("/api/team/invite/does-not-exist")
        assert response.status_code == 404
        assert response.json()["detail"] == "Invalid invitation"

    def test_invitee_accepts_invite(self, client, owner, active_subscription, make_user, test_db_session):
        client.post(
            "/api/team/invite",
            json={"email": "joiner@acme.com", "role": "admin"},
            headers=auth_header(owner.id, owner.email),
        )
        invite = test_db_session.query(TeamInvite).one()
        joiner = make_user(company_id=None, email="joiner@acme.com")

        public = client.get(f"/api/team/invite/{invite.token}")
        assert public.status_code == 200
        assert public.json()["email"] == "joiner@acme.com"

        response = client.post(
            "/api/team/accept",
            json={"token": invite.token},
            headers=auth_header(joiner.id, joiner.email),
        )

        assert response.status_code == 200
        test_db_session.expire_all()
        joined = test_db_session.query(User).filter(User.id == joiner.id).first()
        assert joined.company_id == "company-1"
        assert joined.role == UserRole.ADMIN.value

    def test_accept_with_other_email_returns_403(self, client, owner, active_subscription, make_user, test_db_session):
        client.post(
            "/api/team/invite",
            json={"email": "joiner@acme.com"},
            headers=auth_header(owner.id, owner.email),
        )
        invite = test_db_session.query(TeamInvite).one()
        stranger = make_user(company_id=None, email="stranger@elsewhere.com")

        response = client.post(
            "/api/team/accept",
            json={"token": invite.token},
            headers=auth_header(stranger.id, stranger.email),
        )
        assert response.status_code == 403

    def test_owner_cannot_be_removed(self, client, company, owner, make_user):
        admin = make_user(company_id=company.id, role=UserRole.ADMIN.value)
        response = client.delete(
            f"/api/team?userId={owner.id}",
            headers=auth_header(admin.id, admin.email),
        )
        assert response.status_code in (400, 403)

    def test_list_team(self, client, company, owner, make_user):
        make_user(company_id=company.id)
        response = client.get("/api/team", headers=auth_header(owner.id, owner.email))

        assert response.status_code == 200
        body = response.json()
        assert len(body["members"]) == 2
        assert body["current_user_role"] == UserRole.OWNER.value


# =============================================================================
# Super admin
# =============================================================================

class TestAdminRoutes:

    def test_regular_user_gets_403(self, client, owner):
        response = client.get("/api/admin/companies", headers=auth_header(owner.id, owner.email))
        assert response.status_code == 403

    def test_super_admin_lists_companies(self, client, company, make_user):
        admin = make_user(company_id=None, email="root@askme.app", is_super_admin=True)
        response = client.get("/api/admin/companies", headers=auth_header(admin.id, admin.email))

        assert response.status_code == 200
        assert [c["id"] for c in response.json()["companies"]] == ["company-1"]

    def test_impersonation_switches_company_context(self, client, company, make_user, test_db_session):
        admin = make_user(company_id=None, email="root@askme.app", is_super_admin=True)
        headers = auth_header(admin.id, admin.email)

        started = client.post(
            "/api/admin/impersonate",
            json={"companyId": company.id, "reason": "support ticket"},
            headers=headers,
        )
        assert started.status_code == 200
        assert started.json()["company"]["id"] == company.id

        current = client.get("/api/company", headers=headers)
        assert current.status_code == 200
        assert current.json()["company"]["id"] == company.id
        assert current.json()["is_impersonating"] is True

        ended = client.delete("/api/admin/impersonate", headers=headers)
        assert ended.json()["ended_sessions"] == 1

        after = client.get("/api/company", headers=headers)
        assert after.status_code == 404

        actions = {row.action for row in test_db_session.query(AuditLog).all()}
        assert AuditAction.ADMIN_IMPERSONATION_STARTED.value in actions

    def test_impersonating_unknown_company_returns_404(self, client, make_user):
        admin = make_user(company_id=None, email="root@askme.app", is_super_admin=True)
        response = client.post(
            "/api/admin/impersonate",
            json={"companyId": "nope"},
            headers=auth_header(admin.id, admin.email),
        )
        assert response.status_code == 404


# =============================================================================
# Cron and webhooks
# =============================================================================

class TestCronRoutes:

    def test_missing_secret_returns_401(self, client, monkeypatch):
        monkeypatch.setenv("CRON_SECRET", "cron-secret")
        response = client.post("/api/cron/weekly-digest")
        assert response.status_code == 401

    def test_unconfigured_secret_rejects_everything(self, client, monkeypatch):
        monkeypatch.delenv("CRON_SECRET", raising=False)
        response = client.post("/api/cron/weekly-digest", headers={"Authorization": "Bearer "})
        assert response.status_code == 401

    def test_valid_secret_runs_digest(self, client, monkeypatch):
        monkeypatch.setenv("CRON_SECRET", "cron-secret")
        response = client.post(
            "/api/cron/weekly-digest",
            headers={"Authorization": "Bearer cron-secret"},
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "processed": 0, "results": []}


def stripe_signature(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


class TestStripeWebhookRoute:

    def test_missing_signature_returns_400(self, client):
        response = client.post("/api/webhooks/stripe", content=b"{}")
        assert response.status_code == 400
        assert response.json()["detail"] == "No signature"

    def test_bad_signature_returns_400(self, client, monkeypatch):
        monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
        response = client.post(
            "/api/webhooks/stripe",
            content=b'{"type": "customer.subscription.deleted"}',
            headers={"stripe-signature": "t=1,v1=deadbeef"},
        )
        assert response.status_code == 400
        assert response.json()["detail"].startswith("Webhook Error")

    def test_signed_cancellation_is_applied(self, client, monkeypatch, active_subscription, test_db_session):
        monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
        payload = json.dumps({
            "id": "evt_1",
            "object": "event",
            "type": "customer.subscription.deleted",
            "data": {"object": {"id": "sub_123", "object": "subscription"}},
        }).encode()

        response = client.post(
            "/api/webhooks/stripe",
            content=payload,
            headers={"stripe-signature": stripe_signature(payload)},
        )

        assert response.status_code == 200
        assert response.json() == {"received": True}
        test_db_session.expire_all()
        subscription = test_db_session.query(Subscription).one()
        assert subscription.status == SubscriptionStatus.CANCELED.value


# =============================================================================
# Public endpoints
# =============================================================================

class TestPublicRoutes:

    def test_health_reports_checks(self, client):
        response = client.get("/health")

        assert response.status_code in (200, 503)
        body = response.json()
        assert body["status"] in ("ok", "degraded")
        assert set(body["checks"]) == {"database", "environment", "integrations"}

    def test_contact_requires_fields(self, client):
        response = client.post("/api/contact", json={"name": "Ann", "email": "ann@example.com"})
        assert response.status_code == 400
        assert "Missing required fields" in response.json()["detail"]

    def test_contact_without_email_provider_returns_503(self, client):
        response = client.post(
            "/api/contact",
            json={
                "name": "Ann",
                "email": "ann@example.com",
                "subject": "Pricing",
                "message": "Do you offer annual plans?",
            },
        )
        assert response.status_code == 503
        assert response.json()["error"]["code"] == "SERVICE_UNAVAILABLE"

    def test_contact_send_failure_returns_502(self, client):
        with patch.object(ContactService, "send_contact_message", side_effect=EmailSendError("bounced")):
            response = client.post(
                "/api/contact",
                json={"name": "Ann", "email": "ann@example.com", "subject": "Hi", "message": "Hello"},
            )

        assert response.status_code == 502
        assert response.json()["error"]["details"] == {"service": "resend"}

    def test_startup_logs_configuration(self, monkeypatch):
        monkeypatch.setenv("RATE_LIMIT_ENABLED", "false")
        with patch("src.main.get_health_checker") as get_checker:
            with TestClient(create_app()):
                get_checker.return_value.log_config_status.assert_called_once()

    def test_correlation_id_is_echoed(self, client):
        correlation_id = "0b9f6a52-6f0e-4c1e-9f38-2d4b7c1e5a10"
        response = client.get("/api/team/invite/unknown", headers={CORRELATION_HEADER: correlation_id})
        assert response.headers[CORRELATION_HEADER] == correlation_id
