"""
Tests for SuperAdminService: DB-backed authorization, company listing and
impersonation sessions.
"""

import pytest

from src.api.dependencies.company_context import resolve_company_context
from src.models.company import Company
from src.models.impersonation_log import ImpersonationLog
from src.platform.audit import AuditAction, AuditLog
from src.services.super_admin_service import (
    CompanyNotFoundError,
    NotSuperAdminError,
    SuperAdminService,
)


@pytest.fixture
def super_admin(make_user):
    return make_user(id="admin-1", email="root@askme.app", is_super_admin=True)


@pytest.fixture
def service(test_db_session, super_admin):
    return SuperAdminService(test_db_session, actor_user_id=super_admin.id, correlation_id="corr-admin")


class TestAuthorization:

    def test_flag_read_from_database(self, test_db_session, super_admin, owner):
        service = SuperAdminService(test_db_session)

        assert service.is_super_admin(super_admin.id) is True
        assert service.is_super_admin(owner.id) is False
        assert service.is_super_admin("unknown") is False
        assert service.is_super_admin() is False

    def test_inactive_super_admin_denied(self, test_db_session, super_admin):
        super_admin.is_active = False
        test_db_session.commit()

        with pytest.raises(NotSuperAdminError):
            SuperAdminService(test_db_session, actor_user_id=super_admin.id).list_companies()

    def test_regular_user_denied(self, test_db_session, owner):
        with pytest.raises(NotSuperAdminError):
            SuperAdminService(test_db_session, actor_user_id=owner.id).start_impersonation("company-1")


class TestListCompanies:

    def test_includes_subscription_and_member_count(self, service, test_db_session, active_subscription, owner, make_user):
        make_user(company_id=active_subscription.company_id)
        make_user(company_id=active_subscription.company_id, is_active=False)
        test_db_session.add(Company(id="company-2", name="Beta", slug="beta"))
        test_db_session.commit()

        companies = {c["id"]: c for c in service.list_companies()}

        assert companies["company-1"]["subscription"] == {"plan_id": "growth", "status": "active"}
        assert companies["company-1"]["user_count"] == 2
        assert companies["company-2"]["subscription"] is None
        assert companies["company-2"]["user_count"] == 0


class TestImpersonation:

    def test_start_and_end(self, service, test_db_session, company, super_admin):
        result = service.start_impersonation(company.id, reason=None, ip_address="10.0.0.1")

        assert result["success"] is True
        assert result["company"] == {"id": company.id, "name": "Acme Corp", "slug": "acme-corp"}
        active = service.get_active_impersonation()
        assert active.target_company_id == company.id
        assert active.reason == "Troubleshooting"

        assert service.end_impersonation() == 1
        assert service.get_active_impersonation() is None

        actions = [row.action for row in test_db_session.query(AuditLog)]
        assert AuditAction.ADMIN_IMPERSONATION_STARTED.value in actions
        assert AuditAction.ADMIN_IMPERSONATION_ENDED.value in actions

    def test_starting_again_closes_previous(self, service, test_db_session, company):
        test_db_session.add(Company(id="company-2", name="Beta", slug="beta"))
        test_db_session.commit()

        service.start_impersonation(company.id)
        service.start_impersonation("company-2")

        open_logs = test_db_session.query(ImpersonationLog).filter(ImpersonationLog.ended_at.is_(None)).all()
        assert [log.target_company_id for log in open_logs] == ["company-2"]

        ended = test_db_session.query(AuditLog).filter(
            AuditLog.action == AuditAction.ADMIN_IMPERSONATION_ENDED.value
        ).all()
        assert [row.company_id for row in ended] == [company.id]
        assert ended[0].event_metadata["replaced_by_company_id"] == "company-2"

    def test_unknown_company(self, service):
        with pytest.raises(CompanyNotFoundError):
            service.start_impersonation("missing")

    def test_end_without_session(self, service):
        assert service.end_impersonation() == 0

    def test_company_context_follows_impersonation(self, service, test_db_session, company, super_admin):
        service.start_impersonation(company.id)

        context = resolve_company_context(test_db_session, super_admin)

        assert context.is_impersonating is True
        assert context.company_id == company.id
