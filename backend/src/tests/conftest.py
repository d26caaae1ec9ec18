"""
Shared pytest fixtures.

Database tests run against in-memory SQLite. Every model registers on the
shared Base, so importing the model modules is enough for create_all()
to build the full schema (audit_logs included).
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import src.models  # noqa: F401  (registers tables)
import src.platform.audit  # noqa: F401  (registers audit_logs)
from src.db_base import Base
from src.models.company import Company
from src.models.plan import Plan
from src.models.subscription import Subscription, SubscriptionStatus
from src.models.user import User, UserRole


@pytest.fixture
def test_db_session():
    """Fresh SQLite database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def company(test_db_session):
    company = Company(id="company-1", name="Acme Corp", slug="acme-corp", domain="acme.com")
    test_db_session.add(company)
    test_db_session.commit()
    return company


@pytest.fixture
def owner(test_db_session, company):
    user = User(
        id="user-owner",
        email="owner@acme.com",
        name="Olivia Owner",
        company_id=company.id,
        role=UserRole.OWNER.value,
    )
    test_db_session.add(user)
    test_db_session.commit()
    return user


@pytest.fixture
def make_user(test_db_session):
    """Factory for users attached to a company."""
    counter = {"n": 0}

    def _make(company_id=None, role=UserRole.MEMBER.value, email=None, **kwargs):
        counter["n"] += 1
        user = User(
            id=kwargs.pop("id", f"user-{counter['n']}"),
            email=email or f"user{counter['n']}@acme.com",
            company_id=company_id,
            role=role,
            **kwargs,
        )
        test_db_session.add(user)
        test_db_session.commit()
        return user

    return _make


@pytest.fixture
def growth_plan(test_db_session):
    plan = Plan(
        id="growth",
        name="Growth",
        price_cents=4900,
        max_team_members=20,
        ai_insights=True,
        email_digest=True,
    )
    test_db_session.add(plan)
    test_db_session.commit()
    return plan


@pytest.fixture
def active_subscription(test_db_session, company, growth_plan):
    subscription = Subscription(
        company_id=company.id,
        plan_id=growth_plan.id,
        status=SubscriptionStatus.ACTIVE.value,
        stripe_customer_id="cus_123",
        stripe_subscription_id="sub_123",
    )
    test_db_session.add(subscription)
    test_db_session.commit()
    return subscription
