from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("RATE_LIMIT_DISABLED", "true")

from collections.abc import Callable, Generator
from dataclasses import dataclass
from datetime import datetime, timezone

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from itcrm import audit
from itcrm.core.auth import get_current_principal
from itcrm.core.config import get_settings
from itcrm.core.database import Base, get_db
from itcrm.core.passwords import hash_password
from itcrm.core.roles import Role
from itcrm.crm.models import ClientCategory, ClientCompany, Contact, Opportunity
from itcrm.directory.models import User
from itcrm.main import app
from itcrm.middleware.rate_limit import reset_rate_limiter
from itcrm.platform.security.context import Principal


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_state() -> Generator[None, None, None]:
    audit.audit_entries.clear()
    reset_rate_limiter()
    get_settings.cache_clear()
    yield
    audit.audit_entries.clear()
    reset_rate_limiter()
    get_settings.cache_clear()


def _add_user(
    session: Session,
    name: str,
    role: Role,
    *,
    manager: User | None = None,
    is_active: bool = True,
) -> User:
    user = User(
        name=name,
        email=f"{name.lower().replace(' ', '.')}@itcrm.dev",
        password_hash=hash_password("secret123"),
        role=role,
        manager_id=manager.id if manager is not None else None,
        is_active=is_active,
    )
    session.add(user)
    session.flush()
    if manager is None:
        user.manager_id = user.id
    return user


@dataclass
class Directory:
    admin: User
    sm1: User
    sm2: User
    fc1: User
    fc2: User
    fc3: User
    fc_inactive: User


@pytest.fixture()
def directory(db_session: Session) -> Directory:
    """sm1 manages fc1, fc2 and an inactive freelancer; sm2 manages fc3."""

    admin = _add_user(db_session, "Admin", Role.ADMIN)
    sm1 = _add_user(db_session, "Sales One", Role.SALES_MANAGER)
    sm2 = _add_user(db_session, "Sales Two", Role.SALES_MANAGER)
    fc1 = _add_user(db_session, "Free One", Role.FREELANCE_CONSULTANT, manager=sm1)
    fc2 = _add_user(db_session, "Free Two", Role.FREELANCE_CONSULTANT, manager=sm1)
    fc3 = _add_user(db_session, "Free Three", Role.FREELANCE_CONSULTANT, manager=sm2)
    fc_inactive = _add_user(db_session, "Free Gone", Role.FREELANCE_CONSULTANT, manager=sm1, is_active=False)
    db_session.commit()
    return Directory(admin=admin, sm1=sm1, sm2=sm2, fc1=fc1, fc2=fc2, fc3=fc3, fc_inactive=fc_inactive)


@dataclass
class CrmData:
    category: ClientCategory
    company1: ClientCompany
    company2: ClientCompany
    contact1: Contact
    contact2: Contact
    opportunity1: Opportunity
    opportunity2: Opportunity


@pytest.fixture()
def crm(db_session: Session, directory: Directory) -> CrmData:
    """One company, contact and opportunity per team: (sm1, fc1) and (sm2, fc3)."""

    category = ClientCategory(name="Enterprise", description="Large accounts")
    db_session.add(category)
    db_session.flush()

    def company(name: str, sm: User, fc: User) -> ClientCompany:
        return ClientCompany(
            name=name,
            industry="Software",
            company_size="50-200",
            country="Serbia",
            city="Belgrade",
            address="Main 1",
            status="active",
            category_id=category.id,
            sales_manager_id=sm.id,
            freelance_consultant_id=fc.id,
        )

    company1 = company("Acme", directory.sm1, directory.fc1)
    company2 = company("Globex", directory.sm2, directory.fc3)
    db_session.add_all([company1, company2])
    db_session.flush()

    contact1 = Contact(
        name="Ana Acme",
        email="ana@acme.com",
        client_company_id=company1.id,
        sales_manager_id=directory.sm1.id,
        freelance_consultant_id=directory.fc1.id,
    )
    contact2 = Contact(
        name="Gordon Globex",
        email="gordon@globex.com",
        client_company_id=company2.id,
        sales_manager_id=directory.sm2.id,
        freelance_consultant_id=directory.fc3.id,
    )
    db_session.add_all([contact1, contact2])
    db_session.flush()

    opportunity1 = Opportunity(
        title="Acme ERP rollout",
        stage="proposal",
        status="open",
        estimated_value=1000,
        currency="EUR",
        probability=0.5,
        expected_close_date=datetime(2026, 3, 1, tzinfo=timezone.utc),
        contact_id=contact1.id,
        client_company_id=company1.id,
        sales_manager_id=directory.sm1.id,
        freelance_consultant_id=directory.fc1.id,
    )
    opportunity2 = Opportunity(
        title="Globex CRM migration",
        stage="won",
        status="closed",
        estimated_value=2500,
        currency="EUR",
        probability=1,
        expected_close_date=datetime(2026, 6, 1, tzinfo=timezone.utc),
        contact_id=contact2.id,
        client_company_id=company2.id,
        sales_manager_id=directory.sm2.id,
        freelance_consultant_id=directory.fc3.id,
    )
    db_session.add_all([opportunity1, opportunity2])
    db_session.commit()
    return CrmData(
        category=category,
        company1=company1,
        company2=company2,
        contact1=contact1,
        contact2=contact2,
        opportunity1=opportunity1,
        opportunity2=opportunity2,
    )


@pytest.fixture()
def client(db_session: Session) -> Generator[tuple[TestClient, Callable[[User], None]], None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    state: dict[str, User | None] = {"current": None}

    def override_get_current_principal(request: Request) -> Principal:
        user = state["current"]
        assert user is not None, "call set_actor() before issuing requests"
        return Principal(
            user_id=user.id,
            role=user.role,
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    def set_actor(user: User) -> None:
        state["current"] = user

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_principal] = override_get_current_principal
    with TestClient(app) as test_client:
        yield test_client, set_actor
    app.dependency_overrides.clear()


@pytest.fixture()
def anonymous_client(db_session: Session) -> Generator[TestClient, None, None]:
    """Real session-cookie authentication; only the database is overridden."""

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
