from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from itcrm import audit
from itcrm.core.roles import Role
from itcrm.crm.models import ClientCompany
from itcrm.crm.repositories import ClientCompanyRepository
from itcrm.directory.models import User
from itcrm.platform.security import Principal, Scope, ScopeViolationError, apply_scope_filter, resolve_scope, validate_read_scope
from tests.conftest import CrmData, Directory


def _principal(user: User) -> Principal:
    return Principal(user_id=user.id, role=user.role)


def test_admin_scope_is_unrestricted(db_session: Session, directory: Directory) -> None:
    scope = resolve_scope(db_session, _principal(directory.admin))

    assert scope.is_unrestricted
    assert scope.allows(directory.sm2.id)
    assert scope.allows(None)


def test_freelance_consultant_scope_is_only_self(db_session: Session, directory: Directory) -> None:
    scope = resolve_scope(db_session, _principal(directory.fc1))

    assert scope.user_ids == frozenset({directory.fc1.id})


def test_sales_manager_scope_is_self_plus_direct_reports(db_session: Session, directory: Directory) -> None:
    scope = resolve_scope(db_session, _principal(directory.sm1))

    assert scope.user_ids == frozenset(
        {directory.sm1.id, directory.fc1.id, directory.fc2.id, directory.fc_inactive.id}
    )
    assert directory.fc3.id not in scope.user_ids
    assert directory.sm2.id not in scope.user_ids


def test_sales_manager_scope_excludes_reports_of_other_managers(db_session: Session) -> None:
    sm = User(name="Manager Ten", email="ten@itcrm.dev", password_hash="x", role=Role.SALES_MANAGER)
    other_sm = User(name="Manager Thirty", email="thirty@itcrm.dev", password_hash="x", role=Role.SALES_MANAGER)
    db_session.add_all([sm, other_sm])
    db_session.flush()
    sm.manager_id = sm.id
    other_sm.manager_id = other_sm.id
    f1 = User(name="F One", email="f1@itcrm.dev", password_hash="x", role=Role.FREELANCE_CONSULTANT, manager_id=sm.id)
    f2 = User(
        name="F Two",
        email="f2@itcrm.dev",
        password_hash="x",
        role=Role.FREELANCE_CONSULTANT,
        manager_id=other_sm.id,
    )
    db_session.add_all([f1, f2])
    db_session.commit()

    scope = resolve_scope(db_session, _principal(sm))

    assert scope.user_ids == frozenset({sm.id, f1.id})


def test_scope_is_reread_after_team_change(db_session: Session, directory: Directory) -> None:
    principal = _principal(directory.sm1)
    assert directory.fc3.id not in (resolve_scope(db_session, principal).user_ids or ())

    directory.fc3.manager_id = directory.sm1.id
    db_session.commit()

    assert directory.fc3.id in (resolve_scope(db_session, principal).user_ids or ())


def test_apply_scope_filter_ors_owner_columns() -> None:
    scope = Scope(user_ids=frozenset({3, 1}))
    stmt = apply_scope_filter(
        select(ClientCompany),
        scope,
        ClientCompany.sales_manager_id,
        ClientCompany.freelance_consultant_id,
    )
    sql = str(stmt)

    assert "sales_manager_id IN" in sql
    assert "freelance_consultant_id IN" in sql
    assert " OR " in sql


def test_apply_scope_filter_leaves_unrestricted_query_untouched() -> None:
    stmt = select(ClientCompany)

    assert apply_scope_filter(stmt, Scope.unrestricted(), ClientCompany.sales_manager_id) is stmt


def test_scoped_query_returns_rows_with_any_owner_in_scope(
    db_session: Session,
    directory: Directory,
    crm: CrmData,
) -> None:
    repository = ClientCompanyRepository()
    freelancer_scope = resolve_scope(db_session, _principal(directory.fc3))

    rows = db_session.scalars(repository.apply_scope_query(select(ClientCompany), freelancer_scope)).all()

    assert [row.id for row in rows] == [crm.company2.id]


def test_validate_read_scope_denies_and_audits(db_session: Session, directory: Directory) -> None:
    principal = _principal(directory.fc1)
    scope = resolve_scope(db_session, principal)

    with pytest.raises(ScopeViolationError) as exc_info:
        validate_read_scope(
            "crm.client_company",
            scope,
            principal,
            entity_id=7,
            owner_ids=(directory.sm2.id, directory.fc3.id),
        )

    assert exc_info.value.status_code == 403
    assert exc_info.value.code == "out_of_scope"
    denied = [entry for entry in audit.audit_entries if entry["action"] == "scope.denied"]
    assert denied
    assert denied[-1]["entity_id"] == "7"
    assert denied[-1]["after"]["resource"] == "crm.client_company"


def test_validate_read_scope_allows_when_either_owner_in_scope(db_session: Session, directory: Directory) -> None:
    principal = _principal(directory.fc1)
    scope = resolve_scope(db_session, principal)

    validate_read_scope(
        "crm.contact",
        scope,
        principal,
        entity_id=1,
        owner_ids=(directory.sm2.id, directory.fc1.id),
    )

    assert audit.audit_entries == []
