from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import Select, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from itcrm import audit
from itcrm.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationFailedError
from itcrm.core.roles import Role
from itcrm.core.schemas import Page
from itcrm.crm.models import Activity, ClientCategory, ClientCompany, Contact, Opportunity
from itcrm.crm.repositories import (
    ActivityRepository,
    ClientCategoryRepository,
    ClientCompanyRepository,
    ContactRepository,
    OpportunityRepository,
)
from itcrm.crm.schemas import (
    ActivityCreate,
    ActivityRead,
    ClientCategoryCreate,
    ClientCategoryRead,
    ClientCategoryUpdate,
    ClientCompanyCreate,
    ClientCompanyRead,
    ClientCompanyUpdate,
    ContactCreate,
    ContactRead,
    ContactUpdate,
    OpportunityCreate,
    OpportunityRead,
    OpportunityUpdate,
    ReassignOwnersRequest,
    TeamMetricsRead,
)
from itcrm.directory.models import User
from itcrm.directory.service import find_active_user
from itcrm.platform.security.context import Principal
from itcrm.platform.security.ownership import (
    ProposedOwners,
    check_client_company_owners,
    check_contact_owners,
    check_opportunity_owners,
)
from itcrm.platform.security.repository import BaseRepository, normalize_page
from itcrm.platform.security.scope import apply_scope_filter, resolve_scope


logger = logging.getLogger("itcrm.crm")

_OWNER_FIELDS = ("sales_manager_id", "freelance_consultant_id")


def _commit(session: Session, conflict_message: str, audit_entry: dict[str, Any]) -> None:
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        audit.discard(audit_entry)
        logger.warning("crm.integrity_conflict", extra={"error": str(exc.orig)})
        raise ConflictError(conflict_message) from exc


def _reject_nulls(changes: dict[str, Any], *, nullable: set[str]) -> None:
    for field_name, value in changes.items():
        if value is None and field_name not in nullable:
            raise ValidationFailedError(f"{field_name} cannot be null", details={"field": field_name})


def _require_active_owners(session: Session, proposed: ProposedOwners) -> User:
    """Both proposed owners must be active directory entries; returns the freelancer."""

    if find_active_user(session, proposed.sales_manager_id) is None:
        raise ValidationFailedError("Sales manager does not exist or is not active")
    freelancer = find_active_user(session, proposed.freelance_consultant_id, role=Role.FREELANCE_CONSULTANT)
    if freelancer is None:
        raise ValidationFailedError("Freelance consultant does not exist or is not active")
    return freelancer


def _merged_owners(record: Any, changes: dict[str, Any]) -> ProposedOwners:
    return ProposedOwners(
        sales_manager_id=changes.get("sales_manager_id", record.sales_manager_id),
        freelance_consultant_id=changes.get("freelance_consultant_id", record.freelance_consultant_id),
    )


def _ensure_dual_owner_modifiable(principal: Principal, record: Any, resource: str) -> None:
    match principal.role:
        case Role.ADMIN:
            return
        case Role.SALES_MANAGER:
            if record.sales_manager_id == principal.user_id:
                return
        case Role.FREELANCE_CONSULTANT:
            if record.freelance_consultant_id == principal.user_id:
                return
    raise ForbiddenError(f"Not allowed to modify this {resource}", code="not_modifiable")


def _paginated(
    session: Session,
    repository: BaseRepository[Any],
    query: Select[Any],
    read_model: Any,
    page: int | None,
    page_size: int | None,
) -> Page[Any]:
    resolved_page, resolved_size = normalize_page(page, page_size)
    items, total = repository.paginate(session, query, page=resolved_page, page_size=resolved_size)
    return Page[read_model](
        items=[read_model.model_validate(item) for item in items],
        total=total,
        page=resolved_page,
        page_size=resolved_size,
    )


def _reassign(
    session: Session,
    principal: Principal,
    repository: BaseRepository[Any],
    record_id: int,
    dto: ReassignOwnersRequest,
    read_model: Any,
) -> Any:
    record = repository.get_or_404(session, record_id)

    for owner_id in (dto.sales_manager_id, dto.freelance_consultant_id):
        if find_active_user(session, owner_id) is None:
            raise ConflictError(
                f"User {owner_id} does not exist or is not active",
                code="owner_unavailable",
                details={"userId": owner_id},
            )

    before = {name: getattr(record, name) for name in _OWNER_FIELDS}
    record.sales_manager_id = dto.sales_manager_id
    record.freelance_consultant_id = dto.freelance_consultant_id
    session.flush()
    audit_entry = audit.record(
        actor_user_id=principal.user_id,
        entity_type=repository.resource,
        entity_id=str(record.id),
        action="reassign",
        before=before,
        after={name: getattr(record, name) for name in _OWNER_FIELDS},
        correlation_id=principal.correlation_id,
    )
    _commit(session, "Reassignment conflicts with existing data", audit_entry)
    session.refresh(record)
    return read_model.model_validate(record)


class ClientCategoryService:
    entity_type = "crm.client_category"
    repository = ClientCategoryRepository()

    def list_categories(self, session: Session) -> list[ClientCategoryRead]:
        rows = session.scalars(select(ClientCategory).order_by(ClientCategory.name.asc())).all()
        return [ClientCategoryRead.model_validate(row) for row in rows]

    def create_category(self, session: Session, principal: Principal, dto: ClientCategoryCreate) -> ClientCategoryRead:
        self._ensure_unique_name(session, dto.name)
        category = ClientCategory(name=dto.name, description=dto.description or None)
        session.add(category)
        session.flush()
        audit_entry = audit.record(
            actor_user_id=principal.user_id,
            entity_type=self.entity_type,
            entity_id=str(category.id),
            action="create",
            before=None,
            after=ClientCategoryRead.model_validate(category).model_dump(mode="json"),
            correlation_id=principal.correlation_id,
        )
        _commit(session, "Client category name already exists", audit_entry)
        return ClientCategoryRead.model_validate(category)

    def update_category(
        self,
        session: Session,
        principal: Principal,
        category_id: int,
        dto: ClientCategoryUpdate,
    ) -> ClientCategoryRead:
        category = self.repository.get_or_404(session, category_id)
        changes = dto.model_dump(exclude_unset=True)
        _reject_nulls(changes, nullable={"description"})
        if not changes:
            return ClientCategoryRead.model_validate(category)

        if "name" in changes and changes["name"] != category.name:
            self._ensure_unique_name(session, changes["name"])

        before = ClientCategoryRead.model_validate(category).model_dump(mode="json")
        if "name" in changes:
            category.name = changes["name"]
        if "description" in changes:
            category.description = changes["description"] or None
        session.flush()
        audit_entry = audit.record(
            actor_user_id=principal.user_id,
            entity_type=self.entity_type,
            entity_id=str(category.id),
            action="update",
            before=before,
            after=ClientCategoryRead.model_validate(category).model_dump(mode="json"),
            correlation_id=principal.correlation_id,
        )
        _commit(session, "Client category name already exists", audit_entry)
        return ClientCategoryRead.model_validate(category)

    def _ensure_unique_name(self, session: Session, name: str) -> None:
        existing = session.scalar(select(ClientCategory.id).where(ClientCategory.name == name))
        if existing is not None:
            raise ConflictError("Client category name already exists")


class ClientCompanyService:
    entity_type = "crm.client_company"
    repository = ClientCompanyRepository()

    def list_client_companies(
        self,
        session: Session,
        principal: Principal,
        filters: dict[str, Any],
        page: int | None = None,
        page_size: int | None = None,
    ) -> Page[ClientCompanyRead]:
        stmt: Select[Any] = select(ClientCompany)

        if filters.get("q"):
            stmt = stmt.where(ClientCompany.name.ilike(f"%{filters['q']}%"))
        if filters.get("city"):
            stmt = stmt.where(ClientCompany.city.ilike(f"%{filters['city']}%"))
        if filters.get("status"):
            stmt = stmt.where(ClientCompany.status == filters["status"])
        if filters.get("category_id") is not None:
            stmt = stmt.where(ClientCompany.category_id == filters["category_id"])

        stmt = self.repository.apply_scope_query(stmt, resolve_scope(session, principal))
        return _paginated(session, self.repository, stmt, ClientCompanyRead, page, page_size)

    def get_client_company(self, session: Session, principal: Principal, company_id: int) -> ClientCompanyRead:
        scope = resolve_scope(session, principal)
        company = self.repository.get_visible(session, scope, principal, company_id)
        return ClientCompanyRead.model_validate(company)

    def create_client_company(
        self,
        session: Session,
        principal: Principal,
        dto: ClientCompanyCreate,
    ) -> ClientCompanyRead:
        self._ensure_category_exists(session, dto.category_id)
        proposed = ProposedOwners(
            sales_manager_id=dto.sales_manager_id,
            freelance_consultant_id=dto.freelance_consultant_id,
        )
        freelancer = _require_active_owners(session, proposed)
        check_client_company_owners(principal, freelancer, proposed).enforce()

        company = ClientCompany(
            name=dto.name,
            industry=dto.industry,
            company_size=dto.company_size,
            website=str(dto.website) if dto.website is not None else None,
            country=dto.country,
            city=dto.city,
            address=dto.address,
            status=dto.status,
            category_id=dto.category_id,
            sales_manager_id=dto.sales_manager_id,
            freelance_consultant_id=dto.freelance_consultant_id,
        )
        session.add(company)
        session.flush()

        audit_entry = audit.record(
            actor_user_id=principal.user_id,
            entity_type=self.entity_type,
            entity_id=str(company.id),
            action="create",
            before=None,
            after=ClientCompanyRead.model_validate(company).model_dump(mode="json"),
            correlation_id=principal.correlation_id,
        )
        _commit(session, "Client company conflicts with existing data", audit_entry)
        session.refresh(company)
        return ClientCompanyRead.model_validate(company)

    def update_client_company(
        self,
        session: Session,
        principal: Principal,
        company_id: int,
        dto: ClientCompanyUpdate,
    ) -> ClientCompanyRead:
        scope = resolve_scope(session, principal)
        company = self.repository.get_visible(session, scope, principal, company_id, action="update")
        if not principal.is_admin and company.sales_manager_id != principal.user_id:
            raise ForbiddenError("Only the owning sales manager can modify this client company", code="not_modifiable")

        changes = dto.model_dump(exclude_unset=True)
        _reject_nulls(changes, nullable={"website"})
        if not changes:
            return ClientCompanyRead.model_validate(company)

        if "website" in changes and changes["website"] is not None:
            changes["website"] = str(changes["website"])
        if "category_id" in changes:
            self._ensure_category_exists(session, changes["category_id"])
        if any(field_name in changes for field_name in _OWNER_FIELDS):
            proposed = _merged_owners(company, changes)
            freelancer = _require_active_owners(session, proposed)
            if not principal.is_admin:
                check_client_company_owners(principal, freelancer, proposed).enforce()

        before = ClientCompanyRead.model_validate(company).model_dump(mode="json")
        for field_name, value in changes.items():
            setattr(company, field_name, value)
        session.flush()

        audit_entry = audit.record(
            actor_user_id=principal.user_id,
            entity_type=self.entity_type,
            entity_id=str(company.id),
            action="update",
            before=before,
            after=ClientCompanyRead.model_validate(company).model_dump(mode="json"),
            correlation_id=principal.correlation_id,
        )
        _commit(session, "Client company conflicts with existing data", audit_entry)
        session.refresh(company)
        return ClientCompanyRead.model_validate(company)

    def reassign_owners(
        self,
        session: Session,
        principal: Principal,
        company_id: int,
        dto: ReassignOwnersRequest,
    ) -> ClientCompanyRead:
        return _reassign(session, principal, self.repository, company_id, dto, ClientCompanyRead)

    def _ensure_category_exists(self, session: Session, category_id: int) -> None:
        if session.get(ClientCategory, category_id) is None:
            raise ValidationFailedError("categoryId does not reference an existing client category")


class ContactService:
    entity_type = "crm.contact"
    repository = ContactRepository()
    company_repository = ClientCompanyRepository()

    def list_contacts(
        self,
        session: Session,
        principal: Principal,
        filters: dict[str, Any],
        page: int | None = None,
        page_size: int | None = None,
    ) -> Page[ContactRead]:
        stmt: Select[Any] = select(Contact)

        if filters.get("q"):
            pattern = f"%{filters['q']}%"
            stmt = stmt.where(or_(Contact.name.ilike(pattern), Contact.email.ilike(pattern)))
        if filters.get("client_company_id") is not None:
            stmt = stmt.where(Contact.client_company_id == filters["client_company_id"])

        stmt = self.repository.apply_scope_query(stmt, resolve_scope(session, principal))
        return _paginated(session, self.repository, stmt, ContactRead, page, page_size)

    def get_contact(self, session: Session, principal: Principal, contact_id: int) -> ContactRead:
        scope = resolve_scope(session, principal)
        contact = self.repository.get_visible(session, scope, principal, contact_id)
        return ContactRead.model_validate(contact)

    def create_contact(self, session: Session, principal: Principal, dto: ContactCreate) -> ContactRead:
        company = self.company_repository.get_or_404(session, dto.client_company_id)
        proposed = ProposedOwners(
            sales_manager_id=dto.sales_manager_id,
            freelance_consultant_id=dto.freelance_consultant_id,
        )
        check_contact_owners(principal, company, proposed).enforce()
        _require_active_owners(session, proposed)

        contact = Contact(
            name=dto.name,
            email=dto.email,
            phone=dto.phone,
            position=dto.position,
            notes=dto.notes,
            client_company_id=company.id,
            sales_manager_id=dto.sales_manager_id,
            freelance_consultant_id=dto.freelance_consultant_id,
        )
        session.add(contact)
        session.flush()

        audit_entry = audit.record(
            actor_user_id=principal.user_id,
            entity_type=self.entity_type,
            entity_id=str(contact.id),
            action="create",
            before=None,
            after=ContactRead.model_validate(contact).model_dump(mode="json"),
            correlation_id=principal.correlation_id,
        )
        _commit(session, "Contact conflicts with existing data", audit_entry)
        session.refresh(contact)
        return ContactRead.model_validate(contact)

    def update_contact(
        self,
        session: Session,
        principal: Principal,
        contact_id: int,
        dto: ContactUpdate,
    ) -> ContactRead:
        scope = resolve_scope(session, principal)
        contact = self.repository.get_visible(session, scope, principal, contact_id, action="update")
        _ensure_dual_owner_modifiable(principal, contact, "contact")

        changes = dto.model_dump(exclude_unset=True)
        _reject_nulls(changes, nullable={"email", "phone", "position", "notes"})
        if not changes:
            return ContactRead.model_validate(contact)

        if any(field_name in changes for field_name in (*_OWNER_FIELDS, "client_company_id")):
            company = self.company_repository.get_or_404(
                session,
                changes.get("client_company_id", contact.client_company_id),
            )
            proposed = _merged_owners(contact, changes)
            if not principal.is_admin:
                check_contact_owners(principal, company, proposed).enforce()
            _require_active_owners(session, proposed)

        before = ContactRead.model_validate(contact).model_dump(mode="json")
        for field_name, value in changes.items():
            setattr(contact, field_name, value)
        session.flush()

        audit_entry = audit.record(
            actor_user_id=principal.user_id,
            entity_type=self.entity_type,
            entity_id=str(contact.id),
            action="update",
            before=before,
            after=ContactRead.model_validate(contact).model_dump(mode="json"),
            correlation_id=principal.correlation_id,
        )
        _commit(session, "Contact conflicts with existing data", audit_entry)
        session.refresh(contact)
        return ContactRead.model_validate(contact)

    def reassign_owners(
        self,
        session: Session,
        principal: Principal,
        contact_id: int,
        dto: ReassignOwnersRequest,
    ) -> ContactRead:
        return _reassign(session, principal, self.repository, contact_id, dto, ContactRead)


class OpportunityService:
    entity_type = "crm.opportunity"
    repository = OpportunityRepository()
    contact_repository = ContactRepository()
    company_repository = ClientCompanyRepository()

    def list_opportunities(
        self,
        session: Session,
        principal: Principal,
        filters: dict[str, Any],
        page: int | None = None,
        page_size: int | None = None,
    ) -> Page[OpportunityRead]:
        stmt: Select[Any] = select(Opportunity)

        if filters.get("q"):
            stmt = stmt.where(Opportunity.title.ilike(f"%{filters['q']}%"))
        if filters.get("stage"):
            stmt = stmt.where(Opportunity.stage == filters["stage"])
        if filters.get("status"):
            stmt = stmt.where(Opportunity.status == filters["status"])
        if filters.get("contact_id") is not None:
            stmt = stmt.where(Opportunity.contact_id == filters["contact_id"])
        if filters.get("client_company_id") is not None:
            stmt = stmt.where(Opportunity.client_company_id == filters["client_company_id"])

        stmt = self.repository.apply_scope_query(stmt, resolve_scope(session, principal))
        return _paginated(session, self.repository, stmt, OpportunityRead, page, page_size)

    def get_opportunity(self, session: Session, principal: Principal, opportunity_id: int) -> OpportunityRead:
        scope = resolve_scope(session, principal)
        opportunity = self.repository.get_visible(session, scope, principal, opportunity_id)
        return OpportunityRead.model_validate(opportunity)

    def create_opportunity(self, session: Session, principal: Principal, dto: OpportunityCreate) -> OpportunityRead:
        contact = self.contact_repository.get_or_404(session, dto.contact_id)
        client_company_id = self._resolve_client_company_id(session, contact, dto.client_company_id)
        proposed = ProposedOwners(
            sales_manager_id=dto.sales_manager_id,
            freelance_consultant_id=dto.freelance_consultant_id,
        )
        check_opportunity_owners(principal, contact, proposed).enforce()
        _require_active_owners(session, proposed)

        opportunity = Opportunity(
            title=dto.title,
            description=dto.description,
            stage=dto.stage,
            status=dto.status,
            estimated_value=dto.estimated_value,
            currency=dto.currency,
            probability=dto.probability,
            expected_close_date=dto.expected_close_date,
            contact_id=contact.id,
            client_company_id=client_company_id,
            sales_manager_id=dto.sales_manager_id,
            freelance_consultant_id=dto.freelance_consultant_id,
        )
        session.add(opportunity)
        session.flush()

        audit_entry = audit.record(
            actor_user_id=principal.user_id,
            entity_type=self.entity_type,
            entity_id=str(opportunity.id),
            action="create",
            before=None,
            after=OpportunityRead.model_validate(opportunity).model_dump(mode="json"),
            correlation_id=principal.correlation_id,
        )
        _commit(session, "Opportunity conflicts with existing data", audit_entry)
        session.refresh(opportunity)
        return OpportunityRead.model_validate(opportunity)

    def update_opportunity(
        self,
        session: Session,
        principal: Principal,
        opportunity_id: int,
        dto: OpportunityUpdate,
    ) -> OpportunityRead:
        scope = resolve_scope(session, principal)
        opportunity = self.repository.get_visible(session, scope, principal, opportunity_id, action="update")
        _ensure_dual_owner_modifiable(principal, opportunity, "opportunity")

        changes = dto.model_dump(exclude_unset=True)
        _reject_nulls(changes, nullable={"description", "expected_close_date", "client_company_id"})
        if not changes:
            return OpportunityRead.model_validate(opportunity)

        if any(field_name in changes for field_name in (*_OWNER_FIELDS, "contact_id", "client_company_id")):
            contact = self.contact_repository.get_or_404(session, changes.get("contact_id", opportunity.contact_id))
            if "client_company_id" in changes or "contact_id" in changes:
                changes["client_company_id"] = self._resolve_client_company_id(
                    session,
                    contact,
                    changes.get("client_company_id"),
                )
            proposed = _merged_owners(opportunity, changes)
            if not principal.is_admin:
                check_opportunity_owners(principal, contact, proposed).enforce()
            _require_active_owners(session, proposed)

        before = OpportunityRead.model_validate(opportunity).model_dump(mode="json")
        for field_name, value in changes.items():
            setattr(opportunity, field_name, value)
        session.flush()

        audit_entry = audit.record(
            actor_user_id=principal.user_id,
            entity_type=self.entity_type,
            entity_id=str(opportunity.id),
            action="update",
            before=before,
            after=OpportunityRead.model_validate(opportunity).model_dump(mode="json"),
            correlation_id=principal.correlation_id,
        )
        _commit(session, "Opportunity conflicts with existing data", audit_entry)
        session.refresh(opportunity)
        return OpportunityRead.model_validate(opportunity)

    def reassign_owners(
        self,
        session: Session,
        principal: Principal,
        opportunity_id: int,
        dto: ReassignOwnersRequest,
    ) -> OpportunityRead:
        return _reassign(session, principal, self.repository, opportunity_id, dto, OpportunityRead)

    def _resolve_client_company_id(self, session: Session, contact: Contact, requested: int | None) -> int:
        """Defaults to the contact's company; an explicit company must be that same company."""

        if requested is None:
            return contact.client_company_id
        company = self.company_repository.get_or_404(session, requested)
        if company.id != contact.client_company_id:
            raise ValidationFailedError(
                "clientCompanyId must match the contact's client company",
                details={"contactClientCompanyId": contact.client_company_id},
            )
        return company.id


class ActivityService:
    entity_type = "crm.activity"
    repository = ActivityRepository()
    target_repositories: dict[str, BaseRepository[Any]] = {
        "clientCompany": ClientCompanyRepository(),
        "opportunity": OpportunityRepository(),
    }

    def list_activities(
        self,
        session: Session,
        principal: Principal,
        filters: dict[str, Any],
        page: int | None = None,
        page_size: int | None = None,
    ) -> Page[ActivityRead]:
        stmt: Select[Any] = select(Activity)

        if filters.get("entity_type"):
            stmt = stmt.where(Activity.entity_type == filters["entity_type"])
        if filters.get("entity_id") is not None:
            stmt = stmt.where(Activity.entity_id == filters["entity_id"])
        if filters.get("type"):
            stmt = stmt.where(Activity.type == filters["type"])

        stmt = self.repository.apply_scope_query(stmt, resolve_scope(session, principal))
        return _paginated(session, self.repository, stmt, ActivityRead, page, page_size)

    def get_activity(self, session: Session, principal: Principal, activity_id: int) -> ActivityRead:
        scope = resolve_scope(session, principal)
        activity = self.repository.get_visible(session, scope, principal, activity_id)
        return ActivityRead.model_validate(activity)

    def create_activity(self, session: Session, principal: Principal, dto: ActivityCreate) -> ActivityRead:
        scope = resolve_scope(session, principal)
        target_repository = self.target_repositories[dto.entity_type]
        target_repository.get_visible(session, scope, principal, dto.entity_id, action="log_activity")

        activity = Activity(
            user_id=principal.user_id,
            entity_type=dto.entity_type,
            entity_id=dto.entity_id,
            type=dto.type,
            description=dto.description,
        )
        session.add(activity)
        session.flush()

        audit_entry = audit.record(
            actor_user_id=principal.user_id,
            entity_type=self.entity_type,
            entity_id=str(activity.id),
            action="create",
            before=None,
            after=ActivityRead.model_validate(activity).model_dump(mode="json"),
            correlation_id=principal.correlation_id,
        )
        _commit(session, "Activity conflicts with existing data", audit_entry)
        session.refresh(activity)
        return ActivityRead.model_validate(activity)


class TeamMetricsService:
    def get_team_metrics(
        self,
        session: Session,
        principal: Principal,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> TeamMetricsRead:
        stmt: Select[Any] = select(Opportunity.stage, Opportunity.estimated_value)
        if date_from is not None:
            stmt = stmt.where(Opportunity.expected_close_date >= date_from)
        if date_to is not None:
            stmt = stmt.where(Opportunity.expected_close_date <= date_to)
        stmt = apply_scope_filter(
            stmt,
            resolve_scope(session, principal),
            Opportunity.sales_manager_id,
            Opportunity.freelance_consultant_id,
        )

        by_stage: dict[str, int] = {}
        won_deals = 0
        total_value = 0.0
        rows = session.execute(stmt).all()
        for stage, estimated_value in rows:
            by_stage[stage] = by_stage.get(stage, 0) + 1
            total_value += estimated_value
            if stage == "won":
                won_deals += 1

        return TeamMetricsRead(
            total_opportunities=len(rows),
            opportunities_by_stage=by_stage,
            won_deals=won_deals,
            total_estimated_value=total_value,
        )
