from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from itcrm.api.errors import app_error_response
from itcrm.core.auth import get_current_principal
from itcrm.core.database import get_db
from itcrm.core.errors import AppError
from itcrm.core.schemas import Page
from itcrm.crm.schemas import (
    ActivityCreate,
    ActivityEntityType,
    ActivityRead,
    ActivityType,
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
from itcrm.crm.service import (
    ActivityService,
    ClientCategoryService,
    ClientCompanyService,
    ContactService,
    OpportunityService,
    TeamMetricsService,
)
from itcrm.platform.security.context import Principal
from itcrm.platform.security.permissions import require_permission

categories_router = APIRouter(prefix="/api/client-categories", tags=["crm.client_categories"])
companies_router = APIRouter(prefix="/api/client-companies", tags=["crm.client_companies"])
contacts_router = APIRouter(prefix="/api/contacts", tags=["crm.contacts"])
opportunities_router = APIRouter(prefix="/api/opportunities", tags=["crm.opportunities"])
activities_router = APIRouter(prefix="/api/activities", tags=["crm.activities"])
reassign_router = APIRouter(prefix="/api/admin/reassign", tags=["crm.reassign"])
metrics_router = APIRouter(prefix="/api/metrics", tags=["crm.metrics"])

category_service = ClientCategoryService()
company_service = ClientCompanyService()
contact_service = ContactService()
opportunity_service = OpportunityService()
activity_service = ActivityService()
team_metrics_service = TeamMetricsService()


@categories_router.get("", response_model=list[ClientCategoryRead])
def list_client_categories(
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[ClientCategoryRead] | JSONResponse:
    try:
        require_permission(principal, "crm.client_categories.read")
        return category_service.list_categories(db)
    except AppError as exc:
        return app_error_response(request, exc)


@categories_router.post("", response_model=ClientCategoryRead, status_code=status.HTTP_201_CREATED)
def create_client_category(
    request: Request,
    dto: ClientCategoryCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ClientCategoryRead | JSONResponse:
    try:
        require_permission(principal, "crm.client_categories.manage")
        return category_service.create_category(db, principal, dto)
    except AppError as exc:
        return app_error_response(request, exc)


@categories_router.patch("/{category_id}", response_model=ClientCategoryRead)
def patch_client_category(
    request: Request,
    category_id: int,
    dto: ClientCategoryUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ClientCategoryRead | JSONResponse:
    try:
        require_permission(principal, "crm.client_categories.manage")
        return category_service.update_category(db, principal, category_id, dto)
    except AppError as exc:
        return app_error_response(request, exc)


@companies_router.get("", response_model=Page[ClientCompanyRead])
def list_client_companies(
    request: Request,
    q: str | None = Query(default=None),
    city: str | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    category_id: int | None = Query(default=None, alias="categoryId"),
    page: int | None = Query(default=None),
    page_size: int | None = Query(default=None, alias="pageSize"),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> Page[ClientCompanyRead] | JSONResponse:
    try:
        require_permission(principal, "crm.client_companies.read")
        return company_service.list_client_companies(
            db,
            principal,
            filters={"q": q, "city": city, "status": status_filter, "category_id": category_id},
            page=page,
            page_size=page_size,
        )
    except AppError as exc:
        return app_error_response(request, exc)


@companies_router.post("", response_model=ClientCompanyRead, status_code=status.HTTP_201_CREATED)
def create_client_company(
    request: Request,
    dto: ClientCompanyCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ClientCompanyRead | JSONResponse:
    try:
        require_permission(principal, "crm.client_companies.create")
        return company_service.create_client_company(db, principal, dto)
    except AppError as exc:
        return app_error_response(request, exc)


@companies_router.get("/{company_id}", response_model=ClientCompanyRead)
def get_client_company(
    request: Request,
    company_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ClientCompanyRead | JSONResponse:
    try:
        require_permission(principal, "crm.client_companies.read")
        return company_service.get_client_company(db, principal, company_id)
    except AppError as exc:
        return app_error_response(request, exc)


@companies_router.patch("/{company_id}", response_model=ClientCompanyRead)
def patch_client_company(
    request: Request,
    company_id: int,
    dto: ClientCompanyUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ClientCompanyRead | JSONResponse:
    try:
        require_permission(principal, "crm.client_companies.update")
        return company_service.update_client_company(db, principal, company_id, dto)
    except AppError as exc:
        return app_error_response(request, exc)


@contacts_router.get("", response_model=Page[ContactRead])
def list_contacts(
    request: Request,
    q: str | None = Query(default=None),
    client_company_id: int | None = Query(default=None, alias="clientCompanyId"),
    page: int | None = Query(default=None),
    page_size: int | None = Query(default=None, alias="pageSize"),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> Page[ContactRead] | JSONResponse:
    try:
        require_permission(principal, "crm.contacts.read")
        return contact_service.list_contacts(
            db,
            principal,
            filters={"q": q, "client_company_id": client_company_id},
            page=page,
            page_size=page_size,
        )
    except AppError as exc:
        return app_error_response(request, exc)


@contacts_router.post("", response_model=ContactRead, status_code=status.HTTP_201_CREATED)
def create_contact(
    request: Request,
    dto: ContactCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ContactRead | JSONResponse:
    try:
        require_permission(principal, "crm.contacts.create")
        return contact_service.create_contact(db, principal, dto)
    except AppError as exc:
        return app_error_response(request, exc)


@contacts_router.get("/{contact_id}", response_model=ContactRead)
def get_contact(
    request: Request,
    contact_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ContactRead | JSONResponse:
    try:
        require_permission(principal, "crm.contacts.read")
        return contact_service.get_contact(db, principal, contact_id)
    except AppError as exc:
        return app_error_response(request, exc)


@contacts_router.patch("/{contact_id}", response_model=ContactRead)
def patch_contact(
    request: Request,
    contact_id: int,
    dto: ContactUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ContactRead | JSONResponse:
    try:
        require_permission(principal, "crm.contacts.update")
        return contact_service.update_contact(db, principal, contact_id, dto)
    except AppError as exc:
        return app_error_response(request, exc)


@opportunities_router.get("", response_model=Page[OpportunityRead])
def list_opportunities(
    request: Request,
    q: str | None = Query(default=None),
    stage: str | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    contact_id: int | None = Query(default=None, alias="contactId"),
    client_company_id: int | None = Query(default=None, alias="clientCompanyId"),
    page: int | None = Query(default=None),
    page_size: int | None = Query(default=None, alias="pageSize"),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> Page[OpportunityRead] | JSONResponse:
    try:
        require_permission(principal, "crm.opportunities.read")
        return opportunity_service.list_opportunities(
            db,
            principal,
            filters={
                "q": q,
                "stage": stage,
                "status": status_filter,
                "contact_id": contact_id,
                "client_company_id": client_company_id,
            },
            page=page,
            page_size=page_size,
        )
    except AppError as exc:
        return app_error_response(request, exc)


@opportunities_router.post("", response_model=OpportunityRead, status_code=status.HTTP_201_CREATED)
def create_opportunity(
    request: Request,
    dto: OpportunityCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> OpportunityRead | JSONResponse:
    try:
        require_permission(principal, "crm.opportunities.create")
        return opportunity_service.create_opportunity(db, principal, dto)
    except AppError as exc:
        return app_error_response(request, exc)


@opportunities_router.get("/{opportunity_id}", response_model=OpportunityRead)
def get_opportunity(
    request: Request,
    opportunity_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> OpportunityRead | JSONResponse:
    try:
        require_permission(principal, "crm.opportunities.read")
        return opportunity_service.get_opportunity(db, principal, opportunity_id)
    except AppError as exc:
        return app_error_response(request, exc)


@opportunities_router.patch("/{opportunity_id}", response_model=OpportunityRead)
def patch_opportunity(
    request: Request,
    opportunity_id: int,
    dto: OpportunityUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> OpportunityRead | JSONResponse:
    try:
        require_permission(principal, "crm.opportunities.update")
        return opportunity_service.update_opportunity(db, principal, opportunity_id, dto)
    except AppError as exc:
        return app_error_response(request, exc)


@activities_router.get("", response_model=Page[ActivityRead])
def list_activities(
    request: Request,
    entity_type: ActivityEntityType | None = Query(default=None, alias="entityType"),
    entity_id: int | None = Query(default=None, alias="entityId"),
    activity_type: ActivityType | None = Query(default=None, alias="type"),
    page: int | None = Query(default=None),
    page_size: int | None = Query(default=None, alias="pageSize"),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> Page[ActivityRead] | JSONResponse:
    try:
        require_permission(principal, "crm.activities.read")
        return activity_service.list_activities(
            db,
            principal,
            filters={"entity_type": entity_type, "entity_id": entity_id, "type": activity_type},
            page=page,
            page_size=page_size,
        )
    except AppError as exc:
        return app_error_response(request, exc)


@activities_router.post("", response_model=ActivityRead, status_code=status.HTTP_201_CREATED)
def create_activity(
    request: Request,
    dto: ActivityCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ActivityRead | JSONResponse:
    try:
        require_permission(principal, "crm.activities.create")
        return activity_service.create_activity(db, principal, dto)
    except AppError as exc:
        return app_error_response(request, exc)


@activities_router.get("/{activity_id}", response_model=ActivityRead)
def get_activity(
    request: Request,
    activity_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ActivityRead | JSONResponse:
    try:
        require_permission(principal, "crm.activities.read")
        return activity_service.get_activity(db, principal, activity_id)
    except AppError as exc:
        return app_error_response(request, exc)


@reassign_router.patch("/client-companies/{company_id}", response_model=ClientCompanyRead)
def reassign_client_company(
    request: Request,
    company_id: int,
    dto: ReassignOwnersRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ClientCompanyRead | JSONResponse:
    try:
        require_permission(principal, "crm.owners.reassign")
        return company_service.reassign_owners(db, principal, company_id, dto)
    except AppError as exc:
        return app_error_response(request, exc)


@reassign_router.patch("/contacts/{contact_id}", response_model=ContactRead)
def reassign_contact(
    request: Request,
    contact_id: int,
    dto: ReassignOwnersRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ContactRead | JSONResponse:
    try:
        require_permission(principal, "crm.owners.reassign")
        return contact_service.reassign_owners(db, principal, contact_id, dto)
    except AppError as exc:
        return app_error_response(request, exc)


@reassign_router.patch("/opportunities/{opportunity_id}", response_model=OpportunityRead)
def reassign_opportunity(
    request: Request,
    opportunity_id: int,
    dto: ReassignOwnersRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> OpportunityRead | JSONResponse:
    try:
        require_permission(principal, "crm.owners.reassign")
        return opportunity_service.reassign_owners(db, principal, opportunity_id, dto)
    except AppError as exc:
        return app_error_response(request, exc)


@metrics_router.get("/team", response_model=TeamMetricsRead)
def get_team_metrics(
    request: Request,
    date_from: datetime | None = Query(default=None, alias="from"),
    date_to: datetime | None = Query(default=None, alias="to"),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> TeamMetricsRead | JSONResponse:
    try:
        require_permission(principal, "crm.metrics.team.read")
        return team_metrics_service.get_team_metrics(db, principal, date_from=date_from, date_to=date_to)
    except AppError as exc:
        return app_error_response(request, exc)
