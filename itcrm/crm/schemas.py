from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import EmailStr, Field, HttpUrl, field_validator

from itcrm.core.schemas import ApiModel


ActivityEntityType = Literal["clientCompany", "opportunity"]
ActivityType = Literal["note", "call", "meeting"]


class ClientCategoryCreate(ApiModel):
    name: str = Field(min_length=1, max_length=100)
    description: str | None = None


class ClientCategoryUpdate(ApiModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = None


class ClientCategoryRead(ApiModel):
    id: int
    name: str
    description: str | None


class ClientCompanyCreate(ApiModel):
    name: str = Field(min_length=2, max_length=200)
    industry: str = Field(min_length=1, max_length=100)
    company_size: str = Field(min_length=1, max_length=50)
    website: HttpUrl | None = None
    country: str = Field(min_length=1, max_length=100)
    city: str = Field(min_length=1, max_length=100)
    address: str = Field(min_length=1)
    status: str = Field(min_length=1, max_length=32)
    category_id: int = Field(gt=0)
    sales_manager_id: int = Field(gt=0)
    freelance_consultant_id: int = Field(gt=0)


class ClientCompanyUpdate(ApiModel):
    name: str | None = Field(default=None, min_length=2, max_length=200)
    industry: str | None = Field(default=None, min_length=1, max_length=100)
    company_size: str | None = Field(default=None, min_length=1, max_length=50)
    website: HttpUrl | None = None
    country: str | None = Field(default=None, min_length=1, max_length=100)
    city: str | None = Field(default=None, min_length=1, max_length=100)
    address: str | None = Field(default=None, min_length=1)
    status: str | None = Field(default=None, min_length=1, max_length=32)
    category_id: int | None = Field(default=None, gt=0)
    sales_manager_id: int | None = Field(default=None, gt=0)
    freelance_consultant_id: int | None = Field(default=None, gt=0)


class ClientCompanyRead(ApiModel):
    id: int
    name: str
    industry: str
    company_size: str
    website: str | None
    country: str
    city: str
    address: str
    status: str
    category_id: int
    sales_manager_id: int
    freelance_consultant_id: int
    created_at: datetime
    updated_at: datetime


class ContactCreate(ApiModel):
    name: str = Field(min_length=2, max_length=200)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=64)
    position: str | None = Field(default=None, max_length=100)
    notes: str | None = None
    client_company_id: int = Field(gt=0)
    sales_manager_id: int = Field(gt=0)
    freelance_consultant_id: int = Field(gt=0)

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str | None) -> str | None:
        return value.lower() if value else value


class ContactUpdate(ApiModel):
    name: str | None = Field(default=None, min_length=2, max_length=200)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=64)
    position: str | None = Field(default=None, max_length=100)
    notes: str | None = None
    client_company_id: int | None = Field(default=None, gt=0)
    sales_manager_id: int | None = Field(default=None, gt=0)
    freelance_consultant_id: int | None = Field(default=None, gt=0)

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str | None) -> str | None:
        return value.lower() if value else value


class ContactRead(ApiModel):
    id: int
    name: str
    email: str | None
    phone: str | None
    position: str | None
    notes: str | None
    client_company_id: int
    sales_manager_id: int
    freelance_consultant_id: int
    created_at: datetime
    updated_at: datetime


class OpportunityCreate(ApiModel):
    title: str = Field(min_length=2, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    stage: str = Field(min_length=1, max_length=32)
    status: str = Field(min_length=1, max_length=32)
    estimated_value: float = Field(ge=0)
    currency: str = Field(min_length=1, max_length=16)
    probability: float = Field(ge=0, le=1)
    expected_close_date: datetime | None = None
    contact_id: int = Field(gt=0)
    client_company_id: int | None = Field(default=None, gt=0)
    sales_manager_id: int = Field(gt=0)
    freelance_consultant_id: int = Field(gt=0)


class OpportunityUpdate(ApiModel):
    title: str | None = Field(default=None, min_length=2, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    stage: str | None = Field(default=None, min_length=1, max_length=32)
    status: str | None = Field(default=None, min_length=1, max_length=32)
    estimated_value: float | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=1, max_length=16)
    probability: float | None = Field(default=None, ge=0, le=1)
    expected_close_date: datetime | None = None
    contact_id: int | None = Field(default=None, gt=0)
    client_company_id: int | None = Field(default=None, gt=0)
    sales_manager_id: int | None = Field(default=None, gt=0)
    freelance_consultant_id: int | None = Field(default=None, gt=0)


class OpportunityRead(ApiModel):
    id: int
    title: str
    description: str | None
    stage: str
    status: str
    estimated_value: float
    currency: str
    probability: float
    expected_close_date: datetime | None
    contact_id: int
    client_company_id: int | None
    sales_manager_id: int
    freelance_consultant_id: int
    created_at: datetime
    updated_at: datetime


class ActivityCreate(ApiModel):
    entity_type: ActivityEntityType
    entity_id: int = Field(gt=0)
    type: ActivityType
    description: str = Field(min_length=2, max_length=1000)


class ActivityRead(ApiModel):
    id: int
    user_id: int
    entity_type: ActivityEntityType
    entity_id: int
    type: ActivityType
    description: str
    created_at: datetime


class ReassignOwnersRequest(ApiModel):
    sales_manager_id: int = Field(gt=0)
    freelance_consultant_id: int = Field(gt=0)


class TeamMetricsRead(ApiModel):
    total_opportunities: int
    opportunities_by_stage: dict[str, int]
    won_deals: int
    total_estimated_value: float
