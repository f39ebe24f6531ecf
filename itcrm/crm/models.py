from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from itcrm.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ClientCategory(Base):
    __tablename__ = "client_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)


class ClientCompany(Base):
    __tablename__ = "client_companies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    industry: Mapped[str] = mapped_column(String(100), nullable=False)
    company_size: Mapped[str] = mapped_column(String(50), nullable=False)
    website: Mapped[str | None] = mapped_column(Text, nullable=True)
    country: Mapped[str] = mapped_column(String(100), nullable=False)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    address: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    category_id: Mapped[int] = mapped_column(Integer, ForeignKey("client_categories.id"), nullable=False)
    sales_manager_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    freelance_consultant_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    category: Mapped[ClientCategory] = relationship("ClientCategory")
    contacts: Mapped[list[Contact]] = relationship("Contact", back_populates="client_company")

    __table_args__ = (
        Index("ix_client_companies_sales_manager_id", "sales_manager_id"),
        Index("ix_client_companies_freelance_consultant_id", "freelance_consultant_id"),
    )


class Contact(Base):
    __tablename__ = "contacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    position: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    client_company_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("client_companies.id", ondelete="RESTRICT"),
        nullable=False,
    )
    sales_manager_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    freelance_consultant_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    client_company: Mapped[ClientCompany] = relationship("ClientCompany", back_populates="contacts")

    __table_args__ = (
        Index("ix_contacts_client_company_id", "client_company_id"),
        Index("ix_contacts_sales_manager_id", "sales_manager_id"),
        Index("ix_contacts_freelance_consultant_id", "freelance_consultant_id"),
    )


class Opportunity(Base):
    __tablename__ = "opportunities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    stage: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    estimated_value: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(16), nullable=False)
    probability: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    expected_close_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    contact_id: Mapped[int] = mapped_column(Integer, ForeignKey("contacts.id", ondelete="RESTRICT"), nullable=False)
    client_company_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("client_companies.id", ondelete="RESTRICT"),
        nullable=True,
    )
    sales_manager_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    freelance_consultant_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    __table_args__ = (
        Index("ix_opportunities_contact_id", "contact_id"),
        Index("ix_opportunities_sales_manager_id", "sales_manager_id"),
        Index("ix_opportunities_freelance_consultant_id", "freelance_consultant_id"),
        CheckConstraint("estimated_value >= 0", name="ck_opportunities_estimated_value_non_negative"),
        CheckConstraint("probability >= 0 AND probability <= 1", name="ck_opportunities_probability_range"),
    )


class Activity(Base):
    __tablename__ = "activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_activities_user_id", "user_id"),
        Index("ix_activities_entity", "entity_type", "entity_id"),
    )
