"""create crm categories, client companies, contacts, opportunities and activities

Revision ID: 202610010002
Revises: 202610010001
Create Date: 2026-10-01 00:10:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610010002"
down_revision: str | None = "202610010001"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def _owner_columns() -> list[sa.Column]:
    return [
        sa.Column("sales_manager_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("freelance_consultant_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "client_categories",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "client_companies",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("industry", sa.String(length=100), nullable=False),
        sa.Column("company_size", sa.String(length=50), nullable=False),
        sa.Column("website", sa.Text(), nullable=True),
        sa.Column("country", sa.String(length=100), nullable=False),
        sa.Column("city", sa.String(length=100), nullable=False),
        sa.Column("address", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("client_categories.id"), nullable=False),
        *_owner_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_client_companies_sales_manager_id", "client_companies", ["sales_manager_id"])
    op.create_index("ix_client_companies_freelance_consultant_id", "client_companies", ["freelance_consultant_id"])

    op.create_table(
        "contacts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("position", sa.String(length=100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "client_company_id",
            sa.Integer(),
            sa.ForeignKey("client_companies.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        *_owner_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_contacts_client_company_id", "contacts", ["client_company_id"])
    op.create_index("ix_contacts_sales_manager_id", "contacts", ["sales_manager_id"])
    op.create_index("ix_contacts_freelance_consultant_id", "contacts", ["freelance_consultant_id"])

    op.create_table(
        "opportunities",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("stage", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("estimated_value", sa.Float(), nullable=False),
        sa.Column("currency", sa.String(length=16), nullable=False),
        sa.Column("probability", sa.Float(), nullable=False),
        sa.Column("expected_close_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("contact_id", sa.Integer(), sa.ForeignKey("contacts.id", ondelete="RESTRICT"), nullable=False),
        sa.Column(
            "client_company_id",
            sa.Integer(),
            sa.ForeignKey("client_companies.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        *_owner_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("estimated_value >= 0", name="ck_opportunities_estimated_value_non_negative"),
        sa.CheckConstraint("probability >= 0 AND probability <= 1", name="ck_opportunities_probability_range"),
    )
    op.create_index("ix_opportunities_contact_id", "opportunities", ["contact_id"])
    op.create_index("ix_opportunities_sales_manager_id", "opportunities", ["sales_manager_id"])
    op.create_index("ix_opportunities_freelance_consultant_id", "opportunities", ["freelance_consultant_id"])

    op.create_table(
        "activities",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_activities_user_id", "activities", ["user_id"])
    op.create_index("ix_activities_entity", "activities", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_index("ix_activities_entity", table_name="activities")
    op.drop_index("ix_activities_user_id", table_name="activities")
    op.drop_table("activities")

    op.drop_index("ix_opportunities_freelance_consultant_id", table_name="opportunities")
    op.drop_index("ix_opportunities_sales_manager_id", table_name="opportunities")
    op.drop_index("ix_opportunities_contact_id", table_name="opportunities")
    op.drop_table("opportunities")

    op.drop_index("ix_contacts_freelance_consultant_id", table_name="contacts")
    op.drop_index("ix_contacts_sales_manager_id", table_name="contacts")
    op.drop_index("ix_contacts_client_company_id", table_name="contacts")
    op.drop_table("contacts")

    op.drop_index("ix_client_companies_freelance_consultant_id", table_name="client_companies")
    op.drop_index("ix_client_companies_sales_manager_id", table_name="client_companies")
    op.drop_table("client_companies")

    op.drop_table("client_categories")
