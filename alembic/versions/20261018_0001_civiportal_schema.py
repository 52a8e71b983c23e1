"""civiportal schema

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


user_role = postgresql.ENUM("super_admin", "admin", "viewer", name="user_role", create_type=False)
fiscal_year_labeling = postgresql.ENUM("end_year", "start_year", name="fiscal_year_labeling", create_type=False)

LEDGER_TABLES = ("budgets", "actuals", "transactions", "revenues")


def _ledger_columns() -> list[sa.Column]:
    return [
        sa.Column("fund_code", sa.String(length=64), nullable=True),
        sa.Column("fund_name", sa.String(length=255), nullable=True),
        sa.Column("department_code", sa.String(length=64), nullable=True),
        sa.Column("department_name", sa.String(length=255), nullable=True),
        sa.Column("account_code", sa.String(length=64), nullable=True),
        sa.Column("account_name", sa.String(length=255), nullable=True),
    ]


def _data_checks(table: str, *, with_period: bool) -> list[sa.CheckConstraint]:
    checks = [
        sa.CheckConstraint("amount >= 0", name=f"ck_{table}_amount_non_negative"),
        sa.CheckConstraint("fiscal_year >= 2000 AND fiscal_year <= 2100", name=f"ck_{table}_fiscal_year_range"),
    ]
    if with_period:
        checks.append(
            sa.CheckConstraint("fiscal_period >= 1 AND fiscal_period <= 12", name=f"ck_{table}_fiscal_period_range")
        )
    return checks


def upgrade() -> None:
    user_role.create(op.get_bind(), checkfirst=True)
    fiscal_year_labeling.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "cities",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("slug", sa.String(length=64), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("auth_subject", sa.String(length=128), nullable=True, unique=True),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("display_name", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "role_assignments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("city_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("cities.id"), nullable=True),
        sa.Column("role", user_role, nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "((role = 'super_admin' AND city_id IS NULL) "
            "OR (role <> 'super_admin' AND city_id IS NOT NULL))",
            name="ck_role_assignments_scope_matches_role",
        ),
        sa.UniqueConstraint("user_id", "role", "city_id", name="uq_role_assignments_user_role_city"),
    )
    op.create_index("ix_role_assignments_user_id", "role_assignments", ["user_id"])
    op.create_index("ix_role_assignments_city_active", "role_assignments", ["city_id", "active"])
    op.create_index(
        "uq_role_assignments_user_role_global",
        "role_assignments",
        ["user_id", "role"],
        unique=True,
        postgresql_where=sa.text("city_id IS NULL"),
    )

    op.create_table(
        "portal_settings",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("city_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("cities.id"), nullable=False, unique=True),
        sa.Column("city_name", sa.String(length=255), nullable=False),
        sa.Column("tagline", sa.String(length=500), nullable=True),
        sa.Column("primary_color", sa.String(length=32), nullable=True),
        sa.Column("accent_color", sa.String(length=32), nullable=True),
        sa.Column("background_color", sa.String(length=32), nullable=True),
        sa.Column("logo_url", sa.String(length=1000), nullable=True),
        sa.Column("hero_image_url", sa.String(length=1000), nullable=True),
        sa.Column("seal_url", sa.String(length=1000), nullable=True),
        sa.Column("hero_message", sa.Text(), nullable=True),
        sa.Column("leader_name", sa.String(length=255), nullable=True),
        sa.Column("leader_title", sa.String(length=255), nullable=True),
        sa.Column("leader_message", sa.Text(), nullable=True),
        sa.Column("stat_population", sa.String(length=64), nullable=True),
        sa.Column("stat_employees", sa.String(length=64), nullable=True),
        sa.Column("stat_square_miles", sa.String(length=64), nullable=True),
        sa.Column("stat_annual_budget", sa.String(length=64), nullable=True),
        sa.Column("is_published", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("enable_actuals", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("enable_transactions", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("enable_vendors", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("enable_revenues", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("fiscal_year_start_month", sa.SmallInteger(), nullable=True),
        sa.Column("fiscal_year_start_day", sa.SmallInteger(), nullable=True),
        sa.Column("fiscal_year_labeling", fiscal_year_labeling, nullable=False, server_default="end_year"),
        sa.Column("fiscal_year_label", sa.String(length=255), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "fiscal_year_start_month IS NULL OR (fiscal_year_start_month >= 1 AND fiscal_year_start_month <= 12)",
            name="ck_portal_settings_fy_start_month",
        ),
        sa.CheckConstraint(
            "fiscal_year_start_day IS NULL OR (fiscal_year_start_day >= 1 AND fiscal_year_start_day <= 31)",
            name="ck_portal_settings_fy_start_day",
        ),
    )

    op.create_table(
        "budgets",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("city_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("cities.id"), nullable=False),
        sa.Column("fiscal_year", sa.Integer(), nullable=False),
        *_ledger_columns(),
        sa.Column("category", sa.String(length=255), nullable=True),
        sa.Column("amount", sa.Numeric(16, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        *_data_checks("budgets", with_period=False),
    )

    for table in ("actuals", "revenues"):
        op.create_table(
            table,
            sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("city_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("cities.id"), nullable=False),
            sa.Column("fiscal_year", sa.Integer(), nullable=False),
            sa.Column("fiscal_period", sa.SmallInteger(), nullable=False),
            sa.Column("period", sa.String(length=7), nullable=False),
            *_ledger_columns(),
            sa.Column("category", sa.String(length=255), nullable=True),
            sa.Column("amount", sa.Numeric(16, 2), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            *_data_checks(table, with_period=True),
        )

    op.create_table(
        "transactions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("city_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("cities.id"), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("fiscal_year", sa.Integer(), nullable=False),
        sa.Column("fiscal_period", sa.SmallInteger(), nullable=False),
        *_ledger_columns(),
        sa.Column("vendor", sa.String(length=255), nullable=True),
        sa.Column("description", sa.String(length=1000), nullable=False),
        sa.Column("amount", sa.Numeric(16, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        *_data_checks("transactions", with_period=True),
    )

    for table in LEDGER_TABLES:
        op.create_index(f"ix_{table}_city_year", table, ["city_id", "fiscal_year"])
    op.create_index("ix_budgets_city_year_department", "budgets", ["city_id", "fiscal_year", "department_name"])
    op.create_index("ix_actuals_city_year_department", "actuals", ["city_id", "fiscal_year", "department_name"])
    op.create_index("ix_transactions_city_year_vendor", "transactions", ["city_id", "fiscal_year", "vendor"])
    op.create_index("ix_transactions_city_date", "transactions", ["city_id", "date"])

    op.create_table(
        "data_uploads",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("city_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("cities.id"), nullable=False),
        sa.Column("table_name", sa.String(length=32), nullable=False),
        sa.Column("mode", sa.String(length=32), nullable=False),
        sa.Column("row_count", sa.Integer(), nullable=False),
        sa.Column("fiscal_year", sa.Integer(), nullable=True),
        sa.Column("filename", sa.String(length=255), nullable=True),
        sa.Column("admin_identifier", sa.String(length=320), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_data_uploads_city_created", "data_uploads", ["city_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_data_uploads_city_created", table_name="data_uploads")
    op.drop_table("data_uploads")

    op.drop_index("ix_transactions_city_date", table_name="transactions")
    op.drop_index("ix_transactions_city_year_vendor", table_name="transactions")
    op.drop_index("ix_actuals_city_year_department", table_name="actuals")
    op.drop_index("ix_budgets_city_year_department", table_name="budgets")
    for table in LEDGER_TABLES:
        op.drop_index(f"ix_{table}_city_year", table_name=table)
        op.drop_table(table)

    op.drop_table("portal_settings")

    op.drop_index("uq_role_assignments_user_role_global", table_name="role_assignments")
    op.drop_index("ix_role_assignments_city_active", table_name="role_assignments")
    op.drop_index("ix_role_assignments_user_id", table_name="role_assignments")
    op.drop_table("role_assignments")

    op.drop_table("users")
    op.drop_table("cities")

    fiscal_year_labeling.drop(op.get_bind(), checkfirst=True)
    user_role.drop(op.get_bind(), checkfirst=True)
