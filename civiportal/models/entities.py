"""ORM entities for the CiviPortal schema."""

from __future__ import annotations

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from civiportal.db.base import Base

# Alias so the ``Transaction.date`` attribute does not shadow the type in annotations.
CalendarDate = date


class UserRole(str, enum.Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    VIEWER = "viewer"


class FiscalYearLabeling(str, enum.Enum):
    END_YEAR = "end_year"
    START_YEAR = "start_year"


class City(Base):
    """One tenant: a city with its own settings and dataset."""

    __tablename__ = "cities"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # Invited users have no subject until their first sign-in.
    auth_subject: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)


class RoleAssignment(Base):
    __tablename__ = "role_assignments"
    __table_args__ = (
        CheckConstraint(
            "((role = 'super_admin' AND city_id IS NULL) "
            "OR (role <> 'super_admin' AND city_id IS NOT NULL))",
            name="ck_role_assignments_scope_matches_role",
        ),
        UniqueConstraint("user_id", "role", "city_id", name="uq_role_assignments_user_role_city"),
        Index(
            "uq_role_assignments_user_role_global",
            "user_id",
            "role",
            unique=True,
            postgresql_where=text("city_id IS NULL"),
            sqlite_where=text("city_id IS NULL"),
        ),
        Index("ix_role_assignments_user_id", "user_id"),
        Index("ix_role_assignments_city_active", "city_id", "active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    city_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("cities.id"), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        SQLEnum(
            UserRole,
            name="user_role",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
    )
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)


class PortalSettings(Base):
    """Per-city branding, module toggles, publish state and fiscal calendar."""

    __tablename__ = "portal_settings"
    __table_args__ = (
        CheckConstraint(
            "fiscal_year_start_month IS NULL OR (fiscal_year_start_month >= 1 AND fiscal_year_start_month <= 12)",
            name="ck_portal_settings_fy_start_month",
        ),
        CheckConstraint(
            "fiscal_year_start_day IS NULL OR (fiscal_year_start_day >= 1 AND fiscal_year_start_day <= 31)",
            name="ck_portal_settings_fy_start_day",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    city_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("cities.id"), unique=True, nullable=False
    )

    city_name: Mapped[str] = mapped_column(String(255), nullable=False)
    tagline: Mapped[str | None] = mapped_column(String(500), nullable=True)
    primary_color: Mapped[str | None] = mapped_column(String(32), nullable=True, default="#0f172a")
    accent_color: Mapped[str | None] = mapped_column(String(32), nullable=True, default="#0ea5e9")
    background_color: Mapped[str | None] = mapped_column(String(32), nullable=True, default="#f8fafc")
    logo_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    hero_image_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    seal_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    hero_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    leader_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    leader_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    leader_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    stat_population: Mapped[str | None] = mapped_column(String(64), nullable=True)
    stat_employees: Mapped[str | None] = mapped_column(String(64), nullable=True)
    stat_square_miles: Mapped[str | None] = mapped_column(String(64), nullable=True)
    stat_annual_budget: Mapped[str | None] = mapped_column(String(64), nullable=True)

    is_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    enable_actuals: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    enable_transactions: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    enable_vendors: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    enable_revenues: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    fiscal_year_start_month: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)
    fiscal_year_start_day: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)
    fiscal_year_labeling: Mapped[FiscalYearLabeling] = mapped_column(
        SQLEnum(
            FiscalYearLabeling,
            name="fiscal_year_labeling",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
        default=FiscalYearLabeling.END_YEAR,
    )
    fiscal_year_label: Mapped[str | None] = mapped_column(String(255), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)


class BudgetLine(Base):
    __tablename__ = "budgets"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_budgets_amount_non_negative"),
        CheckConstraint("fiscal_year >= 2000 AND fiscal_year <= 2100", name="ck_budgets_fiscal_year_range"),
        Index("ix_budgets_city_year", "city_id", "fiscal_year"),
        Index("ix_budgets_city_year_department", "city_id", "fiscal_year", "department_name"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    city_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("cities.id"), nullable=False)
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)
    fund_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    fund_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    department_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    department_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    category: Mapped[str | None] = mapped_column(String(255), nullable=True)
    account_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    account_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(16, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)


class ActualLine(Base):
    __tablename__ = "actuals"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_actuals_amount_non_negative"),
        CheckConstraint("fiscal_year >= 2000 AND fiscal_year <= 2100", name="ck_actuals_fiscal_year_range"),
        CheckConstraint("fiscal_period >= 1 AND fiscal_period <= 12", name="ck_actuals_fiscal_period_range"),
        Index("ix_actuals_city_year", "city_id", "fiscal_year"),
        Index("ix_actuals_city_year_department", "city_id", "fiscal_year", "department_name"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    city_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("cities.id"), nullable=False)
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)
    fiscal_period: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    period: Mapped[str] = mapped_column(String(7), nullable=False)
    fund_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    fund_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    department_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    department_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    category: Mapped[str | None] = mapped_column(String(255), nullable=True)
    account_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    account_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(16, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_transactions_amount_non_negative"),
        CheckConstraint(
            "fiscal_year >= 2000 AND fiscal_year <= 2100", name="ck_transactions_fiscal_year_range"
        ),
        CheckConstraint(
            "fiscal_period >= 1 AND fiscal_period <= 12", name="ck_transactions_fiscal_period_range"
        ),
        Index("ix_transactions_city_year", "city_id", "fiscal_year"),
        Index("ix_transactions_city_year_vendor", "city_id", "fiscal_year", "vendor"),
        Index("ix_transactions_city_date", "city_id", "date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    city_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("cities.id"), nullable=False)
    date: Mapped[CalendarDate] = mapped_column(Date, nullable=False)
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)
    fiscal_period: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    fund_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    fund_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    department_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    department_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    account_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    account_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    vendor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str] = mapped_column(String(1000), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(16, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)


class RevenueLine(Base):
    __tablename__ = "revenues"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_revenues_amount_non_negative"),
        CheckConstraint("fiscal_year >= 2000 AND fiscal_year <= 2100", name="ck_revenues_fiscal_year_range"),
        CheckConstraint("fiscal_period >= 1 AND fiscal_period <= 12", name="ck_revenues_fiscal_period_range"),
        Index("ix_revenues_city_year", "city_id", "fiscal_year"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    city_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("cities.id"), nullable=False)
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)
    fiscal_period: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    period: Mapped[str] = mapped_column(String(7), nullable=False)
    fund_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    fund_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    department_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    department_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    category: Mapped[str | None] = mapped_column(String(255), nullable=True)
    account_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    account_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(16, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)


class UploadLog(Base):
    """Append-only audit record of every applied upload or bulk delete."""

    __tablename__ = "data_uploads"
    __table_args__ = (Index("ix_data_uploads_city_created", "city_id", "created_at"),)

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    city_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("cities.id"), nullable=False)
    table_name: Mapped[str] = mapped_column(String(32), nullable=False)
    mode: Mapped[str] = mapped_column(String(32), nullable=False)
    row_count: Mapped[int] = mapped_column(Integer, nullable=False)
    fiscal_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    filename: Mapped[str | None] = mapped_column(String(255), nullable=True)
    admin_identifier: Mapped[str | None] = mapped_column(String(320), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
