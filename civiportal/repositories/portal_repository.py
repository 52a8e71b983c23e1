"""Repository helpers for cities, portal settings, financial datasets and users."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, delete, func, insert, or_, select
from sqlalchemy.orm import Session

from civiportal.models.entities import (
    ActualLine,
    BudgetLine,
    City,
    PortalSettings,
    RevenueLine,
    RoleAssignment,
    Transaction,
    UploadLog,
    User,
    UserRole,
)
from civiportal.services.aggregations import UNSPECIFIED
from civiportal.services.csv_validation import UploadTable

DataModel = type[BudgetLine] | type[ActualLine] | type[Transaction] | type[RevenueLine]

TABLE_MODELS: dict[UploadTable, DataModel] = {
    UploadTable.BUDGETS: BudgetLine,
    UploadTable.ACTUALS: ActualLine,
    UploadTable.TRANSACTIONS: Transaction,
    UploadTable.REVENUES: RevenueLine,
}

LIKE_ESCAPE = "\\"


def contains_pattern(term: str) -> str:
    """Build an ILIKE pattern that matches ``term`` literally anywhere in the value."""

    escaped = term.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2).replace("%", r"\%").replace("_", r"\_")
    return f"%{escaped}%"


def department_condition(column, department_name: str):
    # Dashboards group null and blank departments under the "Unspecified" label.
    if department_name == UNSPECIFIED:
        return or_(column.is_(None), func.trim(column) == "", column == UNSPECIFIED)
    return column == department_name


class PortalRepository:
    """Persistence operations used by upload, admin and public dashboard services."""

    def __init__(self, db: Session) -> None:
        self.db = db

    # ---------- Cities and settings ----------
    def list_cities(self) -> list[City]:
        return self.db.scalars(select(City).order_by(City.name.asc())).all()

    def get_city_by_slug(self, slug: str) -> City | None:
        return self.db.scalar(select(City).where(City.slug == slug))

    def get_city(self, city_id: UUID) -> City | None:
        return self.db.scalar(select(City).where(City.id == city_id))

    def add_city(self, city: City) -> City:
        self.db.add(city)
        self.db.flush()
        return city

    def get_portal_settings(self, city_id: UUID) -> PortalSettings | None:
        return self.db.scalar(select(PortalSettings).where(PortalSettings.city_id == city_id))

    def add_portal_settings(self, portal_settings: PortalSettings) -> PortalSettings:
        self.db.add(portal_settings)
        self.db.flush()
        return portal_settings

    # ---------- Financial datasets ----------
    def iter_rows(
        self,
        table: UploadTable,
        city_id: UUID,
        *,
        page_size: int,
        fiscal_year: int | None = None,
        department_name: str | None = None,
    ) -> Iterator[object]:
        """Yield every matching row using fixed-size offset pages."""

        model = TABLE_MODELS[table]
        conditions = [model.city_id == city_id]
        if fiscal_year is not None:
            conditions.append(model.fiscal_year == fiscal_year)
        if department_name is not None:
            conditions.append(department_condition(model.department_name, department_name))

        offset = 0
        while True:
            page = self.db.scalars(
                select(model)
                .where(and_(*conditions))
                .order_by(model.created_at.asc(), model.id.asc())
                .offset(offset)
                .limit(page_size)
            ).all()
            yield from page
            if len(page) < page_size:
                return
            offset += page_size

    def list_rows(
        self,
        table: UploadTable,
        city_id: UUID,
        *,
        page_size: int,
        fiscal_year: int | None = None,
        department_name: str | None = None,
    ) -> list[object]:
        return list(
            self.iter_rows(
                table,
                city_id,
                page_size=page_size,
                fiscal_year=fiscal_year,
                department_name=department_name,
            )
        )

    def list_fiscal_years(self, table: UploadTable, city_id: UUID) -> list[int]:
        model = TABLE_MODELS[table]
        return self.db.scalars(
            select(model.fiscal_year)
            .where(model.city_id == city_id)
            .distinct()
            .order_by(model.fiscal_year.desc())
        ).all()

    def count_rows(self, table: UploadTable, city_id: UUID, fiscal_year: int | None = None) -> int:
        model = TABLE_MODELS[table]
        query = select(func.count()).select_from(model).where(model.city_id == city_id)
        if fiscal_year is not None:
            query = query.where(model.fiscal_year == fiscal_year)
        return int(self.db.scalar(query) or 0)

    def totals_by_name(
        self,
        table: UploadTable,
        city_id: UUID,
        column_name: str,
        *,
        search: str,
        fiscal_year: int | None = None,
    ) -> list[tuple[str, Decimal, int]]:
        """Sum and count rows grouped by one text column whose value contains ``search``."""

        model = TABLE_MODELS[table]
        column = getattr(model, column_name)
        total = func.coalesce(func.sum(model.amount), 0)
        query = (
            select(column, total, func.count())
            .where(model.city_id == city_id, column.ilike(contains_pattern(search), escape=LIKE_ESCAPE))
            .group_by(column)
            .order_by(total.desc(), column.asc())
        )
        if fiscal_year is not None:
            query = query.where(model.fiscal_year == fiscal_year)
        return [(name, amount, int(count)) for name, amount, count in self.db.execute(query).all()]

    def delete_rows(self, table: UploadTable, city_id: UUID, fiscal_year: int | None = None) -> int:
        """Delete rows for one city (optionally one fiscal year); caller owns the commit."""

        model = TABLE_MODELS[table]
        statement = delete(model).where(model.city_id == city_id)
        if fiscal_year is not None:
            statement = statement.where(model.fiscal_year == fiscal_year)
        result = self.db.execute(statement.execution_options(synchronize_session=False))
        return int(result.rowcount or 0)

    def insert_rows(
        self,
        table: UploadTable,
        city_id: UUID,
        records: Sequence[dict[str, object]],
        *,
        chunk_size: int,
    ) -> int:
        """Bulk insert validated records in chunks; caller owns the commit."""

        model = TABLE_MODELS[table]
        inserted = 0
        for start in range(0, len(records), chunk_size):
            chunk = [{**record, "city_id": city_id} for record in records[start : start + chunk_size]]
            self.db.execute(insert(model), chunk)
            inserted += len(chunk)
        self.db.flush()
        return inserted

    def transactions_page(
        self,
        city_id: UUID,
        *,
        fiscal_year: int | None,
        department_name: str | None,
        vendor: str | None,
        search: str | None,
        limit: int,
        offset: int,
    ) -> tuple[list[Transaction], int]:
        conditions = [Transaction.city_id == city_id]
        if fiscal_year is not None:
            conditions.append(Transaction.fiscal_year == fiscal_year)
        if department_name:
            conditions.append(department_condition(Transaction.department_name, department_name))
        if vendor:
            conditions.append(Transaction.vendor == vendor)
        if search:
            pattern = contains_pattern(search)
            conditions.append(
                or_(
                    Transaction.vendor.ilike(pattern, escape=LIKE_ESCAPE),
                    Transaction.description.ilike(pattern, escape=LIKE_ESCAPE),
                    Transaction.department_name.ilike(pattern, escape=LIKE_ESCAPE),
                )
            )

        total = self.db.scalar(select(func.count()).select_from(Transaction).where(and_(*conditions)))
        rows = self.db.scalars(
            select(Transaction)
            .where(and_(*conditions))
            .order_by(Transaction.date.desc(), Transaction.amount.desc(), Transaction.id.asc())
            .offset(offset)
            .limit(limit)
        ).all()
        return list(rows), int(total or 0)

    # ---------- Upload audit log ----------
    def add_upload_log(self, entry: UploadLog) -> UploadLog:
        self.db.add(entry)
        self.db.flush()
        return entry

    def list_upload_logs(self, city_id: UUID, limit: int = 100) -> list[UploadLog]:
        return self.db.scalars(
            select(UploadLog)
            .where(UploadLog.city_id == city_id)
            .order_by(UploadLog.created_at.desc(), UploadLog.id.desc())
            .limit(limit)
        ).all()

    # ---------- Users and roles ----------
    def list_users(self) -> list[User]:
        return self.db.scalars(select(User).order_by(User.email.asc())).all()

    def get_user(self, user_id: UUID) -> User | None:
        return self.db.scalar(select(User).where(User.id == user_id))

    def get_user_by_email(self, email: str) -> User | None:
        return self.db.scalar(select(User).where(User.email == email))

    def add_user(self, user: User) -> User:
        self.db.add(user)
        self.db.flush()
        return user

    def delete_user(self, user: User) -> None:
        self.db.execute(delete(RoleAssignment).where(RoleAssignment.user_id == user.id))
        self.db.delete(user)
        self.db.flush()

    def list_role_assignments(self, user_id: UUID | None = None) -> list[RoleAssignment]:
        query = select(RoleAssignment).where(RoleAssignment.active.is_(True))
        if user_id is not None:
            query = query.where(RoleAssignment.user_id == user_id)
        return self.db.scalars(query.order_by(RoleAssignment.created_at.asc())).all()

    def add_role_assignment(self, assignment: RoleAssignment) -> RoleAssignment:
        self.db.add(assignment)
        self.db.flush()
        return assignment

    def delete_role_assignments(self, user_id: UUID) -> None:
        self.db.execute(delete(RoleAssignment).where(RoleAssignment.user_id == user_id))
        self.db.flush()

    def count_super_admins(self) -> int:
        return int(
            self.db.scalar(
                select(func.count(func.distinct(RoleAssignment.user_id))).where(
                    and_(
                        RoleAssignment.role == UserRole.SUPER_ADMIN,
                        RoleAssignment.active.is_(True),
                    )
                )
            )
            or 0
        )
