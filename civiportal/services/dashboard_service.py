"""Public dashboard payloads and download-center exports."""

from __future__ import annotations

import csv
import io
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from io import BytesIO

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from civiportal.core.auth import ensure_city_exists
from civiportal.core.config import get_settings
from civiportal.repositories.portal_repository import PortalRepository
from civiportal.services.aggregations import (
    ZERO,
    calculate_insights,
    summarize_by_department,
    summarize_fiscal_periods,
    summarize_revenue_sources,
    summarize_vendors,
    summarize_year_over_year,
)
from civiportal.services.csv_validation import TABLE_SCHEMAS, UploadTable
from civiportal.services.portal_context import PortalContext, build_portal_context

logger = logging.getLogger(__name__)

EXPORT_FORMATS = {"csv", "xlsx"}
MAX_TRANSACTION_PAGE_SIZE = 200
SEARCH_RESULTS_PER_CATEGORY = 3
SEARCH_MIN_LENGTH = 2
SEARCH_MAX_LENGTH = 100


@dataclass(slots=True)
class ExportFilePayload:
    media_type: str
    filename: str
    content: bytes


def _money(value: Decimal) -> str:
    return str(value.quantize(Decimal("0.01")))


class DashboardService:
    """Read-only views over one published city portal."""

    def __init__(self, db: Session) -> None:
        self.db = db
        self.repo = PortalRepository(db)
        self.settings = get_settings()

    # ---------- Context / gating ----------
    def public_context(self, city_slug: str) -> PortalContext:
        """Resolve a published portal or raise 404 (unpublished portals are hidden)."""

        city = ensure_city_exists(self.db, city_slug)
        portal_settings = self.repo.get_portal_settings(city.id)
        if not city.active or portal_settings is None or not portal_settings.is_published:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="City portal not found.")
        return build_portal_context(city, portal_settings, self.settings)

    @staticmethod
    def require_module(enabled: bool, name: str) -> None:
        if not enabled:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"The {name} module is not enabled for this portal.",
            )

    def _table_enabled(self, portal: PortalContext, table: UploadTable) -> bool:
        return {
            UploadTable.BUDGETS: True,
            UploadTable.ACTUALS: portal.actuals_enabled,
            UploadTable.TRANSACTIONS: portal.transactions_enabled,
            UploadTable.REVENUES: portal.revenues_enabled,
        }[table]

    def _rows(self, portal: PortalContext, table: UploadTable, year: int | None = None, department: str | None = None) -> list[object]:
        return self.repo.list_rows(
            table,
            portal.city_id,
            page_size=self.settings.query_page_size,
            fiscal_year=year,
            department_name=department,
        )

    # ---------- Fiscal years ----------
    def fiscal_years(self, portal: PortalContext) -> list[int]:
        years: set[int] = set()
        for table in UploadTable:
            if self._table_enabled(portal, table):
                years.update(self.repo.list_fiscal_years(table, portal.city_id))
        return sorted(years, reverse=True)

    def resolve_year(self, portal: PortalContext, year: int | None) -> int | None:
        """Requested year, or the latest year with data when none is given."""

        if year is not None:
            return year
        available = self.fiscal_years(portal)
        return available[0] if available else None

    def fiscal_years_payload(self, portal: PortalContext) -> dict[str, object]:
        years = self.fiscal_years(portal)
        return {
            "years": years,
            "latest": years[0] if years else None,
            "label": portal.fiscal_label,
        }

    # ---------- Overview ----------
    def overview(self, portal: PortalContext, year: int | None) -> dict[str, object]:
        fiscal_year = self.resolve_year(portal, year)
        budgets = self._rows(portal, UploadTable.BUDGETS, fiscal_year)
        actuals = self._rows(portal, UploadTable.ACTUALS, fiscal_year) if portal.actuals_enabled else []

        departments = summarize_by_department(budgets, actuals, year=fiscal_year)
        total_budget = sum((item.budget for item in departments), ZERO)
        total_actuals = sum((item.actuals for item in departments), ZERO)

        totals: dict[str, object] = {
            "budget": _money(total_budget),
            "department_count": len(departments),
        }
        payload: dict[str, object] = {
            "city": portal.city.slug,
            "fiscal_year": fiscal_year,
            "fiscal_year_label": portal.fiscal_label,
            "totals": totals,
            "top_departments": [item.as_dict() for item in departments[:5]],
        }

        if portal.actuals_enabled:
            totals["actuals"] = _money(total_actuals)
            totals["variance"] = _money(total_actuals - total_budget)
            totals["percent_spent"] = (
                str((total_actuals / total_budget * 100).quantize(Decimal("0.01"))) if total_budget else "0.00"
            )
            payload["insights"] = [item.as_dict() for item in calculate_insights(departments)]

        if portal.revenues_enabled:
            revenues = self._rows(portal, UploadTable.REVENUES, fiscal_year)
            sources = summarize_revenue_sources(revenues, year=fiscal_year)
            totals["revenues"] = _money(sum((item.total for item in sources), ZERO))
            payload["revenue_sources"] = [item.as_dict() for item in sources]

        if portal.vendors_enabled:
            transactions = self._rows(portal, UploadTable.TRANSACTIONS, fiscal_year)
            payload["top_vendors"] = [item.as_dict() for item in summarize_vendors(transactions, year=fiscal_year, limit=5)]

        return payload

    # ---------- Analytics ----------
    def analytics(self, portal: PortalContext) -> dict[str, object]:
        budgets = self._rows(portal, UploadTable.BUDGETS)
        actuals = self._rows(portal, UploadTable.ACTUALS) if portal.actuals_enabled else []
        revenues = self._rows(portal, UploadTable.REVENUES) if portal.revenues_enabled else []
        transactions = self._rows(portal, UploadTable.TRANSACTIONS) if portal.transactions_enabled else []
        return {
            "fiscal_year_label": portal.fiscal_label,
            "years": [item.as_dict() for item in summarize_year_over_year(budgets, actuals, revenues, transactions)],
        }

    # ---------- Departments ----------
    def departments(self, portal: PortalContext, year: int | None) -> dict[str, object]:
        fiscal_year = self.resolve_year(portal, year)
        budgets = self._rows(portal, UploadTable.BUDGETS, fiscal_year)
        actuals = self._rows(portal, UploadTable.ACTUALS, fiscal_year) if portal.actuals_enabled else []
        transactions = self._rows(portal, UploadTable.TRANSACTIONS, fiscal_year) if portal.transactions_enabled else []
        return {
            "fiscal_year": fiscal_year,
            "items": [item.as_dict() for item in summarize_by_department(budgets, actuals, transactions, year=fiscal_year)],
        }

    def department_detail(self, portal: PortalContext, department_name: str, year: int | None) -> dict[str, object]:
        fiscal_year = self.resolve_year(portal, year)
        budgets = self._rows(portal, UploadTable.BUDGETS, fiscal_year, department_name)
        actuals = (
            self._rows(portal, UploadTable.ACTUALS, fiscal_year, department_name) if portal.actuals_enabled else []
        )
        transactions = (
            self._rows(portal, UploadTable.TRANSACTIONS, fiscal_year, department_name)
            if portal.transactions_enabled
            else []
        )
        if not budgets and not actuals and not transactions:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Department not found.")

        summaries = summarize_by_department(budgets, actuals, transactions, year=fiscal_year)
        payload: dict[str, object] = {
            "fiscal_year": fiscal_year,
            "department": summaries[0].as_dict(),
            "categories": self._category_breakdown(budgets, actuals),
        }
        if portal.actuals_enabled and fiscal_year is not None:
            payload["monthly_actuals"] = summarize_fiscal_periods(actuals, fiscal_year)
        if portal.vendors_enabled:
            payload["top_vendors"] = [
                item.as_dict() for item in summarize_vendors(transactions, year=fiscal_year, limit=10)
            ]
        return payload

    @staticmethod
    def _category_breakdown(budgets: Iterable[object], actuals: Iterable[object]) -> list[dict[str, object]]:
        return [
            {
                "category": item.department_name,
                "budget": str(item.budget),
                "actuals": str(item.actuals),
                "variance": str(item.variance),
                "percent_spent": str(item.percent_spent),
            }
            for item in summarize_by_department(budgets, actuals, group_by="category")
        ]

    # ---------- Transactions / vendors / revenues ----------
    def transactions(
        self,
        portal: PortalContext,
        *,
        year: int | None,
        department: str | None,
        vendor: str | None,
        query: str | None,
        page: int,
        page_size: int,
    ) -> dict[str, object]:
        self.require_module(portal.transactions_enabled, "transactions")
        fiscal_year = self.resolve_year(portal, year)
        size = max(1, min(page_size, MAX_TRANSACTION_PAGE_SIZE))
        current_page = max(1, page)
        rows, total = self.repo.transactions_page(
            portal.city_id,
            fiscal_year=fiscal_year,
            department_name=department.strip() if department else None,
            vendor=vendor.strip() if vendor else None,
            search=query.strip() if query and query.strip() else None,
            limit=size,
            offset=(current_page - 1) * size,
        )
        return {
            "fiscal_year": fiscal_year,
            "page": current_page,
            "page_size": size,
            "total": total,
            "items": [
                {
                    "id": str(row.id),
                    "date": row.date.isoformat(),
                    "fiscal_year": row.fiscal_year,
                    "fiscal_period": row.fiscal_period,
                    "department_name": row.department_name,
                    "vendor": row.vendor,
                    "description": row.description,
                    "amount": str(row.amount),
                }
                for row in rows
            ],
        }

    def vendors(self, portal: PortalContext, *, year: int | None, query: str | None, limit: int | None) -> dict[str, object]:
        self.require_module(portal.vendors_enabled, "vendors")
        fiscal_year = self.resolve_year(portal, year)
        transactions = self._rows(portal, UploadTable.TRANSACTIONS, fiscal_year)
        return {
            "fiscal_year": fiscal_year,
            "items": [
                item.as_dict()
                for item in summarize_vendors(transactions, year=fiscal_year, limit=limit, query=query)
            ],
        }

    def revenues(self, portal: PortalContext, year: int | None) -> dict[str, object]:
        self.require_module(portal.revenues_enabled, "revenues")
        fiscal_year = self.resolve_year(portal, year)
        rows = self._rows(portal, UploadTable.REVENUES, fiscal_year)
        sources = summarize_revenue_sources(rows, year=fiscal_year)
        return {
            "fiscal_year": fiscal_year,
            "total": _money(sum((item.total for item in sources), ZERO)),
            "sources": [item.as_dict() for item in sources],
            "monthly": summarize_fiscal_periods(rows, fiscal_year) if fiscal_year is not None else [],
        }

    # ---------- Search ----------
    def search(self, portal: PortalContext, query: str | None, year: int | None) -> dict[str, object]:
        """Departments, vendors and transactions whose names contain ``query``.

        Each category returns at most a few matches alongside its full match count.
        Queries shorter than two characters return empty results.
        """

        term = (query or "").strip()[:SEARCH_MAX_LENGTH]
        payload: dict[str, object] = {
            "query": term,
            "fiscal_year": year,
            "departments": [],
            "vendors": [],
            "transactions": [],
            "total_departments": 0,
            "total_vendors": 0,
            "total_transactions": 0,
        }
        if len(term) < SEARCH_MIN_LENGTH:
            return payload

        departments: dict[str, dict[str, object]] = {}
        sources = [(UploadTable.BUDGETS, "budget")]
        if portal.actuals_enabled:
            sources.append((UploadTable.ACTUALS, "actuals"))
        for table, key in sources:
            for name, total, _count in self.repo.totals_by_name(
                table, portal.city_id, "department_name", search=term, fiscal_year=year
            ):
                entry = departments.setdefault(name.lower(), {"department_name": name, "budget": ZERO, "actuals": ZERO})
                entry[key] += total
        matched = sorted(departments.values(), key=lambda item: (-item["budget"], item["department_name"].lower()))
        payload["total_departments"] = len(matched)
        payload["departments"] = [
            {
                "department_name": item["department_name"],
                "budget": _money(item["budget"]),
                **({"actuals": _money(item["actuals"])} if portal.actuals_enabled else {}),
            }
            for item in matched[:SEARCH_RESULTS_PER_CATEGORY]
        ]

        if portal.vendors_enabled:
            vendors: dict[str, dict[str, object]] = {}
            for name, total, count in self.repo.totals_by_name(
                UploadTable.TRANSACTIONS, portal.city_id, "vendor", search=term, fiscal_year=year
            ):
                entry = vendors.setdefault(name.lower(), {"vendor": name, "total": ZERO, "transaction_count": 0})
                entry["total"] += total
                entry["transaction_count"] += count
            ranked = sorted(vendors.values(), key=lambda item: (-item["total"], item["vendor"].lower()))
            payload["total_vendors"] = len(ranked)
            payload["vendors"] = [
                {**item, "total": _money(item["total"])} for item in ranked[:SEARCH_RESULTS_PER_CATEGORY]
            ]

        if portal.transactions_enabled:
            rows, total = self.repo.transactions_page(
                portal.city_id,
                fiscal_year=year,
                department_name=None,
                vendor=None,
                search=term,
                limit=SEARCH_RESULTS_PER_CATEGORY,
                offset=0,
            )
            payload["total_transactions"] = total
            payload["transactions"] = [
                {
                    "id": str(row.id),
                    "date": row.date.isoformat(),
                    "vendor": row.vendor,
                    "department_name": row.department_name,
                    "description": row.description,
                    "amount": str(row.amount),
                }
                for row in rows
            ]
        return payload

    # ---------- Exports ----------
    @staticmethod
    def _export_columns(table: UploadTable) -> list[str]:
        columns = list(TABLE_SCHEMAS[table].columns)
        for derived in ("fiscal_year", "fiscal_period"):
            if derived not in columns and not (table is UploadTable.BUDGETS and derived == "fiscal_period"):
                columns.append(derived)
        return columns

    def export_count(self, portal: PortalContext, *, table: UploadTable, year: int | None) -> dict[str, object]:
        self.require_module(self._table_enabled(portal, table), table.value)
        return {
            "table": table.value,
            "fiscal_year": year,
            "row_count": self.repo.count_rows(table, portal.city_id, fiscal_year=year),
        }

    def export_table(
        self,
        portal: PortalContext,
        *,
        table: UploadTable,
        year: int | None,
        format_name: str,
    ) -> ExportFilePayload:
        normalized_format = format_name.strip().lower()
        if normalized_format not in EXPORT_FORMATS:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="format must be one of: csv, xlsx.",
            )
        self.require_module(self._table_enabled(portal, table), table.value)

        columns = self._export_columns(table)
        rows = [
            ["" if getattr(row, column) is None else getattr(row, column) for column in columns]
            for row in self.repo.iter_rows(
                table,
                portal.city_id,
                page_size=self.settings.query_page_size,
                fiscal_year=year,
            )
        ]

        base_filename = f"{portal.city.slug}-{table.value}" + (f"-fy{year}" if year is not None else "")
        logger.info("export city=%s table=%s year=%s format=%s rows=%s", portal.city.slug, table.value, year, normalized_format, len(rows))

        if normalized_format == "csv":
            sio = io.StringIO()
            writer = csv.writer(sio)
            writer.writerow(columns)
            for row in rows:
                writer.writerow([str(value) for value in row])
            return ExportFilePayload(
                media_type="text/csv; charset=utf-8",
                filename=f"{base_filename}.csv",
                content=sio.getvalue().encode("utf-8"),
            )

        from openpyxl import Workbook

        workbook = Workbook()
        sheet = workbook.active
        sheet.title = table.value
        sheet.append(columns)
        for row in rows:
            sheet.append([float(value) if isinstance(value, Decimal) else value for value in row])

        output = BytesIO()
        workbook.save(output)
        return ExportFilePayload(
            media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            filename=f"{base_filename}.xlsx",
            content=output.getvalue(),
        )
