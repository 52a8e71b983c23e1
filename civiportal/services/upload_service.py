"""Upload execution, fiscal-year deletes, upload history and CSV templates."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from civiportal.core.auth import RequestUserContext
from civiportal.core.config import get_settings
from civiportal.models.entities import City, UploadLog
from civiportal.repositories.portal_repository import PortalRepository
from civiportal.services.csv_validation import (
    UploadTable,
    ValidationIssue,
    build_template_csv,
    parse_csv_text,
    records_to_rows,
    validate_and_build_records,
)
from civiportal.services.portal_context import PortalContext, build_portal_context, default_portal_settings
from civiportal.services.upload_plan import DeleteScope, UploadMode, UploadPlanRejected, WritePlan, resolve_write_plan

logger = logging.getLogger(__name__)

DELETE_YEAR_MODE = "delete_fiscal_year"


@dataclass(slots=True)
class UploadRequestData:
    table: UploadTable
    mode: UploadMode
    replace_year: int | None = None
    replace_year_confirmation: int | None = None
    confirm_replace_table: bool = False
    filename: str | None = None
    # Advisory only; the server recomputes fiscal years from the rows.
    declared_years: list[int] = field(default_factory=list)


@dataclass(slots=True)
class UploadOutcome:
    table: UploadTable
    mode: UploadMode
    inserted: int
    deleted: int
    years_in_data: tuple[int, ...]
    audit_fiscal_year: int | None
    warnings: tuple[ValidationIssue, ...]

    def as_dict(self) -> dict[str, object]:
        return {
            "table": self.table.value,
            "mode": self.mode.value,
            "inserted": self.inserted,
            "deleted": self.deleted,
            "years_in_data": list(self.years_in_data),
            "fiscal_year": self.audit_fiscal_year,
            "warnings": [issue.as_dict() for issue in self.warnings],
        }


class UploadService:
    """Validate, plan and atomically apply dataset uploads for one city."""

    def __init__(self, db: Session) -> None:
        self.db = db
        self.repo = PortalRepository(db)
        self.settings = get_settings()

    # ---------- Context ----------
    def portal_context(self, city: City) -> PortalContext:
        portal_settings = self.repo.get_portal_settings(city.id)
        if portal_settings is None:
            portal_settings = self.repo.add_portal_settings(default_portal_settings(city))
            self.db.commit()
        return build_portal_context(city, portal_settings, self.settings)

    def _reject(self, issues: list[ValidationIssue] | tuple[ValidationIssue, ...]) -> HTTPException:
        limit = self.settings.upload_max_reported_issues
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "message": "Upload rejected; no rows were written.",
                "issue_count": len(issues),
                "issues": [issue.as_dict() for issue in issues[:limit]],
            },
        )

    @staticmethod
    def _admin_identifier(context: RequestUserContext) -> str:
        return context.email or str(context.user_id)

    # ---------- Uploads ----------
    def upload_records(
        self,
        *,
        city: City,
        context: RequestUserContext,
        request: UploadRequestData,
        records: list[dict[str, object]],
    ) -> UploadOutcome:
        headers, rows = records_to_rows(records)
        return self._upload(city=city, context=context, request=request, headers=headers, rows=rows)

    def upload_csv(
        self,
        *,
        city: City,
        context: RequestUserContext,
        request: UploadRequestData,
        content: bytes,
    ) -> UploadOutcome:
        try:
            text = content.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="CSV file must be UTF-8 encoded.",
            ) from exc

        headers, rows = parse_csv_text(text)
        if not headers:
            raise self._reject([ValidationIssue(row=None, field=None, message="The CSV file is empty.")])
        return self._upload(city=city, context=context, request=request, headers=headers, rows=rows)

    def _upload(
        self,
        *,
        city: City,
        context: RequestUserContext,
        request: UploadRequestData,
        headers: list[str],
        rows: list[list[str]],
    ) -> UploadOutcome:
        portal = self.portal_context(city)

        if len(rows) > self.settings.upload_max_records:
            raise self._reject(
                [
                    ValidationIssue(
                        row=None,
                        field=None,
                        message=(
                            f"The upload has {len(rows)} rows; the maximum per upload is "
                            f"{self.settings.upload_max_records}."
                        ),
                    )
                ]
            )

        result = validate_and_build_records(
            request.table,
            headers,
            rows,
            fiscal_config=portal.fiscal_config,
        )
        if result.has_errors:
            raise self._reject(result.issues)

        if request.declared_years and sorted(set(request.declared_years)) != list(result.years_in_data):
            logger.info(
                "declared fiscal years differ from server-derived years city=%s table=%s declared=%s derived=%s",
                city.slug,
                request.table.value,
                sorted(set(request.declared_years)),
                list(result.years_in_data),
            )

        try:
            plan = resolve_write_plan(
                request.table,
                request.mode,
                list(result.records),
                result.years_in_data,
                replace_year=request.replace_year,
                replace_year_confirmation=request.replace_year_confirmation,
                confirm_replace_table=request.confirm_replace_table,
                max_records=self.settings.upload_max_records,
            )
        except UploadPlanRejected as exc:
            raise self._reject(exc.issues) from exc

        deleted, inserted = self._apply(city=city, context=context, plan=plan, filename=request.filename)
        return UploadOutcome(
            table=plan.table,
            mode=plan.mode,
            inserted=inserted,
            deleted=deleted,
            years_in_data=plan.years_in_data,
            audit_fiscal_year=plan.audit_fiscal_year,
            warnings=tuple(issue for issue in result.issues if issue not in result.errors),
        )

    def _apply(
        self,
        *,
        city: City,
        context: RequestUserContext,
        plan: WritePlan,
        filename: str | None,
    ) -> tuple[int, int]:
        """Run the delete step, chunked inserts and audit row as one transaction."""

        try:
            deleted = 0
            if plan.delete_scope is DeleteScope.FISCAL_YEAR:
                deleted = self.repo.delete_rows(plan.table, city.id, fiscal_year=plan.delete_fiscal_year)
            elif plan.delete_scope is DeleteScope.TABLE:
                deleted = self.repo.delete_rows(plan.table, city.id)

            inserted = self.repo.insert_rows(
                plan.table,
                city.id,
                plan.records,
                chunk_size=self.settings.upload_insert_chunk_size,
            )
            self.repo.add_upload_log(
                UploadLog(
                    city_id=city.id,
                    table_name=plan.table.value,
                    mode=plan.mode.value,
                    row_count=inserted,
                    fiscal_year=plan.audit_fiscal_year,
                    filename=filename,
                    admin_identifier=self._admin_identifier(context),
                    created_at=datetime.utcnow(),
                )
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception(
                "upload failed city=%s table=%s mode=%s rows=%s",
                city.slug,
                plan.table.value,
                plan.mode.value,
                len(plan.records),
            )
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to save the upload. No changes were applied.",
            ) from exc

        logger.info(
            "upload applied city=%s table=%s mode=%s deleted=%s inserted=%s fiscal_year=%s by=%s",
            city.slug,
            plan.table.value,
            plan.mode.value,
            deleted,
            inserted,
            plan.audit_fiscal_year,
            self._admin_identifier(context),
        )
        return deleted, inserted

    # ---------- Fiscal year deletion ----------
    def delete_fiscal_year(
        self,
        *,
        city: City,
        context: RequestUserContext,
        table: UploadTable,
        fiscal_year: int,
        confirmation: int | None,
    ) -> dict[str, object]:
        if confirmation != fiscal_year:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"Type the fiscal year {fiscal_year} a second time to confirm the deletion.",
            )

        try:
            deleted = self.repo.delete_rows(table, city.id, fiscal_year=fiscal_year)
            self.repo.add_upload_log(
                UploadLog(
                    city_id=city.id,
                    table_name=table.value,
                    mode=DELETE_YEAR_MODE,
                    row_count=deleted,
                    fiscal_year=fiscal_year,
                    filename=None,
                    admin_identifier=self._admin_identifier(context),
                    created_at=datetime.utcnow(),
                )
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("fiscal year delete failed city=%s table=%s fiscal_year=%s", city.slug, table.value, fiscal_year)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Failed to delete FY{fiscal_year} from {table.value}.",
            ) from exc

        logger.info(
            "fiscal year deleted city=%s table=%s fiscal_year=%s deleted=%s by=%s",
            city.slug,
            table.value,
            fiscal_year,
            deleted,
            self._admin_identifier(context),
        )
        return {"table": table.value, "fiscal_year": fiscal_year, "deleted": deleted}

    # ---------- History and templates ----------
    @staticmethod
    def serialize_upload_log(entry: UploadLog) -> dict[str, object]:
        return {
            "id": entry.id,
            "table_name": entry.table_name,
            "mode": entry.mode,
            "row_count": entry.row_count,
            "fiscal_year": entry.fiscal_year,
            "filename": entry.filename,
            "admin_identifier": entry.admin_identifier,
            "created_at": entry.created_at.isoformat(),
        }

    def upload_history(self, city: City, limit: int = 100) -> list[dict[str, object]]:
        return [self.serialize_upload_log(entry) for entry in self.repo.list_upload_logs(city.id, limit=limit)]

    def dataset_status(self, city: City) -> list[dict[str, object]]:
        """Row counts and fiscal years currently stored per table."""

        return [
            {
                "table": table.value,
                "row_count": self.repo.count_rows(table, city.id),
                "fiscal_years": self.repo.list_fiscal_years(table, city.id),
            }
            for table in UploadTable
        ]

    @staticmethod
    def template_csv(table: UploadTable) -> str:
        return build_template_csv(table)
