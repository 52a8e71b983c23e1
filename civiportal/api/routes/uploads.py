"""Dataset upload, fiscal-year delete, upload history and template endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from fastapi.responses import Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from civiportal.core.auth import ADMIN_ROLES, VIEW_ROLES, CityAccess, require_city_roles
from civiportal.db.dependencies import get_db_session
from civiportal.services.csv_validation import UploadTable
from civiportal.services.upload_plan import UploadMode
from civiportal.services.upload_service import UploadRequestData, UploadService

router = APIRouter(prefix="/admin/cities/{city_slug}", tags=["uploads"])


class UploadPayload(BaseModel):
    table: UploadTable
    mode: UploadMode = UploadMode.APPEND
    replace_year: int | None = None
    replace_year_confirmation: int | None = None
    confirm_replace_table: bool = False
    filename: str | None = Field(default=None, max_length=255)
    records: list[dict[str, Any]] = Field(default_factory=list)
    years_in_data: list[int] = Field(default_factory=list)


class DeleteFiscalYearPayload(BaseModel):
    table: UploadTable
    fiscal_year: int = Field(ge=2000, le=2100)
    confirm_fiscal_year: int | None = None


def _service(db: Session) -> UploadService:
    return UploadService(db)


@router.post("/upload", status_code=status.HTTP_201_CREATED)
def upload_records(
    payload: UploadPayload,
    access: CityAccess = Depends(require_city_roles(*ADMIN_ROLES)),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    """Upload already-parsed records; they are re-validated with the city's fiscal calendar."""

    outcome = _service(db).upload_records(
        city=access.city,
        context=access.context,
        request=UploadRequestData(
            table=payload.table,
            mode=payload.mode,
            replace_year=payload.replace_year,
            replace_year_confirmation=payload.replace_year_confirmation,
            confirm_replace_table=payload.confirm_replace_table,
            filename=payload.filename,
            declared_years=payload.years_in_data,
        ),
        records=payload.records,
    )
    return outcome.as_dict()


@router.post("/upload/csv", status_code=status.HTTP_201_CREATED)
async def upload_csv(
    table: UploadTable = Form(...),
    mode: UploadMode = Form(default=UploadMode.APPEND),
    replace_year: int | None = Form(default=None),
    replace_year_confirmation: int | None = Form(default=None),
    confirm_replace_table: bool = Form(default=False),
    file: UploadFile = File(...),
    access: CityAccess = Depends(require_city_roles(*ADMIN_ROLES)),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    content = await file.read()
    outcome = _service(db).upload_csv(
        city=access.city,
        context=access.context,
        request=UploadRequestData(
            table=table,
            mode=mode,
            replace_year=replace_year,
            replace_year_confirmation=replace_year_confirmation,
            confirm_replace_table=confirm_replace_table,
            filename=file.filename,
        ),
        content=content,
    )
    return outcome.as_dict()


@router.get("/upload/history")
def upload_history(
    limit: int = 100,
    access: CityAccess = Depends(require_city_roles(*VIEW_ROLES)),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    service = _service(db)
    return {
        "items": service.upload_history(access.city, limit=max(1, min(limit, 500))),
        "datasets": service.dataset_status(access.city),
    }


@router.post("/delete-fiscal-year")
def delete_fiscal_year(
    payload: DeleteFiscalYearPayload,
    access: CityAccess = Depends(require_city_roles(*ADMIN_ROLES)),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    return _service(db).delete_fiscal_year(
        city=access.city,
        context=access.context,
        table=payload.table,
        fiscal_year=payload.fiscal_year,
        confirmation=payload.confirm_fiscal_year,
    )


@router.get("/templates/{table}")
def download_template(
    table: UploadTable,
    _: CityAccess = Depends(require_city_roles(*VIEW_ROLES)),
) -> Response:
    return Response(
        content=UploadService.template_csv(table),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{table.value}-template.csv"'},
    )
