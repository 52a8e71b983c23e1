"""Download-center endpoints for raw dataset exports."""

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from civiportal.api.routes.dashboards import get_portal_context
from civiportal.core.rate_limit import export_limit, limiter
from civiportal.db.dependencies import get_db_session
from civiportal.services.csv_validation import UploadTable
from civiportal.services.dashboard_service import DashboardService
from civiportal.services.portal_context import PortalContext

router = APIRouter(prefix="/cities/{city_slug}/download", tags=["exports"])


@router.get("/count")
def export_count(
    table: UploadTable = Query(...),
    year: int | None = None,
    portal: PortalContext = Depends(get_portal_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    return DashboardService(db).export_count(portal, table=table, year=year)


@router.get("/{table}")
@limiter.limit(export_limit)
def export_table(
    request: Request,
    table: UploadTable,
    format: str = Query(default="csv"),
    year: int | None = None,
    portal: PortalContext = Depends(get_portal_context),
    db: Session = Depends(get_db_session),
) -> Response:
    exported = DashboardService(db).export_table(
        portal,
        table=table,
        year=year,
        format_name=format,
    )
    return Response(
        content=exported.content,
        media_type=exported.media_type,
        headers={"Content-Disposition": f'attachment; filename="{exported.filename}"'},
    )
