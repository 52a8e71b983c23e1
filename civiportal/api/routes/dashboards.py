"""Public dashboard endpoints for published city portals."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from civiportal.db.dependencies import get_db_session
from civiportal.services.dashboard_service import DashboardService
from civiportal.services.portal_context import PortalContext, serialize_public_settings

router = APIRouter(prefix="/cities/{city_slug}", tags=["dashboards"])


def _service(db: Session) -> DashboardService:
    return DashboardService(db)


def get_portal_context(city_slug: str, db: Session = Depends(get_db_session)) -> PortalContext:
    """Resolve the published portal once per request."""

    return _service(db).public_context(city_slug)


@router.get("/settings")
def get_public_settings(portal: PortalContext = Depends(get_portal_context)) -> dict[str, object]:
    return serialize_public_settings(portal)


@router.get("/fiscal-years")
def get_fiscal_years(
    portal: PortalContext = Depends(get_portal_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    return _service(db).fiscal_years_payload(portal)


@router.get("/overview")
def get_overview(
    year: int | None = None,
    portal: PortalContext = Depends(get_portal_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    return _service(db).overview(portal, year)


@router.get("/analytics")
def get_analytics(
    portal: PortalContext = Depends(get_portal_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    return _service(db).analytics(portal)


@router.get("/departments")
def get_departments(
    year: int | None = None,
    portal: PortalContext = Depends(get_portal_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    return _service(db).departments(portal, year)


@router.get("/departments/{department_name}")
def get_department_detail(
    department_name: str,
    year: int | None = None,
    portal: PortalContext = Depends(get_portal_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    return _service(db).department_detail(portal, department_name, year)


@router.get("/transactions")
def get_transactions(
    year: int | None = None,
    department: str | None = None,
    vendor: str | None = None,
    q: str | None = Query(default=None, max_length=200),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
    portal: PortalContext = Depends(get_portal_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    return _service(db).transactions(
        portal,
        year=year,
        department=department,
        vendor=vendor,
        query=q,
        page=page,
        page_size=page_size,
    )


@router.get("/vendors")
def get_vendors(
    year: int | None = None,
    q: str | None = Query(default=None, max_length=200),
    limit: int | None = Query(default=None, ge=1, le=1000),
    portal: PortalContext = Depends(get_portal_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    return _service(db).vendors(portal, year=year, query=q, limit=limit)


@router.get("/revenues")
def get_revenues(
    year: int | None = None,
    portal: PortalContext = Depends(get_portal_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    return _service(db).revenues(portal, year)


@router.get("/search")
def search_portal(
    q: str | None = Query(default=None, max_length=200),
    year: int | None = None,
    portal: PortalContext = Depends(get_portal_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    return _service(db).search(portal, q, year)
