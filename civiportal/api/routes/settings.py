"""Portal settings endpoints: branding, module toggles, fiscal calendar and publishing."""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from civiportal.core.auth import ADMIN_ROLES, VIEW_ROLES, CityAccess, require_city_roles
from civiportal.db.dependencies import get_db_session
from civiportal.models.entities import FiscalYearLabeling
from civiportal.services.portal_context import serialize_admin_settings
from civiportal.services.upload_service import UploadService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/cities/{city_slug}", tags=["settings"])

COLOR_PATTERN = r"^#(?:[0-9a-fA-F]{3}){1,2}$"

# Non-nullable columns: an explicit null leaves them unchanged.
REQUIRED_FIELDS = frozenset(
    {
        "city_name",
        "enable_actuals",
        "enable_transactions",
        "enable_vendors",
        "enable_revenues",
        "fiscal_year_labeling",
    }
)


class PortalSettingsUpdate(BaseModel):
    city_name: str | None = Field(default=None, min_length=1, max_length=255)
    tagline: str | None = Field(default=None, max_length=500)
    primary_color: str | None = Field(default=None, pattern=COLOR_PATTERN)
    accent_color: str | None = Field(default=None, pattern=COLOR_PATTERN)
    background_color: str | None = Field(default=None, pattern=COLOR_PATTERN)
    logo_url: str | None = Field(default=None, max_length=1000)
    hero_image_url: str | None = Field(default=None, max_length=1000)
    seal_url: str | None = Field(default=None, max_length=1000)
    hero_message: str | None = None

    leader_name: str | None = Field(default=None, max_length=255)
    leader_title: str | None = Field(default=None, max_length=255)
    leader_message: str | None = None

    stat_population: str | None = Field(default=None, max_length=64)
    stat_employees: str | None = Field(default=None, max_length=64)
    stat_square_miles: str | None = Field(default=None, max_length=64)
    stat_annual_budget: str | None = Field(default=None, max_length=64)

    enable_actuals: bool | None = None
    enable_transactions: bool | None = None
    enable_vendors: bool | None = None
    enable_revenues: bool | None = None

    fiscal_year_start_month: int | None = Field(default=None, ge=1, le=12)
    fiscal_year_start_day: int | None = Field(default=None, ge=1, le=31)
    fiscal_year_labeling: FiscalYearLabeling | None = None
    fiscal_year_label: str | None = Field(default=None, max_length=255)


class PublishUpdate(BaseModel):
    is_published: bool


@router.get("/settings")
def get_portal_settings(
    access: CityAccess = Depends(require_city_roles(*VIEW_ROLES)),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    portal = UploadService(db).portal_context(access.city)
    payload = serialize_admin_settings(portal.settings)
    payload["fiscal_year_display"] = portal.fiscal_label
    return payload


@router.patch("/settings")
def update_portal_settings(
    payload: PortalSettingsUpdate,
    access: CityAccess = Depends(require_city_roles(*ADMIN_ROLES)),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    """Apply only the fields present in the request body; explicit nulls clear optional fields."""

    portal = UploadService(db).portal_context(access.city)
    portal_settings = portal.settings
    changes = payload.model_dump(exclude_unset=True)
    for name, value in changes.items():
        if type(value) is str:
            value = value.strip() or None
        if value is None and name in REQUIRED_FIELDS:
            continue
        setattr(portal_settings, name, value)
    portal_settings.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(portal_settings)

    logger.info("portal settings updated city=%s fields=%s by=%s", access.city.slug, sorted(changes), access.context.email)
    refreshed = UploadService(db).portal_context(access.city)
    result = serialize_admin_settings(refreshed.settings)
    result["fiscal_year_display"] = refreshed.fiscal_label
    return result


@router.post("/publish")
def set_published(
    payload: PublishUpdate,
    access: CityAccess = Depends(require_city_roles(*ADMIN_ROLES)),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    portal = UploadService(db).portal_context(access.city)
    portal.settings.is_published = payload.is_published
    portal.settings.updated_at = datetime.utcnow()
    db.commit()
    logger.info("portal publish state city=%s published=%s by=%s", access.city.slug, payload.is_published, access.context.email)
    return {"city": access.city.slug, "is_published": payload.is_published}
