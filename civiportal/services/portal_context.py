"""Per-request portal configuration passed explicitly to services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from civiportal.core.config import Settings
from civiportal.models.entities import City, FiscalYearLabeling, PortalSettings
from civiportal.services.fiscal_calendar import FiscalYearConfig, fiscal_config_from_values, fiscal_year_label

BRANDING_FIELDS = (
    "city_name",
    "tagline",
    "primary_color",
    "accent_color",
    "background_color",
    "logo_url",
    "hero_image_url",
    "seal_url",
    "hero_message",
    "leader_name",
    "leader_title",
    "leader_message",
    "stat_population",
    "stat_employees",
    "stat_square_miles",
    "stat_annual_budget",
)

MODULE_FLAGS = (
    "enable_actuals",
    "enable_transactions",
    "enable_vendors",
    "enable_revenues",
)


@dataclass(frozen=True, slots=True)
class PortalContext:
    """One city's settings resolved once per request."""

    city: City
    settings: PortalSettings
    fiscal_config: FiscalYearConfig
    fiscal_label: str

    @property
    def city_id(self) -> UUID:
        return self.city.id

    @property
    def actuals_enabled(self) -> bool:
        return self.settings.enable_actuals

    @property
    def transactions_enabled(self) -> bool:
        return self.settings.enable_transactions

    @property
    def vendors_enabled(self) -> bool:
        # Vendor summaries are built from transactions.
        return self.settings.enable_transactions and self.settings.enable_vendors

    @property
    def revenues_enabled(self) -> bool:
        return self.settings.enable_revenues


def default_portal_settings(city: City) -> PortalSettings:
    return PortalSettings(
        city_id=city.id,
        city_name=city.name,
        is_published=False,
        enable_actuals=True,
        enable_transactions=False,
        enable_vendors=False,
        enable_revenues=False,
        fiscal_year_labeling=FiscalYearLabeling.END_YEAR,
        updated_at=datetime.utcnow(),
    )


def build_portal_context(city: City, portal_settings: PortalSettings, app_settings: Settings) -> PortalContext:
    fiscal_config = fiscal_config_from_values(
        portal_settings.fiscal_year_start_month,
        portal_settings.fiscal_year_start_day,
        portal_settings.fiscal_year_labeling,
        default_month=app_settings.default_fiscal_year_start_month,
        default_day=app_settings.default_fiscal_year_start_day,
    )
    return PortalContext(
        city=city,
        settings=portal_settings,
        fiscal_config=fiscal_config,
        fiscal_label=fiscal_year_label(fiscal_config, portal_settings.fiscal_year_label),
    )


def serialize_public_settings(portal: PortalContext) -> dict[str, object]:
    payload: dict[str, object] = {"slug": portal.city.slug}
    for name in BRANDING_FIELDS:
        payload[name] = getattr(portal.settings, name)
    payload["modules"] = {
        "actuals": portal.actuals_enabled,
        "transactions": portal.transactions_enabled,
        "vendors": portal.vendors_enabled,
        "revenues": portal.revenues_enabled,
    }
    payload["fiscal_year"] = {
        "start_month": portal.fiscal_config.start_month,
        "start_day": portal.fiscal_config.start_day,
        "labeling": portal.fiscal_config.labeling.value,
        "label": portal.fiscal_label,
    }
    return payload


def serialize_admin_settings(portal_settings: PortalSettings) -> dict[str, object]:
    payload: dict[str, object] = {
        "id": str(portal_settings.id),
        "city_id": str(portal_settings.city_id),
    }
    for name in BRANDING_FIELDS + MODULE_FLAGS:
        payload[name] = getattr(portal_settings, name)
    payload.update(
        {
            "is_published": portal_settings.is_published,
            "fiscal_year_start_month": portal_settings.fiscal_year_start_month,
            "fiscal_year_start_day": portal_settings.fiscal_year_start_day,
            "fiscal_year_labeling": portal_settings.fiscal_year_labeling.value,
            "fiscal_year_label": portal_settings.fiscal_year_label,
            "updated_at": portal_settings.updated_at.isoformat(),
        }
    )
    return payload
