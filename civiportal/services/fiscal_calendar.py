"""Fiscal calendar rules shared by upload validation and public pages."""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import date
from typing import NamedTuple

from civiportal.models.entities import FiscalYearLabeling

DEFAULT_START_MONTH = 7
DEFAULT_START_DAY = 1

PERIOD_PATTERN = re.compile(r"^(\d{4})-(\d{1,2})$")


class CalendarMonth(NamedTuple):
    """Month-granular calendar input (actuals and revenues carry no day)."""

    year: int
    month: int


@dataclass(frozen=True, slots=True)
class FiscalYearConfig:
    start_month: int = DEFAULT_START_MONTH
    start_day: int = DEFAULT_START_DAY
    labeling: FiscalYearLabeling = FiscalYearLabeling.END_YEAR

    def __post_init__(self) -> None:
        if not 1 <= self.start_month <= 12:
            raise ValueError(f"fiscal year start month must be within 1..12, got {self.start_month}")
        if not 1 <= self.start_day <= 31:
            raise ValueError(f"fiscal year start day must be within 1..31, got {self.start_day}")

    @property
    def starts_on_january_first(self) -> bool:
        return self.start_month == 1 and self.start_day == 1


def fiscal_config_from_values(
    start_month: int | None,
    start_day: int | None,
    labeling: FiscalYearLabeling | None = None,
    *,
    default_month: int = DEFAULT_START_MONTH,
    default_day: int = DEFAULT_START_DAY,
) -> FiscalYearConfig:
    """Build a config from nullable stored settings, falling back per field."""

    month = start_month if start_month is not None and 1 <= start_month <= 12 else default_month
    day = start_day if start_day is not None and 1 <= start_day <= 31 else default_day
    return FiscalYearConfig(
        start_month=month,
        start_day=day,
        labeling=labeling or FiscalYearLabeling.END_YEAR,
    )


def _label_year(start_calendar_year: int, config: FiscalYearConfig) -> int:
    if config.labeling is FiscalYearLabeling.START_YEAR or config.starts_on_january_first:
        return start_calendar_year
    return start_calendar_year + 1


def _on_or_after_start(value: date | CalendarMonth, config: FiscalYearConfig) -> bool:
    if isinstance(value, CalendarMonth):
        return value.month >= config.start_month
    return (value.month, value.day) >= (config.start_month, config.start_day)


def derive_fiscal_year(value: date | CalendarMonth, config: FiscalYearConfig) -> int:
    """Map a calendar date or month to its fiscal year label.

    With the default July 1 start labeled by ending year, August 2027 belongs to
    FY2028 and June 2027 to FY2027. Month inputs ignore ``start_day``; dates
    compare against the full start date, so June 30 and July 1 fall in different
    fiscal years.
    """

    start_calendar_year = value.year if _on_or_after_start(value, config) else value.year - 1
    return _label_year(start_calendar_year, config)


def derive_fiscal_period(value: date | CalendarMonth, config: FiscalYearConfig) -> int:
    """Return the 1-based fiscal month (1 = the fiscal year's start month)."""

    month = value.month
    if isinstance(value, date) and config.start_day > 1 and value.day < config.start_day:
        # Days before the start day still belong to the previous fiscal month.
        month = 12 if month == 1 else month - 1
    return (month - config.start_month) % 12 + 1


def parse_period(value: str) -> CalendarMonth | None:
    """Parse ``YYYY-MM`` (or unpadded ``YYYY-M``); ``None`` when malformed."""

    match = PERIOD_PATTERN.match(value.strip())
    if match is None:
        return None
    month = int(match.group(2))
    if not 1 <= month <= 12:
        return None
    return CalendarMonth(int(match.group(1)), month)


def format_period(value: CalendarMonth) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def fiscal_year_label(config: FiscalYearConfig, explicit_label: str | None = None) -> str:
    """Human-readable description of when the fiscal year runs."""

    if explicit_label and explicit_label.strip():
        return explicit_label.strip()

    if config.starts_on_january_first:
        return "Fiscal year aligns with the calendar year (January 1 – December 31)."

    start_name = calendar.month_name[config.start_month]
    if config.start_day == 1:
        end_month = 12 if config.start_month == 1 else config.start_month - 1
        # Non-leap year is fine for a descriptive label.
        end_day = calendar.monthrange(2001, end_month)[1]
    else:
        end_month = config.start_month
        end_day = config.start_day - 1
    end_name = calendar.month_name[end_month]
    return f"Fiscal year runs {start_name} {config.start_day} – {end_name} {end_day}."
