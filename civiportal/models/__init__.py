"""ORM model package."""

from civiportal.models.entities import (
    ActualLine,
    BudgetLine,
    City,
    FiscalYearLabeling,
    PortalSettings,
    RevenueLine,
    RoleAssignment,
    Transaction,
    UploadLog,
    User,
    UserRole,
)

__all__ = [
    "ActualLine",
    "BudgetLine",
    "City",
    "FiscalYearLabeling",
    "PortalSettings",
    "RevenueLine",
    "RoleAssignment",
    "Transaction",
    "UploadLog",
    "User",
    "UserRole",
]
